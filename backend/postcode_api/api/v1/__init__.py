"""
API v1 package initialization.

Collects the version 1 routers into a single router mounted under /api/v1.
"""

from fastapi import APIRouter

from postcode_api.api.v1.postal_codes import router as postal_codes_router

router = APIRouter()
router.include_router(postal_codes_router)

__all__ = ["router"]
