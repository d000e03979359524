"""
Liveness endpoint.

Anonymous and dependency-free: the response is a constant, so it answers in
bounded time whatever the state of the identity authority or the business
logic provider.
"""

from fastapi import APIRouter, status
from fastapi.responses import PlainTextResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    status_code=status.HTTP_200_OK,
    response_class=PlainTextResponse,
    summary="Liveness check endpoint",
    include_in_schema=False,
)
async def health_check() -> str:
    """Always returns 200 OK while the process is serving requests."""
    return "Healthy"
