"""
Postal code lookup API endpoints (version 1).

Every route here is protected: the application mounts this router with the
base authorization dependencies, so the handler body only runs for an
authenticated and authorized caller.
"""

from typing import Annotated

from fastapi import APIRouter, Path, status

from postcode_api.api.deps import CurrentPrincipal, PostalCodeLogicDep
from postcode_api.core.logging import get_logger
from postcode_api.schemas.postal_codes import PostalCode
from postcode_api.schemas.problem import PROBLEM_RESPONSES
from postcode_api.services.postal_codes.service import PostalCodeNotFoundError

logger = get_logger(__name__)

router = APIRouter(prefix="/postal-codes", tags=["Postal Codes"], responses=PROBLEM_RESPONSES)


@router.get(
    "/{postal_code}",
    response_model=PostalCode,
    status_code=status.HTTP_200_OK,
    summary="Look up a postal code",
    description="Return the city and state registered for a postal code",
)
async def get_postal_code(
    postal_code: Annotated[
        str,
        Path(min_length=3, max_length=10, description="Postal code to look up"),
    ],
    logic: PostalCodeLogicDep,
    principal: CurrentPrincipal,
) -> PostalCode:
    """
    Look up a single postal code.

    Args:
        postal_code: Postal code from the path
        logic: Postal code business logic provider
        principal: Authenticated caller

    Returns:
        PostalCode record

    Raises:
        PostalCodeNotFoundError: 400 when the code is unknown
        DomainValidationError: 400 when the provider rejects the code
    """
    record = await logic.get_postal_code(postal_code)
    if record is None:
        raise PostalCodeNotFoundError(postal_code)

    logger.info(
        "Postal code resolved",
        postal_code=record.code,
        client_id=principal.client_id,
    )
    return record
