"""
Postal code business logic provider.

Routes depend on the PostalCodeLogic protocol only. The in-memory provider
below ships so the service runs without external systems; deployments swap
it for a real implementation when building the application.
"""

import re
from types import MappingProxyType
from typing import Mapping, Optional, Protocol

from postcode_api.core.errors import DomainValidationError
from postcode_api.core.logging import get_logger
from postcode_api.schemas.postal_codes import PostalCode

logger = get_logger(__name__)

_POSTAL_CODE_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9 -]{1,8}[A-Za-z0-9]$")


class PostalCodeNotFoundError(DomainValidationError):
    """Raised when a postal code has no known record."""

    def __init__(self, code: str):
        super().__init__("Code not found", code="POSTAL_CODE_NOT_FOUND", postal_code=code)


class InvalidPostalCodeError(DomainValidationError):
    """Raised when a postal code is not well formed."""

    def __init__(self, code: str):
        super().__init__(
            f"'{code}' is not a valid postal code",
            code="POSTAL_CODE_INVALID",
            postal_code=code,
        )


class PostalCodeLogic(Protocol):
    """Business logic provider for postal code lookups."""

    async def get_postal_code(self, code: str) -> Optional[PostalCode]:
        """Return the record for ``code`` or None when it is unknown."""
        ...


class InMemoryPostalCodeLogic:
    """
    Postal code lookup over a fixed in-memory table.

    Args:
        records: Postal code records keyed by normalized code
    """

    def __init__(self, records: Optional[Mapping[str, PostalCode]] = None):
        if records is None:
            records = {record.code: record for record in DEFAULT_POSTAL_CODES}
        self._records = MappingProxyType(
            {normalize_postal_code(code): record for code, record in records.items()}
        )

    async def get_postal_code(self, code: str) -> Optional[PostalCode]:
        normalized = normalize_postal_code(code)
        if not _POSTAL_CODE_PATTERN.match(normalized):
            raise InvalidPostalCodeError(code)

        record = self._records.get(normalized)
        logger.debug("Postal code lookup", postal_code=normalized, found=record is not None)
        return record


def normalize_postal_code(code: str) -> str:
    return code.strip().upper()


DEFAULT_POSTAL_CODES = (
    PostalCode(code="10001", city="New York", state="NY"),
    PostalCode(code="30301", city="Atlanta", state="GA"),
    PostalCode(code="55401", city="Minneapolis", state="MN"),
    PostalCode(code="60601", city="Chicago", state="IL"),
    PostalCode(code="94105", city="San Francisco", state="CA"),
)
