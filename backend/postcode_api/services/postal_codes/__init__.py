from postcode_api.services.postal_codes.service import (
    InMemoryPostalCodeLogic,
    InvalidPostalCodeError,
    PostalCodeLogic,
    PostalCodeNotFoundError,
)

__all__ = [
    "InMemoryPostalCodeLogic",
    "InvalidPostalCodeError",
    "PostalCodeLogic",
    "PostalCodeNotFoundError",
]
