"""
Postal code schemas for response serialization.

This module defines the Pydantic schema returned by the versioned postal
code lookup routes.
"""

from pydantic import BaseModel, ConfigDict, Field


class PostalCode(BaseModel):
    """Schema for a postal code lookup result."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(
        ...,
        description="Postal code",
        examples=["55401"],
    )
    city: str = Field(
        ...,
        description="Primary city for the postal code",
        examples=["Minneapolis"],
    )
    state: str = Field(
        ...,
        description="State or province abbreviation",
        examples=["MN"],
    )
    country: str = Field(
        default="US",
        description="ISO 3166-1 alpha-2 country code",
        examples=["US"],
    )
