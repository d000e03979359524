"""
Problem response schema for all failed requests.

Follows RFC 9457 (formerly RFC 7807) problem details with a correlation
identifier extension that matches the server-side log record.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

PROBLEM_MEDIA_TYPE = "application/problem+json"


class ProblemResponse(BaseModel):
    """
    Uniform error envelope.

    ``detail`` is only present for client-fault failures; it is omitted from
    the serialized body otherwise.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: str = Field(
        default="about:blank",
        description="URI reference identifying the problem type",
    )
    title: str = Field(
        ...,
        description="Short human-readable summary of the problem",
        examples=["Bad Request"],
    )
    status: int = Field(
        ...,
        description="HTTP status code",
        examples=[400],
    )
    detail: Optional[str] = Field(
        default=None,
        description="Explanation of this occurrence, for client faults only",
        examples=["Code not found"],
    )
    instance: Optional[str] = Field(
        default=None,
        description="Request path that produced the problem",
        examples=["/api/v1/postal-codes/00000"],
    )
    correlation_id: str = Field(
        ...,
        alias="correlationId",
        description="Correlation ID for locating the matching log entry",
    )

    def to_body(self) -> dict:
        """Serialize with wire field names, leaving out absent fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


PROBLEM_RESPONSES: dict = {
    400: {"model": ProblemResponse, "description": "Client or domain validation failure"},
    401: {"model": ProblemResponse, "description": "Missing, invalid or expired bearer token"},
    403: {"model": ProblemResponse, "description": "Caller lacks the required scopes"},
    500: {"model": ProblemResponse, "description": "Unexpected server failure"},
}
