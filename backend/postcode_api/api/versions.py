"""Registry of published API versions."""

from dataclasses import dataclass

from fastapi import APIRouter

from postcode_api.api.v1 import router as v1_router

API_PREFIX = "/api"


@dataclass(frozen=True)
class ApiVersion:
    """A published API version and the router holding its routes."""

    name: str
    router: APIRouter

    @property
    def prefix(self) -> str:
        return f"{API_PREFIX}/{self.name}"


API_VERSIONS: tuple[ApiVersion, ...] = (
    ApiVersion(name="v1", router=v1_router),
)
