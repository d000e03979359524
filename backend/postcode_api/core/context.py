"""Per-request context shared by the pipeline stages."""

import re
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

from starlette.datastructures import Headers
from starlette.requests import Request

from postcode_api.core.errors import AuthenticationError
from postcode_api.core.security import AuthenticatedPrincipal

CORRELATION_HEADER = "X-Correlation-ID"

_SAFE_CORRELATION_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def resolve_correlation_id(headers: Headers) -> str:
    """Reuse a well-formed inbound correlation id, otherwise mint a new one."""
    inbound = headers.get(CORRELATION_HEADER)
    if inbound and _SAFE_CORRELATION_ID.match(inbound):
        return inbound
    return str(uuid4())


@dataclass
class RequestContext:
    """
    State for one inbound call, discarded when the response completes.

    The principal stays None until the authentication stage validates a
    bearer token; a rejected token is kept as authentication_failure so the
    route that requires a principal can report it.
    """

    method: str
    path: str
    headers: Headers
    correlation_id: str
    principal: Optional[AuthenticatedPrincipal] = None
    authentication_failure: Optional[AuthenticationError] = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        return cls(
            method=request.method,
            path=request.url.path,
            headers=request.headers,
            correlation_id=resolve_correlation_id(request.headers),
        )

    @property
    def client_id(self) -> Optional[str]:
        if self.principal is None:
            return None
        return self.principal.client_id


def get_request_context(request: Request) -> RequestContext:
    """
    Return the context attached by the outermost pipeline stage.

    Requests that reach this point without one (for example a bare test
    application) get a fresh context attached on first use.
    """
    context = getattr(request.state, "context", None)
    if context is None:
        context = RequestContext.from_request(request)
        request.state.context = context
    return context
