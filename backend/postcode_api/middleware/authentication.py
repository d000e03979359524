"""
Authentication stage.

Resolves the caller's identity from a bearer token before routing. The
stage never rejects a request by itself: a missing token leaves the
principal empty and a rejected token is recorded on the request context.
Routes that require a principal turn either case into a 401, which keeps
anonymous routes and the documentation fallback reachable without a token.
"""

from typing import Optional

from fastapi.security.utils import get_authorization_scheme_param
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from postcode_api.core.context import get_request_context
from postcode_api.core.logging import get_logger, set_client_id
from postcode_api.core.security import TokenError, TokenValidator

logger = get_logger(__name__)

# Paths that never consult the identity authority.
ANONYMOUS_PATH_PREFIXES = ("/health", "/swagger")


def is_anonymous_path(path: str) -> bool:
    return any(
        path == prefix or path.startswith(prefix + "/")
        for prefix in ANONYMOUS_PATH_PREFIXES
    )


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the credentials of a ``Bearer`` authorization header."""
    scheme, credentials = get_authorization_scheme_param(authorization)
    if scheme.lower() != "bearer":
        return None
    return credentials.strip() or None


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """
    Validate presented bearer tokens against the identity authority.

    Args:
        app: Downstream ASGI application
        validator: Token validator bound to the configured authority
    """

    def __init__(self, app: ASGIApp, validator: TokenValidator):
        super().__init__(app)
        self.validator = validator

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if is_anonymous_path(request.url.path):
            return await call_next(request)

        token = extract_bearer_token(request.headers.get("Authorization"))
        if token is not None:
            context = get_request_context(request)
            try:
                context.principal = await self.validator.validate(token)
            except TokenError as e:
                context.authentication_failure = e
                logger.info(
                    "Bearer token rejected",
                    reason=e.code,
                    path=request.url.path,
                )
            else:
                set_client_id(context.client_id)

        return await call_next(request)
