"""
FastAPI dependencies for authentication and authorization.

This module provides dependency functions that enforce the principal
resolved by the authentication stage, scope-based access control, and
access to the business logic provider configured on the application.
"""

from typing import Annotated, Iterable

from fastapi import Depends, Request, Security
from fastapi.security import OAuth2AuthorizationCodeBearer

from postcode_api.core.config import Settings
from postcode_api.core.context import RequestContext, get_request_context
from postcode_api.core.errors import AuthenticationError, AuthorizationError
from postcode_api.core.logging import get_logger
from postcode_api.core.security import AuthenticatedPrincipal
from postcode_api.services.postal_codes.service import PostalCodeLogic

logger = get_logger(__name__)

SECURITY_SCHEME = "oauth2"


async def get_current_principal(
    context: Annotated[RequestContext, Depends(get_request_context)],
) -> AuthenticatedPrincipal:
    """
    Return the authenticated principal for the current request.

    Args:
        context: Request context populated by the authentication stage

    Returns:
        AuthenticatedPrincipal: Caller identity with unmodified token claims

    Raises:
        AuthenticationError: If no token was presented or it was rejected
    """
    if context.principal is not None:
        return context.principal

    if context.authentication_failure is not None:
        raise context.authentication_failure

    raise AuthenticationError(
        "Bearer token required",
        code="TOKEN_MISSING",
    )


def require_scopes(*required: str):
    """
    Create a dependency that requires specific token scopes.

    Args:
        *required: Scopes the caller must hold, all of them

    Returns:
        Callable: Dependency function that validates the caller's scopes

    Example:
        @router.get("/admin", dependencies=[Depends(require_scopes("postcodes:admin"))])
        async def admin_endpoint():
            return {"message": "Admin access granted"}
    """
    required_scopes = frozenset(required)

    async def scope_checker(
        principal: Annotated[AuthenticatedPrincipal, Depends(get_current_principal)],
    ) -> AuthenticatedPrincipal:
        missing = required_scopes - principal.scopes
        if missing:
            logger.warning(
                "Access denied: Insufficient scopes",
                client_id=principal.client_id,
                required_scopes=sorted(required_scopes),
                missing_scopes=sorted(missing),
            )
            raise AuthorizationError(
                "Insufficient permissions",
                code="SCOPE_MISSING",
                missing_scopes=sorted(missing),
            )
        return principal

    return scope_checker


def build_oauth2_scheme(settings: Settings) -> OAuth2AuthorizationCodeBearer:
    """
    Create the bearer credential scheme for the configured authority.

    auto_error is disabled: a missing token is reported by
    get_current_principal so every authentication failure takes the same
    path. The scheme is what the published descriptors advertise.

    Args:
        settings: Application settings

    Returns:
        OAuth2AuthorizationCodeBearer named ``oauth2``
    """
    return OAuth2AuthorizationCodeBearer(
        authorizationUrl=settings.authorization_url,
        tokenUrl=settings.token_url,
        scopes={scope: scope for scope in settings.required_scopes},
        scheme_name=SECURITY_SCHEME,
        auto_error=False,
    )


def base_authorization_dependencies(
    scheme: OAuth2AuthorizationCodeBearer, required: Iterable[str] = ()
) -> list:
    """
    Dependencies every versioned router carries.

    The credential scheme is declared first, then an authenticated
    principal is required and configured scopes are checked on top.
    """
    scopes = tuple(required)
    credentials = Security(scheme, scopes=list(scopes))
    if scopes:
        return [credentials, Depends(require_scopes(*scopes))]
    return [credentials, Depends(get_current_principal)]


def get_postal_code_logic(request: Request) -> PostalCodeLogic:
    """Return the postal code provider configured on the application."""
    return request.app.state.postal_code_logic


CurrentPrincipal = Annotated[AuthenticatedPrincipal, Depends(get_current_principal)]
PostalCodeLogicDep = Annotated[PostalCodeLogic, Depends(get_postal_code_logic)]
