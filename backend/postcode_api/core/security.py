"""
Bearer token validation against an external identity authority.

This module provides:
- OpenID discovery of the authority's issuer and signing keys
- A time-bounded cache of the authority's JSON Web Key Set, refetched early
  (at most once per refresh interval) when a token names an unknown key
- JWT signature, expiry, issuer and audience verification
- The authenticated principal, carrying token claims exactly as issued

Claims are never remapped to local names; the principal exposes the
authority's own claim vocabulary. Nothing here retries: a failed call to the
authority surfaces as a TokenError.
"""

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

import httpx
from jose import ExpiredSignatureError, JWTError, jwt

from postcode_api.core.config import Settings
from postcode_api.core.errors import AuthenticationError
from postcode_api.core.logging import get_logger

logger = get_logger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"


class TokenError(AuthenticationError):
    """Exception raised when a bearer token cannot be validated."""


@dataclass(frozen=True)
class AuthenticatedPrincipal:
    """Identity established from a validated bearer token."""

    subject: Optional[str]
    claims: Mapping[str, Any] = field(default_factory=dict)

    @property
    def client_id(self) -> Optional[str]:
        """Identifier used to tag log records for this caller."""
        for claim in ("azp", "client_id", "sub"):
            value = self.claims.get(claim)
            if value:
                return str(value)
        return None

    @property
    def scopes(self) -> frozenset[str]:
        """
        Scopes granted by the token.

        Reads the space-delimited ``scope`` claim as well as the list-valued
        ``scp`` and ``permissions`` claims some authorities issue instead.
        """
        granted: set[str] = set()
        for claim in ("scope", "scp", "permissions"):
            value = self.claims.get(claim)
            if isinstance(value, str):
                granted.update(value.split())
            elif isinstance(value, (list, tuple)):
                granted.update(str(item) for item in value)
        return frozenset(granted)


@dataclass(frozen=True)
class _SigningKeys:
    issuer: str
    keys: tuple[Mapping[str, Any], ...]
    fetched_at: float


class TokenValidator:
    """
    Validates bearer tokens issued by one identity authority.

    Args:
        authority: Authority base URL
        audience: Expected ``aud`` claim
        algorithms: Accepted signing algorithms
        cache_ttl: Seconds a fetched key set is reused
        refresh_interval: Minimum seconds between refetches forced by an
            unknown key id
        timeout: Timeout in seconds for calls to the authority
        transport: Optional httpx transport (used to stub the authority)

    Example:
        >>> validator = TokenValidator.from_settings(get_settings())
        >>> principal = await validator.validate(token)
        >>> principal.claims["sub"]
        'user-123'
    """

    def __init__(
        self,
        authority: str,
        audience: str,
        *,
        algorithms: tuple[str, ...] = ("RS256",),
        cache_ttl: float = 3600,
        refresh_interval: float = 30,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.authority = authority.rstrip("/")
        self.audience = audience
        self.algorithms = tuple(algorithms)
        self.cache_ttl = cache_ttl
        self.refresh_interval = refresh_interval
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._signing_keys: Optional[_SigningKeys] = None
        self._last_forced_refresh: Optional[float] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "TokenValidator":
        return cls(
            settings.authentication_authority,
            settings.authentication_api_name,
            algorithms=settings.algorithms,
            cache_ttl=settings.authentication_jwks_cache_seconds,
            refresh_interval=settings.authentication_jwks_refresh_seconds,
            timeout=settings.authentication_timeout_seconds,
            transport=transport,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                transport=self._transport,
                timeout=self.timeout,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client used to reach the authority."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, url: str) -> dict[str, Any]:
        try:
            response = await self.client.get(url)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "Identity authority request failed",
                url=url,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TokenError(
                "Identity authority unavailable",
                code="AUTHORITY_UNAVAILABLE",
                url=url,
            ) from e
        if not isinstance(payload, dict):
            raise TokenError(
                "Identity authority returned an unexpected document",
                code="AUTHORITY_INVALID_RESPONSE",
                url=url,
            )
        return payload

    async def _fetch_signing_keys(self) -> _SigningKeys:
        discovery = await self._get_json(f"{self.authority}{DISCOVERY_PATH}")
        jwks_uri = discovery.get("jwks_uri")
        if not jwks_uri:
            raise TokenError(
                "Discovery document has no jwks_uri",
                code="AUTHORITY_INVALID_RESPONSE",
            )
        jwks = await self._get_json(jwks_uri)
        keys = tuple(
            MappingProxyType(dict(key))
            for key in jwks.get("keys", [])
            if isinstance(key, dict)
        )
        issuer = discovery.get("issuer") or f"{self.authority}/"
        logger.debug(
            "Fetched signing keys",
            jwks_uri=jwks_uri,
            key_count=len(keys),
        )
        return _SigningKeys(issuer=issuer, keys=keys, fetched_at=time.monotonic())

    async def get_signing_keys(self) -> _SigningKeys:
        """
        Return the authority's signing keys, refreshing once the cache expires.

        Returns:
            Cached or freshly fetched signing keys

        Raises:
            TokenError: If the authority cannot be reached
        """
        cached = self._signing_keys
        if cached is not None and time.monotonic() - cached.fetched_at < self.cache_ttl:
            return cached
        fresh = await self._fetch_signing_keys()
        self._signing_keys = fresh
        return fresh

    async def refresh_signing_keys(self) -> Optional[_SigningKeys]:
        """
        Refetch the key set after a token named a key id it does not contain.

        Authorities publish new keys before signing with them, so an unknown
        key id usually means the cached set is stale. At most one forced
        refresh runs per refresh interval; otherwise None is returned.

        Returns:
            Freshly fetched signing keys, or None when rate limited

        Raises:
            TokenError: If the authority cannot be reached
        """
        now = time.monotonic()
        last = self._last_forced_refresh
        if last is not None and now - last < self.refresh_interval:
            return None
        self._last_forced_refresh = now
        fresh = await self._fetch_signing_keys()
        self._signing_keys = fresh
        logger.info("Signing keys refreshed for unknown key id", key_count=len(fresh.keys))
        return fresh

    @staticmethod
    def _select_key(
        keys: tuple[Mapping[str, Any], ...], kid: Optional[str]
    ) -> Optional[Mapping[str, Any]]:
        if kid:
            for key in keys:
                if key.get("kid") == kid:
                    return key
            return None
        if len(keys) == 1:
            return keys[0]
        return None

    async def validate(self, token: str) -> AuthenticatedPrincipal:
        """
        Validate a bearer token and build the principal it identifies.

        Args:
            token: Encoded JWT

        Returns:
            AuthenticatedPrincipal with the token's claims unmodified

        Raises:
            TokenError: If the token is empty, malformed, expired, signed with
                an unknown key, or issued for another issuer or audience
        """
        if not token:
            raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

        try:
            header = jwt.get_unverified_header(token)
        except JWTError as e:
            raise TokenError("Malformed token", code="TOKEN_MALFORMED") from e

        algorithm = header.get("alg")
        if algorithm not in self.algorithms:
            raise TokenError(
                "Token signing algorithm not accepted",
                code="TOKEN_ALGORITHM_REJECTED",
                algorithm=algorithm,
            )

        kid = header.get("kid")
        signing_keys = await self.get_signing_keys()
        key = self._select_key(signing_keys.keys, kid)
        if key is None and kid:
            refreshed = await self.refresh_signing_keys()
            if refreshed is not None:
                signing_keys = refreshed
                key = self._select_key(signing_keys.keys, kid)
        if key is None:
            raise TokenError(
                "Token signing key not recognised",
                code="TOKEN_KEY_UNKNOWN",
                kid=kid,
            )

        try:
            claims = jwt.decode(
                token,
                dict(key),
                algorithms=[algorithm],
                audience=self.audience,
                issuer=signing_keys.issuer,
                options={
                    "verify_at_hash": False,
                    "require_aud": True,
                    "require_iss": True,
                    "require_exp": True,
                },
            )
        except ExpiredSignatureError as e:
            raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
        except JWTError as e:
            raise TokenError(
                "Invalid token",
                code="TOKEN_INVALID",
                original_error=str(e),
            ) from e

        return AuthenticatedPrincipal(
            subject=claims.get("sub"),
            claims=MappingProxyType(claims),
        )
