"""
Test suite for bearer token validation.

Tests cover signature, expiry, issuer and audience checks against a stub
authority, signing key caching, authority failures and the principal built
from validated claims.
"""

import time

import pytest
from jose import jwt

from postcode_api.core.security import (
    AuthenticatedPrincipal,
    TokenError,
    TokenValidator,
)

AUTHORITY = "https://identity.test/"
AUDIENCE = "postcode-api"


@pytest.fixture
def validator(authority) -> TokenValidator:
    """Token validator bound to the fake authority."""
    return TokenValidator(AUTHORITY, AUDIENCE, transport=authority.transport)


# ============================================================================
# UNIT TESTS - Token Validation
# ============================================================================


class TestTokenValidation:
    """Test suite for TokenValidator.validate."""

    @pytest.mark.asyncio
    async def test_valid_token_returns_principal(self, validator, make_token):
        principal = await validator.validate(make_token())

        assert principal.subject == "user-123"
        assert principal.client_id == "client-abc"
        assert principal.claims["aud"] == AUDIENCE

    @pytest.mark.asyncio
    async def test_claims_are_kept_exactly_as_issued(self, validator, make_token):
        """
        Test claims are not remapped.

        Namespaced and short claim names come through untouched and the
        claim mapping cannot be modified.
        """
        token = make_token(
            **{"https://example.com/roles": ["reader"], "oid": "object-1"}
        )

        principal = await validator.validate(token)

        assert principal.claims["https://example.com/roles"] == ["reader"]
        assert principal.claims["oid"] == "object-1"
        assert principal.claims["sub"] == "user-123"
        with pytest.raises(TypeError):
            principal.claims["sub"] = "someone-else"

    @pytest.mark.asyncio
    async def test_expired_token_is_rejected(self, validator, make_token):
        now = int(time.time())
        token = make_token(iat=now - 7200, exp=now - 3600)

        with pytest.raises(TokenError) as exc_info:
            await validator.validate(token)

        assert exc_info.value.code == "TOKEN_EXPIRED"

    @pytest.mark.asyncio
    async def test_wrong_audience_is_rejected(self, validator, make_token):
        with pytest.raises(TokenError) as exc_info:
            await validator.validate(make_token(aud="another-api"))

        assert exc_info.value.code == "TOKEN_INVALID"

    @pytest.mark.asyncio
    async def test_missing_audience_is_rejected(self, validator, make_token):
        with pytest.raises(TokenError):
            await validator.validate(make_token(aud=None))

    @pytest.mark.asyncio
    async def test_wrong_issuer_is_rejected(self, validator, make_token):
        with pytest.raises(TokenError) as exc_info:
            await validator.validate(make_token(iss="https://impostor.test/"))

        assert exc_info.value.code == "TOKEN_INVALID"

    @pytest.mark.asyncio
    async def test_unknown_key_id_is_rejected(self, validator, make_token):
        with pytest.raises(TokenError) as exc_info:
            await validator.validate(make_token(kid="rotated-away"))

        assert exc_info.value.code == "TOKEN_KEY_UNKNOWN"

    @pytest.mark.asyncio
    async def test_token_without_key_id_uses_single_key(self, validator, make_token):
        principal = await validator.validate(make_token(kid=None))

        assert principal.subject == "user-123"

    @pytest.mark.asyncio
    async def test_symmetric_algorithm_is_rejected(self, validator):
        token = jwt.encode(
            {"sub": "user-123", "aud": AUDIENCE, "iss": AUTHORITY},
            "shared-secret",
            algorithm="HS256",
        )

        with pytest.raises(TokenError) as exc_info:
            await validator.validate(token)

        assert exc_info.value.code == "TOKEN_ALGORITHM_REJECTED"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", ["not-a-jwt", "a.b.c"])
    async def test_malformed_token_is_rejected(self, validator, authority, token):
        with pytest.raises(TokenError) as exc_info:
            await validator.validate(token)

        assert exc_info.value.code == "TOKEN_MALFORMED"
        assert authority.calls == []

    @pytest.mark.asyncio
    async def test_empty_token_is_rejected(self, validator):
        with pytest.raises(TokenError) as exc_info:
            await validator.validate("")

        assert exc_info.value.code == "EMPTY_TOKEN"

    @pytest.mark.asyncio
    async def test_tampered_signature_is_rejected(self, validator, make_token):
        header, payload, signature = make_token().split(".")
        tampered = ".".join([header, payload, signature[::-1]])

        with pytest.raises(TokenError) as exc_info:
            await validator.validate(tampered)

        assert exc_info.value.code == "TOKEN_INVALID"


# ============================================================================
# UNIT TESTS - Authority Access
# ============================================================================


class TestSigningKeyCache:
    """Test suite for discovery and signing key caching."""

    @pytest.mark.asyncio
    async def test_keys_are_reused_within_ttl(self, validator, authority, make_token):
        await validator.validate(make_token())
        await validator.validate(make_token())

        assert authority.calls == [
            "https://identity.test/.well-known/openid-configuration",
            "https://identity.test/.well-known/jwks.json",
        ]

    @pytest.mark.asyncio
    async def test_keys_are_refetched_after_ttl(self, authority, make_token):
        validator = TokenValidator(
            AUTHORITY, AUDIENCE, cache_ttl=0, transport=authority.transport
        )

        await validator.validate(make_token())
        await validator.validate(make_token())

        assert len(authority.calls) == 4

    @pytest.mark.asyncio
    async def test_unreachable_authority_raises_token_error(
        self, validator, authority, make_token
    ):
        authority.available = False

        with pytest.raises(TokenError) as exc_info:
            await validator.validate(make_token())

        assert exc_info.value.code == "AUTHORITY_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_authority_recovers_after_outage(self, validator, authority, make_token):
        authority.available = False
        with pytest.raises(TokenError):
            await validator.validate(make_token())

        authority.available = True
        principal = await validator.validate(make_token())

        assert principal.subject == "user-123"

    @pytest.mark.asyncio
    async def test_aclose_releases_client(self, validator, make_token):
        await validator.validate(make_token())
        assert validator._client is not None

        await validator.aclose()

        assert validator._client is None

    def test_from_settings(self, settings_factory):
        settings = settings_factory(
            authentication_algorithms="RS256, ES256",
            authentication_jwks_cache_seconds=60,
            authentication_jwks_refresh_seconds=10,
        )

        validator = TokenValidator.from_settings(settings)

        assert validator.authority == "https://identity.test"
        assert validator.audience == AUDIENCE
        assert validator.algorithms == ("RS256", "ES256")
        assert validator.cache_ttl == 60
        assert validator.refresh_interval == 10


# ============================================================================
# UNIT TESTS - Key Rotation
# ============================================================================


class TestSigningKeyRotation:
    """Test suite for key sets refreshed early by an unknown key id."""

    @staticmethod
    def _rotate(authority, jwks, kid: str) -> None:
        authority.jwks = {"keys": [dict(jwks["keys"][0], kid=kid)]}

    @pytest.mark.asyncio
    async def test_rotated_key_is_fetched_before_ttl(
        self, validator, authority, jwks, make_token
    ):
        """
        Test a token signed with a newly published key.

        The cached key set does not name the key, so it is refetched once
        and the token is accepted without waiting for the cache to expire.
        """
        await validator.validate(make_token())
        self._rotate(authority, jwks, "rotated-key-2")

        principal = await validator.validate(make_token(kid="rotated-key-2"))

        assert principal.subject == "user-123"
        assert len(authority.calls) == 4

    @pytest.mark.asyncio
    async def test_refreshed_keys_are_cached(self, validator, authority, jwks, make_token):
        await validator.validate(make_token())
        self._rotate(authority, jwks, "rotated-key-2")
        await validator.validate(make_token(kid="rotated-key-2"))

        await validator.validate(make_token(kid="rotated-key-2"))

        assert len(authority.calls) == 4

    @pytest.mark.asyncio
    async def test_forced_refresh_is_rate_limited(self, validator, authority, make_token):
        with pytest.raises(TokenError):
            await validator.validate(make_token(kid="unpublished-1"))
        assert len(authority.calls) == 4

        with pytest.raises(TokenError) as exc_info:
            await validator.validate(make_token(kid="unpublished-2"))

        assert exc_info.value.code == "TOKEN_KEY_UNKNOWN"
        assert len(authority.calls) == 4

    @pytest.mark.asyncio
    async def test_forced_refresh_allowed_after_interval(self, authority, make_token):
        validator = TokenValidator(
            AUTHORITY, AUDIENCE, refresh_interval=0, transport=authority.transport
        )

        for kid in ("unpublished-1", "unpublished-2"):
            with pytest.raises(TokenError):
                await validator.validate(make_token(kid=kid))

        assert len(authority.calls) == 6


# ============================================================================
# UNIT TESTS - Principal
# ============================================================================


class TestAuthenticatedPrincipal:
    """Test suite for principal claim accessors."""

    def test_scopes_merge_claim_styles(self):
        principal = AuthenticatedPrincipal(
            subject="user-1",
            claims={"scope": "a b", "scp": ["c"], "permissions": ["d"]},
        )

        assert principal.scopes == frozenset({"a", "b", "c", "d"})

    def test_scopes_empty_without_claims(self):
        assert AuthenticatedPrincipal(subject=None).scopes == frozenset()

    @pytest.mark.parametrize(
        "claims,expected",
        [
            ({"azp": "app", "client_id": "cid", "sub": "s"}, "app"),
            ({"client_id": "cid", "sub": "s"}, "cid"),
            ({"sub": "s"}, "s"),
            ({}, None),
        ],
    )
    def test_client_id_precedence(self, claims, expected):
        principal = AuthenticatedPrincipal(subject=claims.get("sub"), claims=claims)

        assert principal.client_id == expected
