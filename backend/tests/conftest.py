"""
Pytest configuration and shared test fixtures.

This module provides the test settings, an RSA signing key with its JWKS, a
fake identity authority served through httpx.MockTransport, a token factory,
and application and client fixtures built with the application factory.
"""

import time
from typing import Any, Callable, Generator, Optional
from unittest.mock import AsyncMock

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwk, jwt

from postcode_api.core.config import Settings
from postcode_api.core.security import TokenValidator
from postcode_api.main import create_app
from postcode_api.schemas.postal_codes import PostalCode

AUTHORITY = "https://identity.test"
ISSUER = f"{AUTHORITY}/"
JWKS_URI = f"{AUTHORITY}/.well-known/jwks.json"
AUDIENCE = "postcode-api"
KEY_ID = "test-key-1"


class FakeAuthority:
    """
    Identity authority stand-in serving discovery and JWKS documents.

    Records every URL requested so tests can assert how often the
    authority was contacted.
    """

    def __init__(self, jwks: dict[str, Any], issuer: str = ISSUER):
        self.jwks = jwks
        self.issuer = issuer
        self.available = True
        self.calls: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(str(request.url))
        if not self.available:
            raise httpx.ConnectError("authority unreachable", request=request)
        if request.url.path == "/.well-known/openid-configuration":
            return httpx.Response(
                200,
                json={"issuer": self.issuer, "jwks_uri": JWKS_URI},
            )
        if request.url.path == "/.well-known/jwks.json":
            return httpx.Response(200, json=self.jwks)
        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture(scope="session")
def signing_key_pem() -> str:
    """
    Generate an RSA private key for signing test tokens.

    Returns:
        PEM encoded private key
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture(scope="session")
def jwks(signing_key_pem: str) -> dict[str, Any]:
    """
    Provide the public JWKS matching the signing key.

    Returns:
        JSON Web Key Set with a single RS256 key
    """
    public_key = jwk.construct(signing_key_pem, "RS256").public_key().to_dict()
    public_key.update({"kid": KEY_ID, "use": "sig"})
    return {"keys": [public_key]}


@pytest.fixture
def authority(jwks: dict[str, Any]) -> FakeAuthority:
    """Provide a reachable fake identity authority."""
    return FakeAuthority(jwks)


@pytest.fixture
def make_token(signing_key_pem: str) -> Callable[..., str]:
    """
    Provide a factory for signed bearer tokens.

    Keyword arguments override or add claims; a claim set to None is
    removed. ``kid`` selects the key id placed in the header.

    Example:
        def test_something(make_token):
            token = make_token(scope="postcodes:read")
    """

    def _make(kid: Optional[str] = KEY_ID, **claims: Any) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {
            "iss": ISSUER,
            "aud": AUDIENCE,
            "sub": "user-123",
            "azp": "client-abc",
            "iat": now,
            "exp": now + 3600,
        }
        payload.update(claims)
        payload = {name: value for name, value in payload.items() if value is not None}
        headers = {"kid": kid} if kid else None
        return jwt.encode(payload, signing_key_pem, algorithm="RS256", headers=headers)

    return _make


def build_settings(**overrides: Any) -> Settings:
    """Build settings for tests without reading a .env file."""
    values: dict[str, Any] = {
        "environment": "development",
        "authentication_authority": ISSUER,
        "authentication_api_name": AUDIENCE,
        "authentication_swagger_client_id": "explorer-client",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def test_settings() -> Settings:
    """Development settings pointing at the fake authority."""
    return build_settings()


@pytest.fixture
def postal_code_logic() -> AsyncMock:
    """
    Mock business logic provider.

    Returns:
        AsyncMock whose get_postal_code returns a Minneapolis record
    """
    logic = AsyncMock()
    logic.get_postal_code.return_value = PostalCode(
        code="55401", city="Minneapolis", state="MN"
    )
    return logic


@pytest.fixture
def app_factory(
    authority: FakeAuthority, postal_code_logic: AsyncMock
) -> Callable[..., FastAPI]:
    """
    Provide a factory building the application against the fake authority.

    Keyword arguments are applied as settings overrides.
    """

    def _build(**overrides: Any) -> FastAPI:
        settings = build_settings(**overrides)
        validator = TokenValidator.from_settings(settings, transport=authority.transport)
        return create_app(
            settings,
            token_validator=validator,
            postal_code_logic=postal_code_logic,
        )

    return _build


@pytest.fixture
def app(app_factory: Callable[..., FastAPI]) -> FastAPI:
    """Application built with development settings."""
    return app_factory()


@pytest.fixture
def test_client(app: FastAPI) -> Generator[TestClient, None, None]:
    """
    Create a synchronous test client for the application.

    Redirects are not followed so fallback behaviour can be asserted.

    Yields:
        TestClient: Synchronous test client for the app
    """
    with TestClient(app, follow_redirects=False) as client:
        yield client


@pytest.fixture
def auth_headers(make_token: Callable[..., str]) -> dict[str, str]:
    """Authorization header carrying a valid bearer token."""
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    """Provide build_settings to tests that construct settings directly."""
    return build_settings
