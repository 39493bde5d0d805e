"""
Pytest Fixtures for MCP OAuth Demo Tests

Provides an in-process fake authorization server (metadata + JWKS served
through httpx.MockTransport), RSA signing keys, token factories and a
controllable clock for cache TTL tests.
"""

import time
from dataclasses import dataclass, field
from typing import Any

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

ISSUER = "https://issuer.example/as"
METADATA_URL = f"{ISSUER}/.well-known/openid-configuration"
JWKS_URI = f"{ISSUER}/.well-known/jwks.json"
TOKEN_ENDPOINT = f"{ISSUER}/oauth2/token"
AUTHORIZATION_ENDPOINT = f"{ISSUER}/oauth2/authorize"
REGISTRATION_ENDPOINT = "https://dcr.example/v1/register"
RESOURCE = "http://mcp.example"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class SigningKey:
    """RSA key pair published in the fake JWKS."""

    kid: str
    private_key: rsa.RSAPrivateKey

    def public_jwk(self) -> dict[str, Any]:
        jwk = RSAAlgorithm.to_jwk(self.private_key.public_key(), as_dict=True)
        jwk.update({"kid": self.kid, "alg": "RS256", "use": "sig"})
        return jwk

    def sign(self, claims: dict[str, Any], algorithm: str = "RS256", **headers: Any) -> str:
        return jwt.encode(
            claims,
            self.private_key,
            algorithm=algorithm,
            headers={"kid": self.kid, **headers},
        )


@dataclass
class FakeAuthorizationServer:
    """Serves metadata, JWKS, DCR and token endpoints; records every request."""

    issuer: str = ISSUER
    keys: list[dict[str, Any]] = field(default_factory=list)
    fail_with: int | None = None
    requests: list[httpx.Request] = field(default_factory=list)
    token_response: dict[str, Any] = field(
        default_factory=lambda: {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "token_type": "Bearer",
            "expires_in": 3600,
        }
    )

    @property
    def metadata(self) -> dict[str, Any]:
        return {
            "issuer": self.issuer,
            "authorization_endpoint": AUTHORIZATION_ENDPOINT,
            "token_endpoint": TOKEN_ENDPOINT,
            "jwks_uri": JWKS_URI,
            "response_types_supported": ["code"],
            "code_challenge_methods_supported": ["S256"],
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with:
            return httpx.Response(self.fail_with, json={"error": "server_error"})

        path = request.url.path
        if path.endswith("/.well-known/openid-configuration") or path.endswith(
            "/.well-known/oauth-authorization-server"
        ):
            return httpx.Response(200, json=self.metadata)
        if path.endswith("/.well-known/jwks.json"):
            return httpx.Response(200, json={"keys": self.keys})
        if str(request.url) == REGISTRATION_ENDPOINT:
            return httpx.Response(
                201,
                json={
                    "client_id": "dcr-client-1",
                    "client_secret": "dcr-secret-1",
                    "client_id_issued_at": 1_700_000_000,
                    "redirect_uris": ["http://localhost:3002/callback"],
                    "scope": "openid profile email mcp-api/read",
                },
            )
        if str(request.url) == TOKEN_ENDPOINT:
            return httpx.Response(200, json=dict(self.token_response))
        return httpx.Response(404, json={"error": "not_found"})

    def count(self, suffix: str) -> int:
        """Number of requests whose URL ends with ``suffix``."""
        return sum(1 for r in self.requests if str(r.url).endswith(suffix))


@pytest.fixture(scope="session")
def signing_key() -> SigningKey:
    """Primary signing key (generated once per session)."""
    return SigningKey(
        kid="key-1",
        private_key=rsa.generate_private_key(public_exponent=65537, key_size=2048),
    )


@pytest.fixture(scope="session")
def other_signing_key() -> SigningKey:
    """A key that is NOT published in the JWKS."""
    return SigningKey(
        kid="key-2",
        private_key=rsa.generate_private_key(public_exponent=65537, key_size=2048),
    )


@pytest.fixture
def auth_server(signing_key: SigningKey) -> FakeAuthorizationServer:
    """Fake authorization server publishing the primary signing key."""
    return FakeAuthorizationServer(keys=[signing_key.public_jwk()])


@pytest.fixture
def http_client(auth_server: FakeAuthorizationServer) -> httpx.AsyncClient:
    """AsyncClient routed to the fake authorization server."""
    return httpx.AsyncClient(transport=httpx.MockTransport(auth_server.handler))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_claims():
    """Factory for a valid claim set; override any claim by keyword."""

    def _make(**overrides: Any) -> dict[str, Any]:
        now = int(time.time())
        claims = {
            "iss": ISSUER,
            "sub": "user-123",
            "aud": RESOURCE,
            "client_id": "client-abc",
            "username": "alice",
            "scope": "openid mcp-api/read",
            "iat": now,
            "exp": now + 3600,
        }
        claims.update(overrides)
        return {k: v for k, v in claims.items() if v is not None}

    return _make


@pytest.fixture
def pkce_challenge() -> dict:
    """Generate PKCE code verifier and challenge."""
    from mcp_oauth_demo.client.auth_flow import generate_pkce

    pkce = generate_pkce()
    return {"verifier": pkce.code_verifier, "challenge": pkce.code_challenge}


@pytest.fixture
def settings():
    """Settings for a resource server at RESOURCE, independent of the environment."""
    from mcp_oauth_demo.config import Settings

    return Settings(
        mcp_server_url=RESOURCE,
        cognito_auth_server_url=METADATA_URL,
        dcr_endpoint=REGISTRATION_ENDPOINT,
    )


@pytest.fixture
def resource_server(settings, http_client):
    """Resource server whose metadata cache talks to the fake authorization server."""
    from mcp_oauth_demo.config import OAUTH_SCOPES
    from mcp_oauth_demo.oauth.metadata_cache import MetadataCache
    from mcp_oauth_demo.oauth.resource_server import OAuthResourceServer

    return OAuthResourceServer(
        resource=RESOURCE,
        authorization_servers=[settings.authorization_server_url],
        resource_metadata_url=settings.protected_resource_metadata_url,
        cache=MetadataCache(settings.auth_server_metadata_url, http_client=http_client),
        scopes_supported=list(OAUTH_SCOPES.keys()),
        resource_documentation=f"{RESOURCE}/docs",
    )


@pytest.fixture
def app(settings, resource_server):
    """FastAPI app wired to the fake authorization server."""
    from mcp_oauth_demo.http_server import create_app

    return create_app(settings=settings, resource_server=resource_server)


@pytest.fixture
def client(app):
    """Synchronous test client for the resource server."""
    from fastapi.testclient import TestClient

    return TestClient(app, base_url=RESOURCE)


@pytest.fixture
def mixed_client(app, auth_server: FakeAuthorizationServer) -> httpx.AsyncClient:
    """
    AsyncClient that reaches the resource server app in-process for RESOURCE
    and the fake authorization server for every other host.
    """
    asgi = httpx.ASGITransport(app=app)
    resource_host = httpx.URL(RESOURCE).host

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == resource_host:
            return await asgi.handle_async_request(request)
        return auth_server.handler(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
