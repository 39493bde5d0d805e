"""
Unit tests for the OAuth 2.1 resource server challenge responder.

Run with: pytest tests/unit/test_oauth_resource_server.py -v
"""

import time

import pytest
from fastapi import Request

from mcp_oauth_demo.oauth.resource_server import (
    MISSING_TOKEN_DESCRIPTION,
    build_challenge_header,
    extract_bearer_token,
    extract_user_context,
)

from conftest import RESOURCE

pytestmark = [pytest.mark.unit, pytest.mark.oauth]

PRM_URL = f"{RESOURCE}/.well-known/oauth-protected-resource"


class TestChallengeHeader:
    """Tests for WWW-Authenticate construction."""

    def test_missing_token_challenge(self):
        assert build_challenge_header(PRM_URL) == f'Bearer resource_metadata="{PRM_URL}"'

    def test_invalid_token_challenge(self):
        header = build_challenge_header(
            PRM_URL, error="invalid_token", error_description="Token has expired"
        )

        assert header == (
            f'Bearer resource_metadata="{PRM_URL}", error="invalid_token", '
            f'error_description="Token has expired"'
        )

    def test_quotes_in_description_do_not_break_header(self):
        header = build_challenge_header(
            PRM_URL, error="invalid_token", error_description='bad "alg" \\ value'
        )

        assert header.endswith("error_description=\"bad 'alg' ' value\"")


class TestBearerExtraction:
    """Tests for Authorization header parsing."""

    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("bearer abc", "abc"),
            (None, None),
            ("", None),
            ("Bearer", None),
            ("Bearer ", None),
            ("Basic dXNlcjpwYXNz", None),
            ("Bearer two tokens", None),
        ],
    )
    def test_extract_bearer_token(self, header, expected):
        assert extract_bearer_token(header) == expected


class TestUserContextFromToken:
    """Tests for extracting user context from OAuth token claims."""

    def test_extract_scopes_from_token(self):
        context = extract_user_context({"sub": "u1", "scope": "openid mcp-api/read"})

        assert context["scopes"] == ["openid", "mcp-api/read"]

    def test_username_falls_back_to_sub(self):
        context = extract_user_context({"sub": "u1"})

        assert context["username"] == "u1"
        assert context["scopes"] == []

    def test_cognito_username_claim(self):
        context = extract_user_context({"sub": "u1", "cognito:username": "alice"})

        assert context["username"] == "alice"

    @pytest.mark.parametrize("scope", [42, {"openid": True}, None])
    def test_non_string_scope_yields_no_scopes(self, scope):
        assert extract_user_context({"sub": "u1", "scope": scope})["scopes"] == []

    def test_scope_list_claim(self):
        context = extract_user_context({"sub": "u1", "scope": ["openid", 3, "mcp-api/read"]})

        assert context["scopes"] == ["openid", "mcp-api/read"]

    def test_claims_kept_unchanged(self):
        claims = {"sub": "u1", "client_id": "c1", "scope": "openid"}
        context = extract_user_context(claims)

        assert context["claims"] is claims
        assert context["client_id"] == "c1"


class TestOAuthMiddleware:
    """Tests for the authorization gate in front of protected routes."""

    def test_no_authorization_header(self, client):
        response = client.get("/v1/contexts")

        assert response.status_code == 401
        assert "resource_metadata=" in response.headers["WWW-Authenticate"]
        assert response.headers["WWW-Authenticate"] == (
            f'Bearer resource_metadata="{PRM_URL}"'
        )
        assert response.json() == {
            "error": "unauthorized",
            "error_description": MISSING_TOKEN_DESCRIPTION,
        }

    def test_non_bearer_scheme_treated_as_missing(self, client):
        response = client.get("/v1/contexts", headers={"Authorization": "Basic dXNlcjpwYXNz"})

        assert response.status_code == 401
        assert "error=" not in response.headers["WWW-Authenticate"]

    def test_expired_token(self, client, signing_key, make_claims):
        token = signing_key.sign(make_claims(exp=int(time.time()) - 60))

        response = client.get("/v1/contexts", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        challenge = response.headers["WWW-Authenticate"]
        assert f'resource_metadata="{PRM_URL}"' in challenge
        assert 'error="invalid_token"' in challenge
        assert "expired" in response.json()["error_description"]
        assert f'error_description="{response.json()["error_description"]}"' in challenge

    def test_unknown_key(self, client, other_signing_key, make_claims):
        token = other_signing_key.sign(make_claims())

        response = client.get("/v1/contexts", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_token"
        assert "signing key not found" in response.json()["error_description"]

    def test_garbage_token(self, client):
        response = client.get("/v1/contexts", headers={"Authorization": "Bearer garbage"})

        assert response.status_code == 401
        assert 'error="invalid_token"' in response.headers["WWW-Authenticate"]

    def test_metadata_outage_is_a_401_without_internals(
        self, client, signing_key, make_claims, auth_server
    ):
        auth_server.fail_with = 500
        token = signing_key.sign(make_claims())

        response = client.get("/v1/contexts", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert "Traceback" not in response.text

    def test_valid_token_reaches_route(self, client, signing_key, make_claims):
        token = signing_key.sign(make_claims())

        response = client.get("/v1/contexts", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()[0]["id"] == "ctx_123456"

    def test_claims_attached_to_request_state(self, app, client, signing_key, make_claims):
        seen = {}

        @app.get("/v1/whoami")
        async def whoami(request: Request):
            seen["claims"] = request.state.claims
            seen["user"] = request.state.user
            return {}

        claims = make_claims()
        response = client.get(
            "/v1/whoami", headers={"Authorization": f"Bearer {signing_key.sign(claims)}"}
        )

        assert response.status_code == 200
        assert seen["claims"] == claims
        assert seen["user"]["username"] == "alice"

    def test_non_string_audience_is_not_a_server_error(self, client, signing_key, make_claims):
        token = signing_key.sign(make_claims(aud=123))

        response = client.get("/v1/contexts", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200

    def test_enforced_audience_mismatch_is_a_401(self, settings, http_client, signing_key, make_claims):
        from fastapi.testclient import TestClient

        from mcp_oauth_demo.http_server import create_app
        from mcp_oauth_demo.oauth.metadata_cache import MetadataCache
        from mcp_oauth_demo.oauth.resource_server import OAuthResourceServer

        server = OAuthResourceServer(
            resource=RESOURCE,
            authorization_servers=[settings.authorization_server_url],
            resource_metadata_url=PRM_URL,
            cache=MetadataCache(settings.auth_server_metadata_url, http_client=http_client),
            enforce_audience=True,
        )
        client = TestClient(create_app(settings=settings, resource_server=server), base_url=RESOURCE)
        token = signing_key.sign(make_claims(aud=123))

        response = client.get("/v1/contexts", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_token"

    def test_public_paths_skip_auth(self, client):
        assert client.get("/health").status_code == 200
        assert client.get("/.well-known/oauth-protected-resource").status_code == 200

    def test_cors_preflight_not_challenged(self, client):
        response = client.options(
            "/v1/contexts",
            headers={
                "Origin": "http://localhost:3002",
                "Access-Control-Request-Method": "GET",
                "Access-Control-Request-Headers": "Authorization",
            },
        )

        assert response.status_code == 200
