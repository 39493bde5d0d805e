"""
OAuth 2.1 Authorization Code Flow

Client-side pieces of the login:
- PKCE (S256) verifier/challenge generation
- Dynamic Client Registration (RFC 7591)
- authorization URL construction with an RFC 8707 ``resource`` indicator
- code exchange and refresh against the token endpoint

PKCE verifiers are kept per authorization attempt, keyed by ``state``, so
concurrent logins never overwrite each other.
"""

import base64
import hashlib
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from ..oauth.exceptions import (
    AuthorizationStateError,
    ClientRegistrationError,
    TokenRequestError,
)
from ..oauth.metadata import AuthServerMetadata

logger = logging.getLogger(__name__)

PENDING_AUTHORIZATION_TTL = 600  # 10 minutes


@dataclass(frozen=True)
class PKCEPair:
    code_verifier: str
    code_challenge: str


def generate_pkce() -> PKCEPair:
    """Generate a PKCE code verifier and its S256 challenge."""
    code_verifier = secrets.token_urlsafe(32)
    code_challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(code_verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )
    return PKCEPair(code_verifier=code_verifier, code_challenge=code_challenge)


@dataclass
class PendingAuthorization:
    """One in-flight authorization attempt."""

    state: str
    code_verifier: str
    created_at: float


@dataclass
class PendingAuthorizationStore:
    """
    In-memory store of in-flight authorization attempts, keyed by state.

    Entries are single-use and expire after ``ttl`` seconds.
    """

    ttl: int = PENDING_AUTHORIZATION_TTL
    clock: Callable[[], float] = time.time
    _pending: dict[str, PendingAuthorization] = field(default_factory=dict, repr=False)

    def create(self, code_verifier: str) -> PendingAuthorization:
        """Register a new attempt under a fresh random state."""
        self._purge_expired()
        pending = PendingAuthorization(
            state=secrets.token_hex(16),
            code_verifier=code_verifier,
            created_at=self.clock(),
        )
        self._pending[pending.state] = pending
        return pending

    def consume(self, state: str | None) -> PendingAuthorization:
        """
        Remove and return the attempt for ``state``.

        Raises:
            AuthorizationStateError: If the state is unknown, used, or expired
        """
        pending = self._pending.pop(state, None) if state else None
        if pending is None:
            raise AuthorizationStateError("Unknown or already used authorization state")
        if self.clock() - pending.created_at >= self.ttl:
            raise AuthorizationStateError("Authorization attempt has expired")
        return pending

    def _purge_expired(self) -> None:
        now = self.clock()
        expired = [s for s, p in self._pending.items() if now - p.created_at >= self.ttl]
        for state in expired:
            del self._pending[state]

    def __len__(self) -> int:
        return len(self._pending)


def _with_expiry(tokens: dict[str, Any], now: float) -> dict[str, Any]:
    """Add an absolute ``expires_at`` (epoch seconds) when ``expires_in`` is given."""
    expires_in = tokens.get("expires_in")
    if expires_in is not None:
        tokens["expires_at"] = now + float(expires_in)
    return tokens


def is_token_expired(tokens: dict[str, Any], now: float | None = None) -> bool:
    """True when the token set carries an ``expires_at`` in the past."""
    expires_at = tokens.get("expires_at")
    if expires_at is None:
        return False
    return (now if now is not None else time.time()) > expires_at


async def _post(
    http_client: httpx.AsyncClient | None, url: str, **kwargs: Any
) -> httpx.Response:
    if http_client is not None:
        return await http_client.post(url, **kwargs)
    async with httpx.AsyncClient() as client:
        return await client.post(url, **kwargs)


async def register_client(
    registration_endpoint: str | None,
    redirect_uris: list[str],
    client_name: str,
    scope: str,
    http_client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """
    Register a client dynamically (RFC 7591).

    Returns:
        Registration response (client_id, client_secret?, client_id_issued_at, ...)

    Raises:
        ClientRegistrationError: On missing endpoint, HTTP error or malformed response
    """
    if not registration_endpoint:
        raise ClientRegistrationError(
            "Authorization server metadata does not advertise a registration_endpoint"
        )

    logger.info(f"Registering client with DCR endpoint: {registration_endpoint}")
    request = {
        "redirect_uris": redirect_uris,
        "client_name": client_name,
        "scope": scope,
    }
    try:
        response = await _post(http_client, registration_endpoint, json=request)
        response.raise_for_status()
        client_info = response.json()
    except httpx.HTTPStatusError as e:
        raise ClientRegistrationError(
            f"Client registration failed: HTTP {e.response.status_code}",
            response=e.response.text,
        ) from e
    except (httpx.HTTPError, ValueError) as e:
        raise ClientRegistrationError(f"Client registration failed: {e}") from e

    if not isinstance(client_info, dict) or not client_info.get("client_id"):
        raise ClientRegistrationError("Client registration response has no client_id")

    # Servers may omit echoed fields; keep what we asked for
    client_info.setdefault("redirect_uris", redirect_uris)
    client_info.setdefault("scope", scope)
    logger.info(f"Client registered: {client_info['client_id']}")
    return client_info


def build_authorization_url(
    auth_server_metadata: AuthServerMetadata,
    client_info: dict[str, Any],
    resource: str,
    store: PendingAuthorizationStore,
) -> tuple[str, str]:
    """
    Start an authorization attempt.

    Generates PKCE values and a state, records them in ``store`` and builds
    the authorization endpoint URL.

    Returns:
        (authorization URL, state)
    """
    pkce = generate_pkce()
    pending = store.create(pkce.code_verifier)

    params = {
        "client_id": client_info["client_id"],
        "redirect_uri": client_info["redirect_uris"][0],
        "response_type": "code",
        "scope": client_info.get("scope") or "openid profile email",
        "state": pending.state,
        "code_challenge": pkce.code_challenge,
        "code_challenge_method": "S256",
        # RFC 8707 Resource Indicators
        "resource": resource,
    }
    parts = urlsplit(auth_server_metadata.authorization_endpoint)
    query = f"{parts.query}&{urlencode(params)}" if parts.query else urlencode(params)
    return urlunsplit(parts._replace(query=query)), pending.state


async def _token_request(
    token_endpoint: str,
    form: dict[str, Any],
    http_client: httpx.AsyncClient | None,
) -> dict[str, Any]:
    form = {k: v for k, v in form.items() if v is not None}
    try:
        response = await _post(
            http_client,
            token_endpoint,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        response.raise_for_status()
        tokens = response.json()
    except httpx.HTTPStatusError as e:
        raise TokenRequestError(
            f"Token request failed: HTTP {e.response.status_code}",
            response=e.response.text,
        ) from e
    except (httpx.HTTPError, ValueError) as e:
        raise TokenRequestError(f"Token request failed: {e}") from e

    if not isinstance(tokens, dict) or "access_token" not in tokens:
        raise TokenRequestError("Token response has no access_token")
    try:
        return _with_expiry(tokens, time.time())
    except (TypeError, ValueError) as e:
        raise TokenRequestError(
            f"Token response has an invalid expires_in: {tokens.get('expires_in')!r}"
        ) from e


async def exchange_code(
    code: str,
    state: str | None,
    auth_server_metadata: AuthServerMetadata,
    client_info: dict[str, Any],
    resource: str,
    store: PendingAuthorizationStore,
    http_client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """
    Exchange an authorization code for tokens.

    Raises:
        AuthorizationStateError: If ``state`` does not match a pending attempt
        TokenRequestError: If the token endpoint rejects the request
    """
    pending = store.consume(state)

    return await _token_request(
        auth_server_metadata.token_endpoint,
        {
            "grant_type": "authorization_code",
            "client_id": client_info["client_id"],
            "client_secret": client_info.get("client_secret"),
            "redirect_uri": client_info["redirect_uris"][0],
            "code": code,
            "code_verifier": pending.code_verifier,
            # RFC 8707 Resource Indicators
            "resource": resource,
        },
        http_client,
    )


async def refresh_tokens(
    refresh_token: str,
    auth_server_metadata: AuthServerMetadata,
    client_info: dict[str, Any],
    http_client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """
    Refresh an access token.

    The previous refresh token is kept when the response omits a new one.
    """
    tokens = await _token_request(
        auth_server_metadata.token_endpoint,
        {
            "grant_type": "refresh_token",
            "client_id": client_info["client_id"],
            "client_secret": client_info.get("client_secret"),
            "refresh_token": refresh_token,
        },
        http_client,
    )
    tokens.setdefault("refresh_token", refresh_token)
    return tokens
