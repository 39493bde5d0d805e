"""
Auto-Discovery Client

Ties discovery, dynamic client registration, the authorization code flow
and API calls together for one user session.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..config import Settings
from ..oauth.exceptions import LoginRequiredError
from .auth_flow import (
    PendingAuthorizationStore,
    build_authorization_url,
    exchange_code,
    is_token_expired,
    refresh_tokens,
    register_client,
)
from .discovery import DEFAULT_PROBE_PATH, DiscoveryResult, discover
from .mcp_api import get_contexts

logger = logging.getLogger(__name__)


@dataclass
class ClientSession:
    """Per-user login state."""

    discovery: DiscoveryResult | None = None
    client_info: dict[str, Any] | None = None
    tokens: dict[str, Any] | None = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.tokens and self.tokens.get("access_token"))


@dataclass
class AutoDiscoveryClient:
    """
    OAuth client that needs nothing but the MCP server URL.

    One instance serves many sessions; pending authorization attempts are
    shared in ``store`` and keyed by state.
    """

    mcp_server_url: str
    redirect_uri: str
    scope: str
    client_name: str
    probe_path: str = DEFAULT_PROBE_PATH
    http_client: httpx.AsyncClient | None = None
    store: PendingAuthorizationStore = field(default_factory=PendingAuthorizationStore)
    # Pre-registered client credentials; dynamic registration is skipped when set
    client_info: dict[str, Any] | None = None

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "AutoDiscoveryClient":
        client_info = None
        if settings.effective_client_id:
            client_info = {
                "client_id": settings.effective_client_id,
                "client_secret": settings.effective_client_secret,
                "redirect_uris": [settings.oauth_redirect_uri],
                "scope": settings.oauth_scope,
            }
        return cls(
            mcp_server_url=settings.mcp_server_url,
            redirect_uri=settings.oauth_redirect_uri,
            scope=settings.oauth_scope,
            client_name=settings.client_name,
            http_client=http_client,
            client_info=client_info,
        )

    async def start_login(self, session: ClientSession) -> str:
        """
        Discover the authorization server, register if needed, and return
        the URL the user must be sent to.
        """
        session.discovery = await discover(
            self.mcp_server_url, self.probe_path, http_client=self.http_client
        )

        if not session.client_info and self.client_info:
            session.client_info = dict(self.client_info)

        if not session.client_info:
            logger.info("No client registration found. Initiating dynamic client registration...")
            session.client_info = await register_client(
                session.discovery.auth_server_metadata.registration_endpoint,
                redirect_uris=[self.redirect_uri],
                client_name=self.client_name,
                scope=self.scope,
                http_client=self.http_client,
            )

        auth_url, _ = build_authorization_url(
            session.discovery.auth_server_metadata,
            session.client_info,
            resource=self.mcp_server_url,
            store=self.store,
        )
        return auth_url

    async def complete_login(
        self, session: ClientSession, code: str, state: str | None
    ) -> dict[str, Any]:
        """Handle the authorization callback and store the tokens in the session."""
        if not session.discovery or not session.client_info:
            raise LoginRequiredError("Missing server info or client info; start the login again")

        session.tokens = await exchange_code(
            code,
            state,
            session.discovery.auth_server_metadata,
            session.client_info,
            resource=self.mcp_server_url,
            store=self.store,
            http_client=self.http_client,
        )
        return session.tokens

    async def fetch_contexts(self, session: ClientSession) -> Any:
        """
        Call the protected API, refreshing an expired access token first.

        Raises:
            LoginRequiredError: If the session is not authenticated or the
                server rejects the token
        """
        if not session.is_authenticated or not session.discovery or not session.client_info:
            raise LoginRequiredError("Not authenticated")

        if is_token_expired(session.tokens):
            if not session.tokens.get("refresh_token"):
                session.tokens = None
                raise LoginRequiredError("Access token expired and no refresh token is available")
            logger.info("Access token expired. Refreshing...")
            session.tokens = await refresh_tokens(
                session.tokens["refresh_token"],
                session.discovery.auth_server_metadata,
                session.client_info,
                http_client=self.http_client,
            )

        try:
            return await get_contexts(
                self.mcp_server_url,
                session.tokens["access_token"],
                http_client=self.http_client,
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 401:
                session.tokens = None
                raise LoginRequiredError("Access token rejected by the MCP server") from e
            raise
