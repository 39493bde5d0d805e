"""Auto-discovery OAuth client for the MCP server."""

from .auth_flow import (
    PendingAuthorizationStore,
    build_authorization_url,
    exchange_code,
    generate_pkce,
    refresh_tokens,
    register_client,
)
from .discovery import DiscoveryResult, discover
from .mcp_api import get_contexts
from .session import AutoDiscoveryClient, ClientSession

__all__ = [
    "AutoDiscoveryClient",
    "ClientSession",
    "DiscoveryResult",
    "PendingAuthorizationStore",
    "build_authorization_url",
    "discover",
    "exchange_code",
    "generate_pkce",
    "get_contexts",
    "refresh_tokens",
    "register_client",
]
