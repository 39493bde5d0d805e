"""Configuration management for the MCP OAuth demo."""

from pydantic_settings import BaseSettings

# =============================================================================
# OAuth Scope Definitions
# =============================================================================

OAUTH_SCOPES = {
    # Standard OpenID scopes
    "openid": "OpenID Connect authentication",
    "profile": "User profile information",
    "email": "User email address",

    # Cognito resource server scopes
    "mcp-api/read": "Read MCP contexts",
    "mcp-api/write": "Create MCP contexts",
}

PROTECTED_RESOURCE_METADATA_PATH = "/.well-known/oauth-protected-resource"
AUTHORIZATION_SERVER_METADATA_PATH = "/.well-known/oauth-authorization-server"
OPENID_CONFIGURATION_PATH = "/.well-known/openid-configuration"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # MCP resource server
    mcp_server_url: str = "http://localhost:3001"

    # HTTP Server
    http_host: str = "0.0.0.0"
    http_port: int = 3001

    # AWS Cognito
    cognito_region: str = "us-east-1"
    cognito_user_pool_id: str | None = None
    cognito_client_id: str | None = None
    cognito_client_secret: str | None = None
    cognito_issuer: str | None = None  # Derived from region + pool id when unset
    cognito_auth_server_url: str | None = None  # Metadata URL, derived when unset

    # External (non-Cognito) authorization server
    use_external_auth: bool = False
    oauth_auth_server_url: str | None = None

    # Dynamic Client Registration endpoint advertised to clients
    dcr_endpoint: str | None = None

    # OAuth client settings
    oauth_client_id: str | None = None
    oauth_client_secret: str | None = None
    oauth_redirect_uri: str = "http://localhost:3002/callback"
    oauth_scope: str = "openid profile email mcp-api/read"
    client_name: str = "mcp-oauth-demo-auto-discovery-client"

    # Token validation
    jwks_cache_ttl: int = 3600  # 1 hour
    allowed_algorithms: list[str] = ["RS256"]
    enforce_audience: bool = False
    refresh_jwks_on_unknown_kid: bool = False

    # Development
    debug: bool = False
    log_level: str = "INFO"

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
    }

    @property
    def effective_issuer(self) -> str:
        """Return the Cognito issuer, constructing it from region and pool id."""
        if self.cognito_issuer:
            return self.cognito_issuer
        return (
            f"https://cognito-idp.{self.cognito_region}.amazonaws.com/"
            f"{self.cognito_user_pool_id or ''}"
        )

    @property
    def auth_server_metadata_url(self) -> str:
        """
        Return the upstream authorization server metadata URL.

        Cognito only publishes an OpenID configuration document, so
        oauth-authorization-server URLs are rewritten to it.
        """
        if self.use_external_auth and self.oauth_auth_server_url:
            url = self.oauth_auth_server_url
        elif self.cognito_auth_server_url:
            url = self.cognito_auth_server_url
        else:
            url = self.effective_issuer
        return openid_configuration_url(url)

    @property
    def protected_resource_metadata_url(self) -> str:
        """Absolute URL of this server's RFC 9728 metadata document."""
        return f"{self.mcp_server_url.rstrip('/')}{PROTECTED_RESOURCE_METADATA_PATH}"

    @property
    def authorization_server_url(self) -> str:
        """Authorization server metadata URL advertised in resource metadata."""
        return f"{self.mcp_server_url.rstrip('/')}{AUTHORIZATION_SERVER_METADATA_PATH}"

    @property
    def effective_client_id(self) -> str | None:
        return self.oauth_client_id or self.cognito_client_id

    @property
    def effective_client_secret(self) -> str | None:
        return self.oauth_client_secret or self.cognito_client_secret


def openid_configuration_url(url: str) -> str:
    """
    Map an authorization server URL to its OpenID configuration document.

    - ".../.well-known/oauth-authorization-server" is rewritten
    - URLs without any well-known path get the OpenID path appended
    - other well-known URLs are returned unchanged
    """
    if AUTHORIZATION_SERVER_METADATA_PATH in url:
        return url.replace(AUTHORIZATION_SERVER_METADATA_PATH, OPENID_CONFIGURATION_PATH)
    if "/.well-known/" not in url:
        return f"{url.rstrip('/')}{OPENID_CONFIGURATION_PATH}"
    return url
