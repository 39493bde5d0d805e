"""
OAuth 2.1 Resource Server Implementation

Provides Starlette middleware that gates protected routes behind a bearer
token and answers unauthenticated requests with an RFC 9728 challenge:

    WWW-Authenticate: Bearer resource_metadata="<metadata URL>"

Invalid tokens get the same challenge plus ``error="invalid_token"`` and an
``error_description`` that is repeated verbatim in the JSON body.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .exceptions import ConfigurationError, MetadataUnavailableError, TokenValidationError
from .metadata import ProtectedResourceMetadata
from .metadata_cache import MetadataCache
from .token_validator import TokenValidator, token_fingerprint

logger = logging.getLogger(__name__)

MISSING_TOKEN_DESCRIPTION = "Valid bearer token required"


def _quote_param(value: str) -> str:
    """Make a value safe for a quoted-string auth-param."""
    return value.replace("\\", "'").replace('"', "'")


def build_challenge_header(
    resource_metadata_url: str,
    error: str | None = None,
    error_description: str | None = None,
) -> str:
    """
    Build a Bearer ``WWW-Authenticate`` challenge.

    Args:
        resource_metadata_url: Absolute URL of the protected resource metadata
        error: RFC 6750 error code (e.g. "invalid_token")
        error_description: Human-readable reason

    Returns:
        Header value
    """
    params = [f'resource_metadata="{_quote_param(resource_metadata_url)}"']
    if error:
        params.append(f'error="{_quote_param(error)}"')
    if error_description:
        params.append(f'error_description="{_quote_param(error_description)}"')
    return "Bearer " + ", ".join(params)


def extract_bearer_token(authorization: str | None) -> Optional[str]:
    """Return the token from ``Bearer <token>``, or None if malformed."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        return None
    return token


def extract_user_context(claims: dict[str, Any]) -> dict[str, Any]:
    """
    Extract user context from validated token claims.

    Args:
        claims: Decoded JWT claims

    Returns:
        User context dictionary with:
        - sub: Subject identifier
        - username: Cognito username (falls back to sub)
        - client_id: OAuth client the token was issued to
        - scopes: List of granted scopes
        - claims: The full claim set
    """
    scope = claims.get("scope", "")
    if isinstance(scope, str):
        scopes = scope.split()
    elif isinstance(scope, list):
        scopes = [s for s in scope if isinstance(s, str)]
    else:
        scopes = []

    return {
        "sub": claims.get("sub"),
        "username": claims.get("username", claims.get("cognito:username", claims.get("sub"))),
        "client_id": claims.get("client_id"),
        "scopes": scopes,
        "claims": claims,
    }


@dataclass
class OAuthResourceServer:
    """
    OAuth 2.1 Resource Server configuration.

    Owns the metadata cache, the token validator and the static protected
    resource metadata document.
    """

    resource: str
    authorization_servers: list[str]
    resource_metadata_url: str
    cache: MetadataCache
    scopes_supported: list[str] = field(default_factory=list)
    resource_documentation: str | None = None
    algorithms: list[str] = field(default_factory=lambda: ["RS256"])
    enforce_audience: bool = False
    refresh_on_unknown_kid: bool = False

    # Internal components
    _validator: Optional[TokenValidator] = field(default=None, repr=False)
    _metadata: Optional[ProtectedResourceMetadata] = field(default=None, repr=False)

    def __post_init__(self):
        """Initialize internal components."""
        self._validator = TokenValidator(
            cache=self.cache,
            algorithms=self.algorithms,
            audience=self.resource,
            enforce_audience=self.enforce_audience,
            refresh_on_unknown_kid=self.refresh_on_unknown_kid,
        )

        self._metadata = ProtectedResourceMetadata(
            resource=self.resource,
            authorization_servers=self.authorization_servers,
            scopes_supported=self.scopes_supported,
            bearer_methods_supported=["header"],
            resource_documentation=self.resource_documentation,
        )

    @property
    def metadata(self) -> ProtectedResourceMetadata:
        """Get protected resource metadata."""
        return self._metadata

    @property
    def validator(self) -> TokenValidator:
        """Get token validator."""
        return self._validator

    async def validate_token(self, token: str) -> dict[str, Any]:
        """Validate access token and return claims."""
        return await self.validator.validate(token)

    def missing_token_response(self) -> Response:
        """401 for requests without a usable Authorization header."""
        return JSONResponse(
            status_code=401,
            content={
                "error": "unauthorized",
                "error_description": MISSING_TOKEN_DESCRIPTION,
            },
            headers={
                "WWW-Authenticate": build_challenge_header(self.resource_metadata_url)
            },
        )

    def invalid_token_response(self, description: str) -> Response:
        """401 for requests whose token failed validation."""
        return JSONResponse(
            status_code=401,
            content={"error": "invalid_token", "error_description": description},
            headers={
                "WWW-Authenticate": build_challenge_header(
                    self.resource_metadata_url,
                    error="invalid_token",
                    error_description=description,
                )
            },
        )


class OAuthMiddleware(BaseHTTPMiddleware):
    """
    FastAPI/Starlette middleware for OAuth token validation.

    Validates Bearer tokens in the Authorization header and adds the claims
    and user context to request.state.
    """

    def __init__(
        self,
        app,
        resource_server: OAuthResourceServer,
        exclude_paths: Optional[list[str]] = None,
    ):
        """
        Initialize OAuth middleware.

        Args:
            app: FastAPI/Starlette application
            resource_server: OAuth resource server configuration
            exclude_paths: Paths to exclude from auth (e.g., /health)
        """
        super().__init__(app)
        self.resource_server = resource_server
        self.exclude_paths = exclude_paths or [
            "/health",
            "/.well-known",
        ]

    def _should_skip_auth(self, request: Request) -> bool:
        """Check if path should skip authentication."""
        if request.method == "OPTIONS":
            return True
        path = request.url.path
        return any(
            path == excluded or path.startswith(f"{excluded}/")
            for excluded in self.exclude_paths
        )

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Process request through OAuth validation."""

        if self._should_skip_auth(request):
            return await call_next(request)

        token = extract_bearer_token(request.headers.get("Authorization"))
        if not token:
            logger.info(f"Missing bearer token for {request.method} {request.url.path}")
            return self.resource_server.missing_token_response()

        try:
            claims = await self.resource_server.validate_token(token)
        except (TokenValidationError, MetadataUnavailableError, ConfigurationError) as e:
            logger.warning(
                f"Token validation failed: {type(e).__name__}: {e} "
                f"(hash={token_fingerprint(token)})"
            )
            return self.resource_server.invalid_token_response(e.description)

        request.state.claims = claims
        request.state.user = extract_user_context(claims)
        return await call_next(request)
