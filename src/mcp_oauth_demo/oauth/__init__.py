"""OAuth 2.1 Resource Server implementation."""

from .exceptions import (
    AudienceMismatchError,
    BadSignatureError,
    ConfigurationError,
    IssuerMismatchError,
    MalformedTokenError,
    MetadataUnavailableError,
    OAuthError,
    TokenExpiredError,
    TokenValidationError,
    UnknownSigningKeyError,
)
from .metadata import (
    AuthServerMetadata,
    ProtectedResourceMetadata,
    transform_authorization_server_metadata,
)
from .metadata_cache import MetadataCache
from .resource_server import (
    OAuthMiddleware,
    OAuthResourceServer,
    build_challenge_header,
    extract_user_context,
)
from .token_validator import TokenValidator

__all__ = [
    "OAuthResourceServer",
    "OAuthMiddleware",
    "TokenValidator",
    "MetadataCache",
    "ProtectedResourceMetadata",
    "AuthServerMetadata",
    "transform_authorization_server_metadata",
    "build_challenge_header",
    "extract_user_context",
    # Exceptions
    "OAuthError",
    "MetadataUnavailableError",
    "ConfigurationError",
    "TokenValidationError",
    "MalformedTokenError",
    "UnknownSigningKeyError",
    "BadSignatureError",
    "IssuerMismatchError",
    "TokenExpiredError",
    "AudienceMismatchError",
]
