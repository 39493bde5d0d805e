"""
OAuth Error Handling

Typed failures for metadata retrieval, token validation, discovery and the
client-side authorization flow.

Every error carries a stable ``error_code`` and a human-readable
``description``. The resource server only ever exposes the description to
clients (in the ``error_description`` of a 401 challenge).
"""

from typing import Any


class OAuthError(Exception):
    """Base exception for all OAuth-related errors."""

    error_code: str = "OAUTH_ERROR"

    def __init__(self, description: str, **kwargs: Any):
        super().__init__(description)
        self.description = description
        self.details = kwargs

    def to_dict(self) -> dict:
        """Convert error to a JSON-friendly dictionary."""
        result = {"error": self.error_code, "error_description": self.description}
        for key, value in self.details.items():
            result[key] = value
        return result

    def __str__(self) -> str:
        return self.description


# =============================================================================
# Metadata Cache
# =============================================================================


class MetadataUnavailableError(OAuthError):
    """Authorization server metadata or JWKS could not be fetched."""

    error_code = "METADATA_UNAVAILABLE"


class ConfigurationError(OAuthError):
    """Required configuration (e.g. jwks_uri) is missing."""

    error_code = "CONFIGURATION_ERROR"


# =============================================================================
# Token Validator
# =============================================================================


class TokenValidationError(OAuthError):
    """Base exception for token validation errors."""

    error_code = "INVALID_TOKEN"


class MalformedTokenError(TokenValidationError):
    """Token cannot be parsed into header, payload and signature."""

    error_code = "MALFORMED_TOKEN"


class UnknownSigningKeyError(TokenValidationError):
    """Token kid is not present in the JWKS."""

    error_code = "UNKNOWN_SIGNING_KEY"


class BadSignatureError(TokenValidationError):
    """Signature verification failed or the algorithm is not allowed."""

    error_code = "BAD_SIGNATURE"


class IssuerMismatchError(TokenValidationError):
    """Token issuer doesn't match the authorization server issuer."""

    error_code = "ISSUER_MISMATCH"


class TokenExpiredError(TokenValidationError):
    """Token has expired."""

    error_code = "TOKEN_EXPIRED"


class AudienceMismatchError(TokenValidationError):
    """Token audience doesn't match the resource identifier."""

    error_code = "AUDIENCE_MISMATCH"


# =============================================================================
# Discovery Negotiator
# =============================================================================


class DiscoveryError(OAuthError):
    """Base exception for client-side discovery errors."""

    error_code = "DISCOVERY_ERROR"


class UnexpectedDiscoveryResponseError(DiscoveryError):
    """Probe request did not produce a 401 response."""

    error_code = "UNEXPECTED_DISCOVERY_RESPONSE"


class MissingChallengeMetadataError(DiscoveryError):
    """WWW-Authenticate header or its resource_metadata parameter is absent."""

    error_code = "MISSING_CHALLENGE_METADATA"


class ResourceMetadataFetchFailedError(DiscoveryError):
    """Protected resource metadata could not be fetched or parsed."""

    error_code = "RESOURCE_METADATA_FETCH_FAILED"


class NoAuthorizationServersError(DiscoveryError):
    """Protected resource metadata lists no authorization servers."""

    error_code = "NO_AUTHORIZATION_SERVERS"


class AuthServerMetadataFetchFailedError(DiscoveryError):
    """Authorization server metadata could not be fetched or parsed."""

    error_code = "AUTH_SERVER_METADATA_FETCH_FAILED"


# =============================================================================
# Client authorization flow
# =============================================================================


class ClientRegistrationError(OAuthError):
    """Dynamic client registration failed."""

    error_code = "CLIENT_REGISTRATION_FAILED"


class TokenRequestError(OAuthError):
    """Token endpoint rejected a code exchange or refresh."""

    error_code = "TOKEN_REQUEST_FAILED"


class AuthorizationStateError(OAuthError):
    """Callback state is unknown, already used, or expired."""

    error_code = "INVALID_STATE"


class LoginRequiredError(OAuthError):
    """The client session has no usable tokens; a new login is needed."""

    error_code = "LOGIN_REQUIRED"
