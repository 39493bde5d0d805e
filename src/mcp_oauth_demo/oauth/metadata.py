"""
OAuth Metadata Documents

- RFC 9728 Protected Resource Metadata, served by the resource server at
  /.well-known/oauth-protected-resource
- RFC 8414 Authorization Server Metadata, fetched from the authorization
  server and re-published at /.well-known/oauth-authorization-server
"""

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ProtectedResourceMetadata:
    """
    RFC 9728 Protected Resource Metadata.

    Describes the OAuth-protected resource server and its requirements.
    Built from static configuration; never cached.
    """

    # Required: The resource identifier (typically the server URL)
    resource: str

    # Required: List of authorization servers that can issue tokens
    authorization_servers: list[str]

    # Optional: Supported OAuth scopes
    scopes_supported: list[str] = field(default_factory=list)

    # Optional: Bearer token methods supported
    bearer_methods_supported: list[str] = field(
        default_factory=lambda: ["header"]
    )

    # Optional: Resource documentation URL
    resource_documentation: str | None = None

    def to_dict(self) -> dict:
        """Serialize metadata to dictionary for JSON response."""
        result = {
            "resource": self.resource,
            "authorization_servers": list(self.authorization_servers),
        }

        if self.bearer_methods_supported:
            result["bearer_methods_supported"] = list(self.bearer_methods_supported)

        if self.scopes_supported:
            result["scopes_supported"] = list(self.scopes_supported)

        if self.resource_documentation:
            result["resource_documentation"] = self.resource_documentation

        return result

    def to_json(self) -> str:
        """Serialize metadata to JSON string."""
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: Any) -> "ProtectedResourceMetadata":
        """
        Parse a metadata document received from a resource server.

        Raises:
            ValueError: If the document is not an object or lacks ``resource``
        """
        if not isinstance(data, dict):
            raise ValueError("Protected resource metadata must be a JSON object")
        if not data.get("resource"):
            raise ValueError("Protected resource metadata is missing 'resource'")

        servers = data.get("authorization_servers") or []
        if not isinstance(servers, list):
            raise ValueError("'authorization_servers' must be a list")
        if not all(isinstance(server, str) and server for server in servers):
            raise ValueError("'authorization_servers' entries must be non-empty URLs")

        return cls(
            resource=data["resource"],
            authorization_servers=list(servers),
            scopes_supported=list(data.get("scopes_supported") or []),
            bearer_methods_supported=list(data.get("bearer_methods_supported") or []),
            resource_documentation=data.get("resource_documentation"),
        )


@dataclass(frozen=True)
class AuthServerMetadata:
    """
    RFC 8414 Authorization Server Metadata (or OpenID configuration).

    Unknown upstream fields are kept in ``extra`` so the document can be
    re-published without losing information.
    """

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str | None = None
    registration_endpoint: str | None = None
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    REQUIRED_FIELDS = ("issuer", "authorization_endpoint", "token_endpoint")
    KNOWN_FIELDS = REQUIRED_FIELDS + ("jwks_uri", "registration_endpoint")

    @classmethod
    def from_dict(cls, data: Any) -> "AuthServerMetadata":
        """
        Parse an upstream metadata document.

        Raises:
            ValueError: If the document is not an object or a required field is missing
        """
        if not isinstance(data, dict):
            raise ValueError("Authorization server metadata must be a JSON object")

        missing = [name for name in cls.REQUIRED_FIELDS if not data.get(name)]
        if missing:
            raise ValueError(
                f"Authorization server metadata is missing: {', '.join(missing)}"
            )

        return cls(
            issuer=data["issuer"],
            authorization_endpoint=data["authorization_endpoint"],
            token_endpoint=data["token_endpoint"],
            jwks_uri=data.get("jwks_uri"),
            registration_endpoint=data.get("registration_endpoint"),
            extra={k: v for k, v in data.items() if k not in cls.KNOWN_FIELDS},
        )

    def to_dict(self) -> dict:
        """Serialize back to the upstream document shape."""
        result = dict(self.extra)
        result["issuer"] = self.issuer
        result["authorization_endpoint"] = self.authorization_endpoint
        result["token_endpoint"] = self.token_endpoint
        if self.jwks_uri:
            result["jwks_uri"] = self.jwks_uri
        if self.registration_endpoint:
            result["registration_endpoint"] = self.registration_endpoint
        return result


def transform_authorization_server_metadata(
    metadata: AuthServerMetadata,
    registration_endpoint: str | None = None,
) -> dict:
    """
    Build the authorization server metadata document this server publishes.

    Output schema: every field of the upstream document, unchanged, with
    ``registration_endpoint`` set to the configured DCR endpoint when one is
    given. Cognito does not advertise DCR itself, so clients only discover
    the registration endpoint through this document.

    Args:
        metadata: Upstream metadata from the metadata cache
        registration_endpoint: DCR endpoint to advertise, if any

    Returns:
        A new dictionary; the cached metadata is never mutated
    """
    document = metadata.to_dict()
    if registration_endpoint:
        document["registration_endpoint"] = registration_endpoint
    return document
