"""
Authorization Server Discovery

Discovers the authorization server of an MCP resource server, starting from
nothing but its base URL:

1. unauthenticated probe of a protected endpoint, expecting 401
2. ``resource_metadata`` extracted from the ``WWW-Authenticate`` challenge
3. protected resource metadata (RFC 9728) fetched
4. metadata of the first listed authorization server fetched (RFC 8414,
   or the OpenID configuration for Cognito)

Every failure is terminal for the login attempt; nothing is retried and no
other authorization server is tried.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin

import httpx

from ..config import AUTHORIZATION_SERVER_METADATA_PATH, OPENID_CONFIGURATION_PATH
from ..oauth.exceptions import (
    AuthServerMetadataFetchFailedError,
    MissingChallengeMetadataError,
    NoAuthorizationServersError,
    ResourceMetadataFetchFailedError,
    UnexpectedDiscoveryResponseError,
)
from ..oauth.metadata import AuthServerMetadata, ProtectedResourceMetadata

logger = logging.getLogger(__name__)

DEFAULT_PROBE_PATH = "/v1/contexts"

_RESOURCE_METADATA_PATTERN = re.compile(r'resource_metadata="([^"]+)"')
_COGNITO_ISSUER_PATTERN = re.compile(
    r"https://cognito-idp\.([^.]+)\.amazonaws\.com/([^/?#]+)"
)
_COGNITO_POOL_ID_PATTERN = re.compile(r"([a-z]{2}-[a-z]+-\d+_[A-Za-z0-9]+)")


@dataclass(frozen=True)
class DiscoveryResult:
    """Outcome of a successful discovery."""

    resource_metadata: ProtectedResourceMetadata
    auth_server_metadata: AuthServerMetadata
    auth_server_url: str


def parse_resource_metadata_url(www_authenticate: str | None) -> str:
    """
    Extract the ``resource_metadata`` URL from a Bearer challenge.

    Raises:
        MissingChallengeMetadataError: If the header or parameter is absent
    """
    if not www_authenticate:
        raise MissingChallengeMetadataError(
            "WWW-Authenticate header missing from 401 response"
        )
    match = _RESOURCE_METADATA_PATTERN.search(www_authenticate)
    if not match:
        raise MissingChallengeMetadataError(
            "resource_metadata not found in WWW-Authenticate header"
        )
    return match.group(1)


def resolve_url(base_url: str, url: str) -> str:
    """Resolve ``url`` against the resource server base URL if relative."""
    if url.startswith(("http://", "https://")):
        return url
    return urljoin(base_url.rstrip("/") + "/", url.lstrip("/"))


def authorization_server_metadata_url(auth_server_url: str) -> str:
    """
    Derive the metadata document URL for an authorization server.

    - URLs that already point at a well-known document are used as-is
    - Cognito issuers only publish an OpenID configuration
    - anything else gets the RFC 8414 well-known path appended
    """
    if "/.well-known/" in auth_server_url:
        return auth_server_url

    if "cognito-idp" in auth_server_url or "amazonaws.com" in auth_server_url:
        match = _COGNITO_ISSUER_PATTERN.match(auth_server_url)
        if match:
            region, pool_id = match.groups()
        else:
            pool_match = _COGNITO_POOL_ID_PATTERN.search(auth_server_url)
            if not pool_match:
                raise AuthServerMetadataFetchFailedError(
                    "Could not determine Cognito User Pool ID from authorization server URL"
                )
            pool_id = pool_match.group(1)
            region = pool_id.split("_", 1)[0]
        return (
            f"https://cognito-idp.{region}.amazonaws.com/{pool_id}"
            f"{OPENID_CONFIGURATION_PATH}"
        )

    return f"{auth_server_url.rstrip('/')}{AUTHORIZATION_SERVER_METADATA_PATH}"


async def _get_json(client: httpx.AsyncClient, url: str) -> Any:
    response = await client.get(url)
    response.raise_for_status()
    return response.json()


async def discover(
    resource_server_url: str,
    probe_path: str = DEFAULT_PROBE_PATH,
    http_client: httpx.AsyncClient | None = None,
) -> DiscoveryResult:
    """
    Discover the authorization server protecting an MCP resource server.

    Args:
        resource_server_url: Base URL of the resource server
        probe_path: Protected endpoint used for the unauthenticated probe
        http_client: Client to use; a temporary one is created when omitted

    Returns:
        Resource metadata, authorization server metadata and the raw
        authorization server URL

    Raises:
        DiscoveryError: One of its subclasses, per failed step
    """
    if http_client is None:
        async with httpx.AsyncClient() as client:
            return await _discover(client, resource_server_url, probe_path)
    return await _discover(http_client, resource_server_url, probe_path)


async def _discover(
    client: httpx.AsyncClient, resource_server_url: str, probe_path: str
) -> DiscoveryResult:
    base_url = resource_server_url.rstrip("/")
    probe_url = resolve_url(base_url, probe_path)

    logger.info(f"Making initial request to MCP server: {probe_url}")
    try:
        response = await client.get(probe_url)
    except httpx.HTTPError as e:
        raise UnexpectedDiscoveryResponseError(
            f"Unexpected response from MCP server: {e}"
        ) from e

    if response.status_code != 401:
        raise UnexpectedDiscoveryResponseError(
            f"Expected 401 response from MCP server, got {response.status_code}",
            status_code=response.status_code,
        )

    www_authenticate = response.headers.get("WWW-Authenticate")
    logger.info(f"Received WWW-Authenticate header: {www_authenticate}")
    metadata_url = resolve_url(base_url, parse_resource_metadata_url(www_authenticate))
    logger.info(f"Discovered resource metadata URL: {metadata_url}")

    try:
        resource_metadata = ProtectedResourceMetadata.from_dict(
            await _get_json(client, metadata_url)
        )
    except (httpx.HTTPError, ValueError) as e:
        raise ResourceMetadataFetchFailedError(
            f"Failed to fetch protected resource metadata: {e}"
        ) from e

    if not resource_metadata.authorization_servers:
        raise NoAuthorizationServersError(
            "No authorization servers found in resource metadata"
        )

    auth_server_url = resource_metadata.authorization_servers[0]
    logger.info(f"Discovered authorization server: {auth_server_url}")

    auth_metadata_url = authorization_server_metadata_url(auth_server_url)
    logger.info(f"Fetching auth server metadata from: {auth_metadata_url}")
    try:
        auth_server_metadata = AuthServerMetadata.from_dict(
            await _get_json(client, auth_metadata_url)
        )
    except (httpx.HTTPError, ValueError) as e:
        raise AuthServerMetadataFetchFailedError(
            f"Failed to fetch authorization server metadata: {e}"
        ) from e

    return DiscoveryResult(
        resource_metadata=resource_metadata,
        auth_server_metadata=auth_server_metadata,
        auth_server_url=auth_server_url,
    )
