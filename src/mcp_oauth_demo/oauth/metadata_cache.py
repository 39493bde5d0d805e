"""
Authorization Server Metadata and JWKS Cache

Time-bounded, in-process cache of the authorization server's metadata
document and its JSON Web Key Set.

Entries are fresh while ``now - fetched_at < ttl``. An expired entry is
re-fetched on the next call. A failed fetch never falls back to the stale
entry. Concurrent refreshes are last-writer-wins; no locking is done since
the fetches are idempotent.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from .exceptions import ConfigurationError, MetadataUnavailableError
from .metadata import AuthServerMetadata

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600  # 1 hour


@dataclass
class _CacheEntry:
    value: Any
    fetched_at: float


class MetadataCache:
    """
    Cache for authorization server metadata and JWKS.

    One instance is shared by every request handled by the process. Pass an
    ``httpx.AsyncClient`` to reuse connections (or to inject a mock transport
    in tests); otherwise a short-lived client is created per fetch.
    """

    def __init__(
        self,
        metadata_url: str,
        ttl: int = DEFAULT_TTL,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.metadata_url = metadata_url
        self.ttl = ttl
        self._http_client = http_client
        self._clock = clock
        self._metadata: _CacheEntry | None = None
        self._jwks: _CacheEntry | None = None

    def _is_fresh(self, entry: _CacheEntry | None) -> bool:
        return entry is not None and (self._clock() - entry.fetched_at) < self.ttl

    async def _fetch_json(self, url: str) -> Any:
        """GET a JSON document, mapping every failure to MetadataUnavailableError."""
        try:
            if self._http_client is not None:
                response = await self._http_client.get(url)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(url)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise MetadataUnavailableError(
                f"Unable to fetch {url}: HTTP {e.response.status_code}",
                url=url,
            ) from e
        except httpx.HTTPError as e:
            raise MetadataUnavailableError(f"Unable to fetch {url}: {e}", url=url) from e
        except ValueError as e:
            raise MetadataUnavailableError(
                f"Unable to parse JSON from {url}", url=url
            ) from e

    async def get_auth_server_metadata(
        self, force_refresh: bool = False
    ) -> AuthServerMetadata:
        """
        Return authorization server metadata, fetching it when stale.

        Raises:
            MetadataUnavailableError: On network error, non-2xx or malformed body
        """
        if not force_refresh and self._is_fresh(self._metadata):
            return self._metadata.value

        logger.info(f"Fetching authorization server metadata from {self.metadata_url}")
        data = await self._fetch_json(self.metadata_url)
        try:
            metadata = AuthServerMetadata.from_dict(data)
        except ValueError as e:
            raise MetadataUnavailableError(
                f"Malformed authorization server metadata: {e}",
                url=self.metadata_url,
            ) from e

        self._metadata = _CacheEntry(value=metadata, fetched_at=self._clock())
        return metadata

    async def get_jwks(self, force_refresh: bool = False) -> dict:
        """
        Return the JWKS advertised by the authorization server metadata.

        Raises:
            ConfigurationError: If the metadata has no jwks_uri
            MetadataUnavailableError: On network error, non-2xx or malformed body
        """
        if not force_refresh and self._is_fresh(self._jwks):
            return self._jwks.value

        metadata = await self.get_auth_server_metadata()
        if not metadata.jwks_uri:
            raise ConfigurationError(
                "Authorization server metadata does not advertise a jwks_uri"
            )

        logger.info(f"Fetching JWKS from {metadata.jwks_uri}")
        jwks = await self._fetch_json(metadata.jwks_uri)
        if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
            raise MetadataUnavailableError(
                "Malformed JWKS: expected an object with a 'keys' list",
                url=metadata.jwks_uri,
            )

        self._jwks = _CacheEntry(value=jwks, fetched_at=self._clock())
        logger.debug(f"Cached {len(jwks['keys'])} signing keys")
        return jwks

    def invalidate(self) -> None:
        """Drop both cached entries."""
        self._metadata = None
        self._jwks = None
