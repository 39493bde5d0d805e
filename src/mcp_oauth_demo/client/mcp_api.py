"""Calls to the protected MCP API."""

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

MCP_PROTOCOL_VERSION = "2024-11-05"


async def get_contexts(
    base_url: str,
    access_token: str,
    http_client: httpx.AsyncClient | None = None,
) -> Any:
    """
    Fetch the caller's contexts from the MCP server.

    Raises:
        httpx.HTTPStatusError: On non-2xx responses (401 when the token is rejected)
    """
    url = f"{base_url.rstrip('/')}/v1/contexts"
    headers = {
        "Authorization": f"Bearer {access_token}",
        "MCP-Protocol-Version": MCP_PROTOCOL_VERSION,
    }

    if http_client is not None:
        response = await http_client.get(url, headers=headers)
    else:
        async with httpx.AsyncClient() as client:
            response = await client.get(url, headers=headers)

    if response.is_error:
        logger.error(f"Error calling MCP API: HTTP {response.status_code}")
    response.raise_for_status()
    return response.json()
