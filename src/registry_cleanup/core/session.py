"""aiohttp session helpers."""

import json
from typing import Any, Optional

import aiohttp


async def create_session(
    timeout: float = 30,
    verify_ssl: bool = True,
    headers: Optional[dict[str, str]] = None,
) -> aiohttp.ClientSession:
    """Create a client session for registry requests.

    Args:
        timeout: Total request timeout in seconds
        verify_ssl: Verify TLS certificates
        headers: Default headers sent with every request

    Returns:
        Configured aiohttp session (caller closes it)
    """
    connector = aiohttp.TCPConnector(ssl=None if verify_ssl else False)
    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=timeout),
        headers=headers or {},
    )


def is_json_content_type(content_type: Optional[str]) -> bool:
    """Check if a content type carries JSON (plain or a ``+json`` media type)."""
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


def parse_response_body(status: int, content_type: Optional[str], body: bytes) -> Any:
    """Decode a response body.

    Returns:
        Parsed JSON for JSON content types, decoded text otherwise, and
        None for 204 responses or empty bodies.
    """
    if status == 204 or not body:
        return None

    text = body.decode("utf-8", errors="replace")
    if is_json_content_type(content_type):
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
    return text
