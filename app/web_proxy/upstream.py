import logging
from typing import AsyncIterator, Callable, Optional, Tuple

import httpx

from app.utils.exception_logging import format_exception_message
from app.vars import (
    APP_VERSION_DEFAULT,
    PROXY_MAX_REDIRECTS,
    PROXY_TIMEOUT,
    UPSTREAM_VERIFY_TLS,
    VERSION_LOOKUP_TIMEOUT,
    VERSION_PATH,
)
from .errors import UpstreamFetchError, VersionLookupError

logger = logging.getLogger("uvicorn.error")

HttpClientFactory = Callable[[], httpx.AsyncClient]


def build_http_client() -> httpx.AsyncClient:
    """A fresh client per relayed request; it is closed once the body is sent."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(PROXY_TIMEOUT),
        max_redirects=PROXY_MAX_REDIRECTS,
        verify=UPSTREAM_VERIFY_TLS,
    )


def get_http_client_factory() -> HttpClientFactory:
    return build_http_client


async def _read_version(client: httpx.AsyncClient, url: str) -> str:
    try:
        response = await client.get(url, timeout=VERSION_LOOKUP_TIMEOUT)
    except httpx.HTTPError as e:
        raise VersionLookupError(format_exception_message(e)) from e
    if not response.is_success:
        raise VersionLookupError(f"{url} answered {response.status_code}")
    return response.text.strip()


async def lookup_app_version(client: httpx.AsyncClient, origin: str) -> str:
    """
    Best-effort read of the deployed version artifact at our own origin.

    Any failure yields APP_VERSION_DEFAULT; nothing is raised.
    """
    url = origin + VERSION_PATH
    try:
        return await _read_version(client, url) or APP_VERSION_DEFAULT
    except Exception as e:
        logger.debug(f"[Version] Lookup of {url} failed: {e}")
        return APP_VERSION_DEFAULT


def request_has_body(headers) -> bool:
    if "transfer-encoding" in headers:
        return True
    try:
        return int(headers.get("content-length") or 0) > 0
    except ValueError:
        return False


async def fetch_upstream(
    client: httpx.AsyncClient,
    target: str,
    method: str,
    headers: httpx.Headers,
    body: Optional[AsyncIterator[bytes]] = None,
) -> Tuple[httpx.Request, httpx.Response]:
    """
    Send the outbound request, following redirects, and return the request
    together with the still unread streaming response.
    """
    try:
        request = client.build_request(method, target, headers=headers, content=body)
        response = await client.send(request, stream=True, follow_redirects=True)
    except httpx.HTTPError as e:
        raise UpstreamFetchError(
            f"{type(e).__name__}: {format_exception_message(e)}"
        ) from e
    return request, response
