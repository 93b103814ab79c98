import string
from typing import Iterable, Tuple
from urllib.parse import quote

import httpx

from app.vars import DEFAULT_USER_AGENT

# Never forwarded upstream: the target gets its own Host, and the client's
# cookies and framing belong to the proxy origin.
FORBIDDEN_REQUEST_HEADERS = {"host", "cookie", "content-length"}

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

FRAMING_BLOCKING_HEADERS = {"x-frame-options"}
CSP_HEADERS = {"content-security-policy", "content-security-policy-report-only"}
# The rewritten body is re-encoded from decoded bytes, so these no longer hold.
BODY_ENCODING_HEADERS = {"content-length", "content-encoding"}

CORS_ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
VERSION_HEADER = "X-App-Version"

_PRINTABLE_ASCII = "".join(
    ch for ch in string.printable if ch not in string.whitespace or ch == " "
)


def header_value(value: str) -> str:
    """Percent-encode anything outside printable ASCII so the value fits a header."""
    return quote(value, safe=_PRINTABLE_ASCII)


def sanitize_request_headers(
    items: Iterable[Tuple[str, str]], target: str
) -> httpx.Headers:
    """
    Derive the outbound header set from the inbound one.

    Duplicates are preserved, forbidden headers dropped, a browser-like
    User-Agent and a permissive Accept defaulted, and Referer pinned to the
    target.
    """
    headers = httpx.Headers(
        [
            (name, value)
            for name, value in items
            if name.lower() not in FORBIDDEN_REQUEST_HEADERS
        ]
    )
    if "user-agent" not in headers:
        headers["User-Agent"] = DEFAULT_USER_AGENT
    if "accept" not in headers:
        headers["Accept"] = "*/*"
    headers["Referer"] = header_value(target)
    return headers


def apply_cors(headers, app_version: str) -> None:
    """Advertise open cross-origin access plus the running version."""
    headers["Access-Control-Allow-Origin"] = "*"
    headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
    headers["Access-Control-Allow-Headers"] = "*"
    headers[VERSION_HEADER] = app_version


def cors_headers(app_version: str) -> dict:
    headers: dict = {}
    apply_cors(headers, app_version)
    return headers


def filter_response_headers(
    headers: httpx.Headers, rewritten: bool
) -> list[tuple[str, str]]:
    """Upstream headers that survive into the client response, duplicates kept."""
    dropped = HOP_BY_HOP_HEADERS | FRAMING_BLOCKING_HEADERS
    if rewritten:
        dropped = dropped | CSP_HEADERS | BODY_ENCODING_HEADERS
    return [
        (name, value)
        for name, value in headers.multi_items()
        if name.lower() not in dropped
    ]
