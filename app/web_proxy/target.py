import re
from typing import Optional
from urllib.parse import unquote

import httpx
from fastapi import Request

from app.vars import PUBLIC_URL
from .errors import InvalidTargetError, LoopDetectedError, MissingTargetError

# A '%' that does not introduce two hex digits
_BROKEN_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")

ALLOWED_SCHEMES = ("http", "https")


def raw_target_segment(request: Request, prefix: str) -> Optional[str]:
    """
    Return the still percent-encoded path segment following ``prefix``.

    The ASGI ``path`` is already decoded, which would turn an encoded ``%2F``
    into a real separator, so the segment is cut from ``raw_path`` instead.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.decode("latin-1").split("?", 1)[0]
    else:
        path = request.url.path

    prefix = prefix.rstrip("/")
    if not path.startswith(prefix):
        return None
    segment = path[len(prefix):].lstrip("/")
    return segment or None


def resolve_target(segment: Optional[str]) -> str:
    """Decode the target segment and make sure it is an absolute http(s) URL."""
    if not segment:
        raise MissingTargetError()

    if _BROKEN_ESCAPE.search(segment):
        raise InvalidTargetError(f"Malformed percent-encoding in target: {segment}")
    try:
        target = unquote(segment, errors="strict")
    except UnicodeDecodeError as e:
        raise InvalidTargetError(f"Target is not valid UTF-8: {segment}") from e

    try:
        url = httpx.URL(target)
    except httpx.InvalidURL as e:
        raise InvalidTargetError(f"Invalid target URL: {target} ({e})") from e
    if url.scheme not in ALLOWED_SCHEMES or not url.host:
        raise InvalidTargetError(f"Target must be an absolute http(s) URL: {target}")

    return target


def proxy_origin(request: Request) -> str:
    """scheme://host[:port] under which this proxy is reachable."""
    if PUBLIC_URL:
        return PUBLIC_URL
    return f"{request.url.scheme}://{request.url.netloc}"


def guard_against_loop(target: str, origin: str) -> None:
    # Textual prefix match: any path under our own origin is refused.
    if target.startswith(origin):
        raise LoopDetectedError()
