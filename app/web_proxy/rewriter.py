import codecs
import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import AsyncIterator, Optional
from urllib.parse import quote, urlsplit

import httpx

from .markup import MarkupEventStream, StartTag

logger = logging.getLogger("uvicorn.error")

# Element -> attribute carrying a URL that the browser will load or navigate to
URL_ATTRIBUTES = {
    "a": "href",
    "link": "href",
    "script": "src",
    "img": "src",
    "source": "src",
    "embed": "src",
    "iframe": "src",
    "form": "action",
}

FETCHABLE_SCHEMES = ("http", "https")

# Code points a host name may not contain (IPv6 literals are checked separately)
_FORBIDDEN_HOST_CHARS = re.compile(r"[\x00-\x20\x7f#%/:<>?@\[\\\]^|]")


def is_well_formed(url: str) -> bool:
    """
    Stricter check than httpx applies when joining: a usable host and a
    port within range.
    """
    try:
        parts = urlsplit(url)
        parts.port
    except ValueError:
        return False

    host = parts.hostname
    if not host:
        return False
    if "[" in parts.netloc:
        try:
            ipaddress.IPv6Address(host)
        except ValueError:
            return False
        return True
    return _FORBIDDEN_HOST_CHARS.search(host) is None


@dataclass(frozen=True)
class RewriteContext:
    proxy_base: str
    base_url: str

    def proxied(self, value: str) -> Optional[str]:
        """
        Resolve ``value`` against the base URL and wrap it in a proxy URL.

        Returns None when the value is malformed or does not resolve to an
        http(s) URL, in which case callers keep the original text.
        """
        try:
            absolute = httpx.URL(self.base_url).join(value.strip())
        except (httpx.InvalidURL, ValueError, TypeError):
            return None
        if absolute.scheme not in FETCHABLE_SCHEMES:
            return None
        resolved = str(absolute)
        if not is_well_formed(resolved):
            return None
        return self.proxy_base + quote(resolved, safe="")


def is_rewritable(content_type: Optional[str]) -> bool:
    content_type = (content_type or "").lower()
    return content_type.startswith("text/html") or "xml" in content_type


def is_xml_document(content_type: Optional[str]) -> bool:
    content_type = (content_type or "").lower()
    return "xml" in content_type and not content_type.startswith("text/html")


def rewrite_style_urls(style: str, context: RewriteContext) -> str:
    """
    Rewrite every ``url(...)`` token of an inline style to a proxy URL.

    Best effort: escaped quotes and a ``)`` inside a quoted URL are not
    understood, and such tokens may be cut short or left alone.
    """
    out = []
    pos = 0
    lowered = style.lower()
    while True:
        start = lowered.find("url(", pos)
        if start < 0:
            break
        close = style.find(")", start + 4)
        if close < 0:
            break

        token = style[start : close + 1]
        inner = style[start + 4 : close].strip()
        if len(inner) >= 2 and inner[0] in "'\"" and inner[-1] == inner[0]:
            inner = inner[1:-1]
        elif inner[:1] in ("'", '"'):
            inner = inner[1:]

        proxied = context.proxied(inner) if inner else None
        out.append(style[pos:start])
        out.append(f"url({proxied})" if proxied else token)
        pos = close + 1

    out.append(style[pos:])
    return "".join(out)


class HtmlUrlRewriter:
    """Element handler that points every resource reference back at the proxy."""

    def __init__(self, context: RewriteContext):
        self.context = context

    def element(self, tag: StartTag) -> None:
        if self._should_remove(tag):
            tag.remove()
            return

        attribute = URL_ATTRIBUTES.get(tag.tag_name)
        if attribute:
            value = tag.get_attribute(attribute)
            if value:
                proxied = self.context.proxied(value)
                if proxied is not None:
                    tag.set_attribute(attribute, proxied)

        style = tag.get_attribute("style")
        if style:
            rewritten = rewrite_style_urls(style, self.context)
            if rewritten != style:
                tag.set_attribute("style", rewritten)

    @staticmethod
    def _should_remove(tag: StartTag) -> bool:
        if tag.tag_name == "base":
            return tag.has_attribute("href")
        if tag.tag_name == "meta":
            http_equiv = (tag.get_attribute("http-equiv") or "").strip().lower()
            return http_equiv == "content-security-policy"
        return False

    def __call__(self, tag: StartTag) -> None:
        self.element(tag)


def _codec_name(encoding: Optional[str]) -> str:
    if encoding:
        try:
            return codecs.lookup(encoding).name
        except LookupError:
            logger.debug(f"[Rewrite] Unknown charset {encoding!r}, using utf-8")
    return "utf-8"


async def rewrite_stream(
    chunks: AsyncIterator[bytes],
    context: RewriteContext,
    encoding: Optional[str] = None,
    xml: bool = False,
) -> AsyncIterator[bytes]:
    """
    Rewrite an HTML/XML byte stream chunk by chunk.

    Decoding and encoding use ``surrogateescape`` so bytes outside rewritten
    tags come out exactly as they went in, even when the declared charset is
    wrong.
    """
    codec = _codec_name(encoding)
    decoder = codecs.getincrementaldecoder(codec)(errors="surrogateescape")
    encoder = codecs.getincrementalencoder(codec)(errors="surrogateescape")
    stream = MarkupEventStream(HtmlUrlRewriter(context), xml=xml)

    async for chunk in chunks:
        text = stream.feed(decoder.decode(chunk))
        if text:
            yield encoder.encode(text)

    tail = stream.feed(decoder.decode(b"", final=True)) + stream.close()
    tail_bytes = encoder.encode(tail, final=True)
    if tail_bytes:
        yield tail_bytes
