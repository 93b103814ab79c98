"""
Incremental markup tokenizer that emits start-tag events.

The stream is fed text chunks as they arrive and returns whatever output is
already final. Only start tags are surfaced to the element handler; text,
comments, declarations, end tags and the bodies of raw-text elements are
copied through untouched. A start tag the handler does not modify is emitted
exactly as it appeared in the source.
"""

import html
import re
from dataclasses import dataclass
from typing import Callable, List, NamedTuple, Optional, Union

RAW_TEXT_ELEMENTS = frozenset(
    {"script", "style", "textarea", "title", "xmp", "iframe", "noembed", "noframes"}
)

_TAG_NAME = re.compile(r"<([a-zA-Z][^\s/>]*)")
_ATTRIBUTE = re.compile(
    r"""(?P<space>\s*)(?P<name>[^\s/>"'=][^\s/>=]*)"""
    r"""(?:(?P<equals>\s*=\s*)(?P<value>"[^"]*"|'[^']*'|[^\s>]*))?"""
)

_COMMENT_OPEN = "<!--"
_CDATA_OPEN = "<![CDATA["


@dataclass
class Attribute:
    name: str
    value: Optional[str]
    raw: str

    @classmethod
    def parse(cls, match: "re.Match[str]") -> "Attribute":
        value = match.group("value")
        if value is not None:
            if value[:1] in ("'", '"') and value[-1:] == value[:1]:
                value = value[1:-1]
            value = html.unescape(value)
        return cls(name=match.group("name").lower(), value=value, raw=match.group(0))


class StartTag:
    """A start tag event; mutations are reflected when the tag is serialized."""

    def __init__(self, raw: str):
        self.raw = raw
        name_match = _TAG_NAME.match(raw)
        self._name_raw = name_match.group(1)
        self.tag_name = self._name_raw.lower()
        self.removed = False
        self.modified = False
        self.self_closing = raw[:-1].rstrip().endswith("/")
        self._parts: List[Union[Attribute, str]] = self._parse_attributes(
            raw[name_match.end() : -1]
        )

    @staticmethod
    def _parse_attributes(body: str) -> List[Union[Attribute, str]]:
        parts: List[Union[Attribute, str]] = []
        pos = 0
        while pos < len(body):
            match = _ATTRIBUTE.match(body, pos)
            if match and match.end() > pos:
                parts.append(Attribute.parse(match))
                pos = match.end()
            else:
                # stray '/', '=' or trailing whitespace
                parts.append(body[pos])
                pos += 1
        return parts

    def _find(self, name: str) -> Optional[Attribute]:
        name = name.lower()
        for part in self._parts:
            if isinstance(part, Attribute) and part.name == name:
                return part
        return None

    def has_attribute(self, name: str) -> bool:
        return self._find(name) is not None

    def get_attribute(self, name: str) -> Optional[str]:
        """Attribute value with entities decoded; "" for a bare attribute."""
        attribute = self._find(name)
        if attribute is None:
            return None
        return attribute.value if attribute.value is not None else ""

    def set_attribute(self, name: str, value: str) -> None:
        attribute = self._find(name)
        escaped = html.escape(value, quote=True)
        if attribute is None:
            attribute = Attribute(name=name.lower(), value=value, raw=f' {name}="{escaped}"')
            self._parts.append(attribute)
        else:
            # keep the original spacing and spelling of the name
            leading = attribute.raw[: len(attribute.raw) - len(attribute.raw.lstrip())]
            name_raw = attribute.raw.lstrip()[: len(attribute.name)]
            attribute.value = value
            attribute.raw = f'{leading}{name_raw}="{escaped}"'
        self.modified = True

    def remove(self) -> None:
        self.removed = True

    def serialize(self) -> str:
        if self.removed:
            return ""
        if not self.modified:
            return self.raw
        inner = "".join(p.raw if isinstance(p, Attribute) else p for p in self._parts)
        return f"<{self._name_raw}{inner}>"


ElementHandler = Callable[[StartTag], None]


class _ScanState(NamedTuple):
    """Progress through an incomplete token, relative to its '<'."""

    offset: int
    quote: Optional[str] = None
    after_equals: bool = False


class MarkupEventStream:
    """
    ``xml`` makes ``<script/>`` and friends self-closing; in HTML the slash is
    ignored and the element body is raw text up to its end tag.
    """

    def __init__(self, element_handler: ElementHandler, xml: bool = False):
        self.element_handler = element_handler
        self.xml = xml
        self._buffer = ""
        self._raw_text_tag: Optional[str] = None
        # inside a comment or CDATA section, waiting for this terminator
        self._terminator: Optional[str] = None
        self._resume: Optional[_ScanState] = None
        self._closed = False

    def feed(self, text: str) -> str:
        if self._closed:
            raise RuntimeError("feed() called on a closed markup stream")
        self._buffer += text
        return self._drain(final=False)

    def close(self) -> str:
        output = self._drain(final=True)
        # whatever is left is an incomplete token; pass it on verbatim
        output += self._buffer
        self._buffer = ""
        self._resume = None
        self._closed = True
        return output

    def _drain(self, final: bool) -> str:
        buf = self._buffer
        out: List[str] = []
        pos = 0
        n = len(buf)

        while pos < n:
            if self._raw_text_tag is not None:
                end = self._find_raw_text_end(buf, pos)
                if end is None:
                    pos = self._flush_held_back(
                        out, buf, pos, len(self._raw_text_tag) + 2, final
                    )
                    break
                out.append(buf[pos:end])
                pos = end
                self._raw_text_tag = None
                continue

            if self._terminator is not None:
                end = buf.find(self._terminator, pos)
                if end < 0:
                    pos = self._flush_held_back(
                        out, buf, pos, len(self._terminator) - 1, final
                    )
                    break
                end += len(self._terminator)
                out.append(buf[pos:end])
                pos = end
                self._terminator = None
                continue

            lt = buf.find("<", pos)
            if lt < 0:
                out.append(buf[pos:])
                pos = n
                break
            if lt > pos:
                out.append(buf[pos:lt])
                pos = lt

            if buf.startswith(_COMMENT_OPEN, pos):
                # "<!-->" closes at once, so the search starts at the dashes
                out.append("<!")
                pos += 2
                self._terminator = "-->"
                continue
            if buf.startswith(_CDATA_OPEN, pos):
                out.append(_CDATA_OPEN)
                pos += len(_CDATA_OPEN)
                self._terminator = "]]>"
                continue

            end = self._scan_markup(buf, pos)
            if end is None:
                # incomplete token; wait for more input
                break
            if end == pos + 1:
                # a lone '<' that does not open markup
                out.append("<")
                pos = end
                continue

            out.append(self._emit_markup(buf[pos:end]))
            pos = end

        self._buffer = buf[pos:]
        return "".join(out)

    @staticmethod
    def _flush_held_back(
        out: List[str], buf: str, pos: int, keep: int, final: bool
    ) -> int:
        """Emit all but the last ``keep`` chars, which may start a terminator."""
        flush_to = n = len(buf)
        if not final:
            flush_to = max(pos, n - keep)
        out.append(buf[pos:flush_to])
        return flush_to

    def _find_raw_text_end(self, buf: str, pos: int) -> Optional[int]:
        pattern = re.compile(
            r"</" + re.escape(self._raw_text_tag) + r"[\s/>]", re.IGNORECASE
        )
        match = pattern.search(buf, pos)
        return match.start() if match else None

    def _scan_markup(self, buf: str, i: int) -> Optional[int]:
        """
        Return the index just past the markup starting at ``buf[i] == '<'``.

        None means the token is not complete yet; ``i + 1`` means the '<' is
        plain text. An incomplete token always sits at the start of the next
        buffer, so its scan progress is kept and resumed there.
        """
        resume = self._resume if i == 0 else None
        self._resume = None

        n = len(buf)
        if i + 1 >= n:
            return None
        nxt = buf[i + 1]

        if nxt == "!":
            tail = buf[i : i + len(_CDATA_OPEN)]
            if _COMMENT_OPEN.startswith(tail) or _CDATA_OPEN.startswith(tail):
                return None
            return self._find_close(buf, i, resume)

        if nxt in "/?":
            return self._find_close(buf, i, resume)

        if not ("a" <= nxt <= "z" or "A" <= nxt <= "Z"):
            return i + 1

        # start tag: '>' inside a quoted attribute value does not close it
        if resume:
            j = i + resume.offset
            quote, after_equals = resume.quote, resume.after_equals
        else:
            j, quote, after_equals = i + 2, None, False
        while j < n:
            ch = buf[j]
            if quote:
                if ch == quote:
                    quote = None
            elif ch == ">":
                return j + 1
            elif ch in "\"'" and after_equals:
                quote = ch
                after_equals = False
            elif ch == "=":
                after_equals = True
            elif not ch.isspace():
                after_equals = False
            j += 1
        self._resume = _ScanState(j - i, quote, after_equals)
        return None

    def _find_close(
        self, buf: str, i: int, resume: Optional[_ScanState]
    ) -> Optional[int]:
        end = buf.find(">", i + (resume.offset if resume else 2))
        if end < 0:
            self._resume = _ScanState(max(len(buf) - i, 2))
            return None
        return end + 1

    def _emit_markup(self, raw: str) -> str:
        if not _TAG_NAME.match(raw):
            return raw

        tag = StartTag(raw)
        self.element_handler(tag)
        if tag.tag_name in RAW_TEXT_ELEMENTS and not (self.xml and tag.self_closing):
            self._raw_text_tag = tag.tag_name
        return tag.serialize()
