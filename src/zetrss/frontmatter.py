"""Text record format for stored articles.

A record is a metadata block delimited by ``---`` marker lines, holding one
``key: value`` pair per line, followed by a blank line and the article body::

    ---
    id: 3f1c...
    feed: https://example.com/feed.xml
    title: Hello
    link: https://example.com/hello
    date: 2024-03-01T00:00:00+00:00
    read: false
    starred: false
    ---

    Body text.

Values that would not survive a line-based round trip (surrounding whitespace,
newlines, a leading double quote) are written as YAML double-quoted scalars. Keys this
module does not own are kept as raw text, including indented continuation lines,
so hand-edited records are written back unchanged.
"""

from __future__ import annotations

import re

import yaml

from .errors import FormatError
from .models import Article

MARKER = "---"

# record key -> Article attribute
FIELD_KEYS = {
    "id": "id",
    "feed": "feed",
    "title": "title",
    "link": "link",
    "author": "author",
    "date": "published",
    "read": "read",
    "starred": "starred",
}
BOOL_KEYS = ("read", "starred")
# id and feed make up the record identity and its file name
IDENTITY_KEYS = ("id", "feed")

_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*$")


def decode(raw: str) -> Article:
    header_lines, body = _split(raw)
    values: dict[str, str] = {}
    extra: dict[str, str] = {}
    last_key: str | None = None

    for line in header_lines:
        text = line.rstrip("\r\n")
        if not text.strip():
            continue
        if _is_continuation(text):
            if last_key is None or last_key in FIELD_KEYS:
                raise FormatError(f"unexpected continuation line: {text!r}")
            extra[last_key] += "\n" + text
            continue
        key, sep, rest = text.partition(":")
        key = key.strip()
        if not sep or not _KEY_RE.match(key):
            raise FormatError(f"malformed metadata line: {text!r}")
        value = rest.strip()
        if key in FIELD_KEYS:
            values[key] = _unquote(value)
        else:
            extra[key] = value
        last_key = key

    article_id = values.get("id", "")
    if not article_id:
        raise FormatError("record has no id")

    return Article(
        id=article_id,
        feed=values.get("feed", ""),
        title=values.get("title", ""),
        link=values.get("link", ""),
        author=values.get("author"),
        published=values.get("date"),
        read=_parse_bool("read", values.get("read", "false")),
        starred=_parse_bool("starred", values.get("starred", "false")),
        content=body,
        extra=extra,
    )


def encode(article: Article) -> str:
    lines = [MARKER]
    lines.append(_field_line("id", article.id))
    lines.append(_field_line("feed", article.feed))
    lines.append(_field_line("title", article.title))
    lines.append(_field_line("link", article.link))
    if article.author is not None:
        lines.append(_field_line("author", article.author))
    if article.published is not None:
        lines.append(_field_line("date", article.published))
    lines.append(_field_line("read", format_bool(article.read)))
    lines.append(_field_line("starred", format_bool(article.starred)))
    for key, value in article.extra.items():
        lines.append(_extra_line(key, value))
    lines.append(MARKER)
    return "\n".join(lines) + "\n\n" + article.content


def replace_field(raw: str, key: str, value: str) -> str:
    """Rewrite the metadata line for ``key``, leaving every other byte as it was.

    When the key is repeated the last occurrence is rewritten, matching ``decode``.
    A key missing from the block is appended just before the closing marker.
    """
    if key not in FIELD_KEYS:
        raise FormatError(f"unknown field: {key}")
    if key in BOOL_KEYS:
        _parse_bool(key, value)
    lines = _lines(raw)
    closing = _closing_index(lines)
    new_line = _field_line(key, value)

    for index in range(closing - 1, 0, -1):
        text = lines[index].rstrip("\r\n")
        if _is_continuation(text):
            continue
        line_key, sep, _ = text.partition(":")
        if sep and line_key.strip() == key:
            lines[index] = new_line + _line_ending(lines[index])
            return "".join(lines)

    lines.insert(closing, new_line + _line_ending(lines[closing - 1]))
    return "".join(lines)


def format_bool(value: bool) -> str:
    return "true" if value else "false"


def _split(raw: str) -> tuple[list[str], str]:
    lines = _lines(raw)
    closing = _closing_index(lines)
    body = "".join(lines[closing + 1:])
    if body.startswith("\r\n"):
        body = body[2:]
    elif body.startswith("\n"):
        body = body[1:]
    return lines[1:closing], body


def _closing_index(lines: list[str]) -> int:
    if not lines or lines[0].rstrip("\r\n") != MARKER:
        raise FormatError("record does not start with a metadata marker")
    for index in range(1, len(lines)):
        if lines[index].rstrip("\r\n") == MARKER:
            return index
    raise FormatError("metadata block is not closed")


def _line_ending(line: str) -> str:
    if line.endswith("\r\n"):
        return "\r\n"
    return "\n"


def _is_continuation(text: str) -> bool:
    return text[:1] in (" ", "\t") or text.startswith("-")


def _parse_bool(key: str, value: str) -> bool:
    if value == "true":
        return True
    if value == "false":
        return False
    raise FormatError(f"{key} must be true or false, got {value!r}")


def _needs_quoting(value: str) -> bool:
    return (
        value != value.strip()
        or "\n" in value
        or "\r" in value
        or value.startswith('"')
    )


def _field_line(key: str, value: str) -> str:
    if _needs_quoting(value):
        value = _quote(value)
    return f"{key}: {value}" if value else f"{key}:"


def _quote(value: str) -> str:
    return yaml.safe_dump(value, default_style='"', allow_unicode=True, width=float("inf")).rstrip("\n")


def _extra_line(key: str, value: str) -> str:
    if key in FIELD_KEYS or not _KEY_RE.match(key):
        raise FormatError(f"invalid extra key: {key!r}")
    head, _, tail = value.partition("\n")
    if head != head.strip():
        raise FormatError(f"extra value for {key!r} has surrounding whitespace")
    if tail:
        for continuation in tail.split("\n"):
            if not _is_continuation(continuation):
                raise FormatError(f"extra value for {key!r} has an unindented line")
    line = f"{key}: {head}" if head else f"{key}:"
    return line + ("\n" + tail if tail else "")


def _unquote(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        try:
            decoded = yaml.safe_load(value)
        except yaml.YAMLError:
            return value
        if isinstance(decoded, str):
            return decoded
    return value


def _lines(raw: str) -> list[str]:
    # split on "\n" only; str.splitlines would also break on form feeds and U+2028
    return [part for part in re.split(r"(?<=\n)", raw) if part]
