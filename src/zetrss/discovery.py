from __future__ import annotations

import logging
import os
import re
from urllib.parse import urlsplit

import yaml

from .config import UrlNormalizationConfig
from .errors import DiscoveryIOError
from .models import DiscoveryResult, Feed, FeedRecord
from .utils import log_event, normalize_url

_URL = r"https?://[^\s<>\"'`()\[\]{}]+"
_EXPLICIT_RE = re.compile(r"(?i)\b(?:rss|feed)(?:[ _-]?url)?\s*:\s*<?(" + _URL + ")")
_TAG_RE = re.compile(r"(?i)#feed\s+<?(" + _URL + ")")
_URL_RE = re.compile(_URL)
_FEED_PATH_SUFFIXES = (".rss", ".xml", "/feed", "/rss")
_TRAILING_PUNCTUATION = ".,;:!?)]>'\""
_FRONT_MATTER_KEY = "rss_feeds"

DEFAULT_EXTENSIONS = [".md", ".markdown", ".txt"]


def clean_url(url: str) -> str:
    return url.strip().rstrip(_TRAILING_PUNCTUATION)


def is_feed_path(url: str) -> bool:
    path = urlsplit(url).path.lower().rstrip("/")
    return path.endswith(_FEED_PATH_SUFFIXES)


def find_feed_urls(text: str) -> list[tuple[str, int]]:
    """Return ``(url, line_number)`` pairs for every feed URL in one note.

    Line numbers are 1-based. A URL recognised by more than one rule on the
    same line is reported once.
    """
    found: list[tuple[str, int]] = []
    seen: set[tuple[str, int]] = set()

    def _add(url: str, line_number: int) -> None:
        url = clean_url(url)
        if not url or (url, line_number) in seen:
            return
        seen.add((url, line_number))
        found.append((url, line_number))

    lines = text.split("\n")
    for url, line_number in _front_matter_feeds(lines):
        _add(url, line_number)

    for index, line in enumerate(lines):
        line_number = index + 1
        for match in _EXPLICIT_RE.finditer(line):
            _add(match.group(1), line_number)
        for match in _TAG_RE.finditer(line):
            _add(match.group(1), line_number)
        for match in _URL_RE.finditer(line):
            url = clean_url(match.group(0))
            if is_feed_path(url):
                _add(url, line_number)
    found.sort(key=lambda item: item[1])
    return found


def _front_matter_feeds(lines: list[str]) -> list[tuple[str, int]]:
    if not lines or lines[0].strip() != "---":
        return []
    closing = None
    for index in range(1, len(lines)):
        if lines[index].strip() in ("---", "..."):
            closing = index
            break
    if closing is None:
        return []
    try:
        meta = yaml.safe_load("\n".join(lines[1:closing]))
    except yaml.YAMLError:
        return []
    if not isinstance(meta, dict):
        return []
    values = meta.get(_FRONT_MATTER_KEY)
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, list):
        return []

    key_line = 1
    for index in range(1, closing):
        if lines[index].lstrip().startswith(_FRONT_MATTER_KEY + ":"):
            key_line = index
            break

    results: list[tuple[str, int]] = []
    cursor = key_line
    for value in values:
        if not isinstance(value, str) or not _URL_RE.match(value.strip()):
            continue
        url = value.strip()
        line_number = key_line + 1
        for index in range(cursor, closing):
            if url in lines[index]:
                line_number = index + 1
                cursor = index + 1
                break
        results.append((url, line_number))
    return results


def iter_note_files(root: str, extensions: list[str]) -> list[str]:
    suffixes = tuple(ext.lower() for ext in extensions)
    paths: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        dirnames[:] = sorted(name for name in dirnames if not name.startswith("."))
        for name in sorted(filenames):
            if not name.lower().endswith(suffixes):
                continue
            path = os.path.join(dirpath, name)
            if os.path.islink(path) or not os.path.isfile(path):
                continue
            paths.append(path)
    return paths


def scan(
    root: str,
    url_normalization: UrlNormalizationConfig,
    extensions: list[str] | None = None,
    logger: logging.Logger | None = None,
) -> DiscoveryResult:
    logger = logger or logging.getLogger("zetrss.discovery")
    root = os.path.abspath(os.path.expanduser(root))
    if not os.path.isdir(root):
        raise DiscoveryIOError(root, "notes directory does not exist")

    records: list[FeedRecord] = []
    feeds: list[Feed] = []
    seen_feeds: set[str] = set()
    errors: list[str] = []
    files = iter_note_files(root, extensions or DEFAULT_EXTENSIONS)

    for path in files:
        try:
            text = _read_note(path)
        except DiscoveryIOError as exc:
            log_event(logger, logging.WARNING, "note_unreadable", path=exc.path, error=exc.reason)
            errors.append(str(exc))
            continue
        for url, line_number in find_feed_urls(text):
            normalized = normalize_url(
                url,
                strip_tracking_params=url_normalization.strip_tracking_params,
                tracking_params=url_normalization.tracking_params,
            )
            records.append(FeedRecord(url=normalized, source_file=path, line_number=line_number))
            if normalized not in seen_feeds:
                seen_feeds.add(normalized)
                feeds.append(Feed(url=normalized))

    log_event(
        logger,
        logging.INFO,
        "scan_complete",
        root=root,
        files=len(files),
        records=len(records),
        feeds=len(feeds),
        errors=len(errors),
    )
    return DiscoveryResult(
        root=root,
        feeds=feeds,
        records=records,
        files_scanned=len(files),
        errors=errors,
    )


def _read_note(path: str) -> str:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return handle.read()
    except UnicodeDecodeError as exc:
        raise DiscoveryIOError(path, f"not valid UTF-8: {exc}") from exc
    except OSError as exc:
        raise DiscoveryIOError(path, exc.strerror or str(exc)) from exc
