from __future__ import annotations

import glob
import json
import logging
import os
import re
import tempfile
from typing import Iterator

from . import frontmatter
from .errors import ConfirmationRequired, FormatError, NotFound, StoreCorruption
from .fsinit import (
    ARTICLES_DIRNAME,
    DISCOVERY_FILENAME,
    FEED_LIST_FILENAME,
    SESSIONS_DIRNAME,
    build_default_paths,
    ensure_runtime_dirs,
)
from .models import Article, ArticleFilter, DiscoveryResult, FeedRecord
from .utils import log_event, parse_date_value

RECORD_SUFFIX = ".md"
_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_TEMP_PREFIX = ".tmp-"


class ArticleStore:
    """Flat-file article store rooted at one data directory.

    Every record is re-read from disk on each call, so edits made with other
    tools between invocations are always picked up.
    """

    def __init__(self, data_dir: str, logger: logging.Logger | None = None) -> None:
        self.data_dir = os.path.abspath(data_dir)
        self.articles_dir = os.path.join(self.data_dir, ARTICLES_DIRNAME)
        self.sessions_dir = os.path.join(self.data_dir, SESSIONS_DIRNAME)
        self.feed_list_path = os.path.join(self.data_dir, FEED_LIST_FILENAME)
        self.discovery_path = os.path.join(self.data_dir, DISCOVERY_FILENAME)
        self.logger = logger or logging.getLogger("zetrss.storage")

    def init(self) -> "ArticleStore":
        ensure_runtime_dirs(build_default_paths(self.data_dir))
        return self

    def article_path(self, article_id: str) -> str:
        if not article_id or not _ID_RE.match(article_id):
            raise NotFound("article", article_id)
        return os.path.join(self.articles_dir, article_id + RECORD_SUFFIX)

    def put_if_absent(self, article: Article) -> bool:
        path = self.article_path(article.id)
        text = frontmatter.encode(article)
        tmp_path = self._write_temp(self.articles_dir, text)
        try:
            # link() refuses to replace an existing name, so the record appears
            # complete or not at all and concurrent writers of one id cannot both win
            os.link(tmp_path, path)
        except FileExistsError:
            return False
        finally:
            os.unlink(tmp_path)
        return True

    def exists(self, article_id: str) -> bool:
        return os.path.exists(self.article_path(article_id))

    def get(self, article_id: str) -> Article:
        path = self.article_path(article_id)
        raw = self._read(path, article_id)
        try:
            return frontmatter.decode(raw)
        except FormatError as exc:
            raise StoreCorruption(path, str(exc)) from exc

    def iter_articles(self) -> Iterator[Article]:
        for path in self._record_paths():
            try:
                with open(path, "r", encoding="utf-8", newline="") as handle:
                    raw = handle.read()
            except FileNotFoundError:
                continue
            except (OSError, UnicodeDecodeError) as exc:
                log_event(self.logger, logging.WARNING, "record_unreadable", path=path, error=str(exc))
                continue
            try:
                yield frontmatter.decode(raw)
            except FormatError as exc:
                log_event(self.logger, logging.WARNING, "record_corrupt", path=path, error=str(exc))

    def list(self, article_filter: ArticleFilter | None = None) -> list[Article]:
        article_filter = article_filter or ArticleFilter()
        query = (article_filter.query or "").lower()
        selected = []
        for article in self.iter_articles():
            if not article_filter.show_read and article.read:
                continue
            if article_filter.starred_only and not article.starred:
                continue
            if article_filter.feed_url and article.feed != article_filter.feed_url:
                continue
            if query and not _matches(article, query):
                continue
            selected.append(article)
        selected.sort(key=_sort_key)
        if article_filter.limit is not None:
            selected = selected[: max(0, article_filter.limit)]
        return selected

    def update_field(self, article_id: str, field: str, value: str) -> None:
        if field not in frontmatter.FIELD_KEYS:
            raise ValueError(f"unknown field: {field}")
        if field in frontmatter.IDENTITY_KEYS:
            raise ValueError(f"{field} identifies the record and cannot be changed")
        if field in frontmatter.BOOL_KEYS and value not in ("true", "false"):
            raise ValueError(f"{field} must be true or false, got {value!r}")
        path = self.article_path(article_id)
        raw = self._read(path, article_id)
        try:
            updated = frontmatter.replace_field(raw, field, value)
        except FormatError as exc:
            raise StoreCorruption(path, str(exc)) from exc
        if updated == raw:
            return
        self._atomic_write(path, updated)

    def mark_read(self, article_id: str) -> None:
        self.update_field(article_id, "read", "true")

    def mark_unread(self, article_id: str) -> None:
        self.update_field(article_id, "read", "false")

    def set_starred(self, article_id: str, starred: bool) -> None:
        self.update_field(article_id, "starred", frontmatter.format_bool(starred))

    def toggle_star(self, article_id: str) -> bool:
        article = self.get(article_id)
        starred = not article.starred
        self.set_starred(article_id, starred)
        return starred

    def mark_all_read(self, feed_url: str | None = None) -> int:
        changed = 0
        for article in self.list(ArticleFilter(show_read=False, feed_url=feed_url)):
            self.mark_read(article.id)
            changed += 1
        return changed

    def delete_all(self, confirm: bool = False) -> int:
        if not confirm:
            raise ConfirmationRequired("refusing to delete the store without confirmation")
        deleted = 0
        for path in self._record_paths():
            try:
                os.unlink(path)
            except FileNotFoundError:
                continue
            deleted += 1
        for path in glob.glob(os.path.join(self.articles_dir, _TEMP_PREFIX + "*")):
            _unlink_quietly(path)
        for path in glob.glob(os.path.join(self.sessions_dir, "*")):
            _unlink_quietly(path)
        _unlink_quietly(self.feed_list_path)
        _unlink_quietly(self.discovery_path)
        log_event(self.logger, logging.INFO, "store_cleared", data_dir=self.data_dir, deleted=deleted)
        return deleted

    def write_feed_list(self, urls: list[str]) -> None:
        text = "".join(f"{url}\n" for url in urls)
        self._atomic_write(self.feed_list_path, text)

    def read_feed_list(self) -> list[str]:
        try:
            with open(self.feed_list_path, "r", encoding="utf-8") as handle:
                lines = handle.read().splitlines()
        except FileNotFoundError:
            return []
        urls: list[str] = []
        seen: set[str] = set()
        for line in lines:
            url = line.strip()
            if not url or url.startswith("#") or url in seen:
                continue
            seen.add(url)
            urls.append(url)
        return urls

    def write_discovery(self, result: DiscoveryResult, scanned_at: str) -> None:
        payload = {
            "root": result.root,
            "scanned_at": scanned_at,
            "records": [
                {
                    "url": record.url,
                    "source_file": record.source_file,
                    "line_number": record.line_number,
                }
                for record in result.records
            ],
        }
        self._atomic_write(self.discovery_path, json.dumps(payload, indent=2) + "\n")

    def read_discovery(self) -> tuple[str | None, list[FeedRecord]]:
        try:
            with open(self.discovery_path, "r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except FileNotFoundError:
            return None, []
        except ValueError as exc:
            raise StoreCorruption(self.discovery_path, str(exc)) from exc
        if not isinstance(payload, dict):
            raise StoreCorruption(self.discovery_path, "expected a JSON object")
        records = []
        for item in payload.get("records") or []:
            try:
                records.append(
                    FeedRecord(
                        url=str(item["url"]),
                        source_file=str(item["source_file"]),
                        line_number=int(item["line_number"]),
                    )
                )
            except (KeyError, TypeError, ValueError):
                log_event(self.logger, logging.WARNING, "discovery_record_invalid", record=item)
        root = payload.get("root")
        return (str(root) if root else None), records

    def exchange_path(self, session_id: str) -> str:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", session_id) or "default"
        return os.path.join(self.sessions_dir, f"viewer-{safe}.action")

    def write_exchange(self, session_id: str, payload: str) -> str:
        path = self.exchange_path(session_id)
        self._atomic_write(path, payload)
        return path

    def clear_exchange(self, session_id: str) -> None:
        _unlink_quietly(self.exchange_path(session_id))

    def _record_paths(self) -> list[str]:
        try:
            names = os.listdir(self.articles_dir)
        except FileNotFoundError:
            return []
        return sorted(
            os.path.join(self.articles_dir, name)
            for name in names
            if name.endswith(RECORD_SUFFIX) and not name.startswith(".")
        )

    def _read(self, path: str, article_id: str) -> str:
        try:
            with open(path, "r", encoding="utf-8", newline="") as handle:
                return handle.read()
        except FileNotFoundError as exc:
            raise NotFound("article", article_id) from exc
        except UnicodeDecodeError as exc:
            raise StoreCorruption(path, str(exc)) from exc

    def _write_temp(self, directory: str, text: str) -> str:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=_TEMP_PREFIX, suffix=".part")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
        except BaseException:
            _unlink_quietly(tmp_path)
            raise
        return tmp_path

    def _atomic_write(self, path: str, text: str) -> None:
        tmp_path = self._write_temp(os.path.dirname(path), text)
        try:
            os.replace(tmp_path, path)
        except BaseException:
            _unlink_quietly(tmp_path)
            raise


def _matches(article: Article, query: str) -> bool:
    haystack = "\n".join((article.title, article.content, article.feed)).lower()
    return query in haystack


def _sort_key(article: Article) -> tuple[int, float, str]:
    published = parse_date_value(article.published)
    if published is None:
        return (1, 0.0, article.id)
    return (0, -published.timestamp(), article.id)


def _unlink_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        return
