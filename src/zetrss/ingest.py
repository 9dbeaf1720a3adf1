from __future__ import annotations

import http.client
import logging
import socket
import ssl
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import feedparser

from .config import Config
from .content import html_to_text
from .errors import NetworkError, ParseError
from .models import Article, FeedResult, FetchReport
from .storage import ArticleStore
from .utils import extract_published_at, log_event, normalize_url, stable_article_id, utc_now_iso


@dataclass(frozen=True)
class FetchedDocument:
    url: str
    http_status: int | None
    content: bytes


@dataclass(frozen=True)
class ParsedEntry:
    key: str | None
    title: str
    link: str
    author: str | None
    published: str | None
    content: str


def fetch_document(
    url: str,
    headers: dict[str, str],
    timeout: int,
    max_retries: int,
    backoff_seconds: float,
) -> FetchedDocument:
    attempt = 0
    while True:
        try:
            request = Request(url, headers=headers)
            with urlopen(request, timeout=timeout) as response:
                status = response.getcode()
                content = response.read()
        except HTTPError as exc:
            raise NetworkError(url, f"HTTP {exc.code}", http_status=exc.code) from exc
        except (URLError, socket.timeout, TimeoutError, ssl.SSLError, ConnectionError) as exc:
            if attempt >= max_retries:
                raise NetworkError(url, _describe_network_error(exc)) from exc
            time.sleep(backoff_seconds * (attempt + 1))
            attempt += 1
            continue
        except (ValueError, OSError, http.client.HTTPException) as exc:
            raise NetworkError(url, str(exc)) from exc
        if status is not None and not 200 <= status < 300:
            raise NetworkError(url, f"HTTP {status}", http_status=status)
        return FetchedDocument(url=url, http_status=status, content=content)


def _describe_network_error(exc: BaseException) -> str:
    reason = getattr(exc, "reason", None)
    if isinstance(reason, (socket.timeout, TimeoutError)) or isinstance(exc, (socket.timeout, TimeoutError)):
        return "timed out"
    if isinstance(reason, socket.gaierror):
        return f"DNS lookup failed: {reason}"
    if isinstance(reason, ssl.SSLError) or isinstance(exc, ssl.SSLError):
        return f"TLS error: {reason or exc}"
    return str(reason or exc)


def parse_document(content: bytes, url: str, logger: logging.Logger) -> tuple[str, list[ParsedEntry]]:
    parsed = feedparser.parse(content)
    kind = parsed.get("version") or ""
    entries = parsed.entries or []
    if not kind and not entries:
        reason = str(parsed.get("bozo_exception") or "document is not an RSS or Atom feed")
        raise ParseError(f"{url}: {reason}")
    if parsed.bozo:
        log_event(
            logger,
            logging.WARNING,
            "feed_parse_warning",
            feed=url,
            error=str(parsed.get("bozo_exception")),
        )
    return kind, [_parse_entry(entry) for entry in entries]


def _parse_entry(entry: Any) -> ParsedEntry:
    guid = (entry.get("id") or "").strip()
    link = (entry.get("link") or "").strip()
    if not link:
        for candidate in entry.get("links") or []:
            href = (candidate.get("href") or "").strip()
            if href and candidate.get("rel", "alternate") == "alternate":
                link = href
                break
    title = " ".join((entry.get("title") or "").split())
    author = (entry.get("author") or "").strip() or None
    return ParsedEntry(
        # GUID wins over link when both exist
        key=guid or link or None,
        title=title,
        link=link or guid,
        author=author,
        published=extract_published_at(entry),
        content=html_to_text(_entry_body(entry)),
    )


def _entry_body(entry: Any) -> str:
    for item in entry.get("content") or []:
        value = item.get("value") if hasattr(item, "get") else None
        if value:
            return value
    return entry.get("summary") or entry.get("description") or ""


def build_article(feed_url: str, entry: ParsedEntry) -> Article:
    if not entry.key:
        raise ParseError(f"{feed_url}: entry has neither a GUID nor a link")
    return Article(
        id=stable_article_id(feed_url, entry.key),
        feed=feed_url,
        title=entry.title,
        link=entry.link,
        author=entry.author,
        published=entry.published,
        content=entry.content,
    )


def process_feed(
    feed_url: str,
    store: ArticleStore,
    config: Config,
    logger: logging.Logger,
) -> FeedResult:
    http_cfg = config.fetch
    try:
        document = fetch_document(
            feed_url,
            headers={"User-Agent": http_cfg.user_agent},
            timeout=http_cfg.timeout_seconds,
            max_retries=http_cfg.max_retries,
            backoff_seconds=http_cfg.backoff_seconds,
        )
    except NetworkError as exc:
        log_event(logger, logging.ERROR, "feed_fetch_failed", feed=feed_url, error=exc.reason)
        return FeedResult(
            url=feed_url,
            status="error",
            http_status=exc.http_status,
            fetched_count=0,
            new_count=0,
            skipped_count=0,
            error=exc.reason,
        )

    try:
        kind, entries = parse_document(document.content, feed_url, logger)
    except ParseError as exc:
        log_event(logger, logging.ERROR, "feed_parse_failed", feed=feed_url, error=str(exc))
        return FeedResult(
            url=feed_url,
            status="error",
            http_status=document.http_status,
            fetched_count=0,
            new_count=0,
            skipped_count=0,
            error=f"parse error: {exc}",
        )

    new_count = 0
    skipped_count = 0
    for entry in entries:
        try:
            article = build_article(feed_url, entry)
        except ParseError as exc:
            skipped_count += 1
            log_event(logger, logging.WARNING, "entry_skipped", feed=feed_url, reason=str(exc))
            continue
        if store.put_if_absent(article):
            new_count += 1

    log_event(
        logger,
        logging.INFO,
        "feed_fetched",
        feed=feed_url,
        kind=kind or "unknown",
        found_count=len(entries),
        new_count=new_count,
        skipped_count=skipped_count,
    )
    return FeedResult(
        url=feed_url,
        status="ok",
        http_status=document.http_status,
        fetched_count=len(entries),
        new_count=new_count,
        skipped_count=skipped_count,
        error=None,
    )


def fetch_feeds(
    feed_urls: list[str],
    store: ArticleStore,
    config: Config,
    logger: logging.Logger | None = None,
    on_result: Callable[[FeedResult], None] | None = None,
) -> FetchReport:
    """Fetch every feed through a bounded thread pool and store new entries.

    A failing feed is recorded in its own ``FeedResult`` and never stops the
    others. Results come back in the order of ``feed_urls``; ``on_result`` is
    called as each feed finishes.
    """
    logger = logger or logging.getLogger("zetrss.ingest")
    started_at = utc_now_iso()
    urls = _unique_feed_urls(feed_urls, config)
    results: dict[str, FeedResult] = {}

    if urls:
        max_workers = max(1, min(config.fetch.workers, len(urls)))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(process_feed, url, store, config, logger): url for url in urls
            }
            for future in as_completed(futures):
                url = futures[future]
                try:
                    result = future.result()
                except OSError:
                    # store-level failures (disk full, unwritable root) end the run
                    for pending in futures:
                        pending.cancel()
                    raise
                except Exception as exc:  # noqa: BLE001
                    log_event(logger, logging.ERROR, "feed_worker_error", feed=url, error=str(exc))
                    result = FeedResult(
                        url=url,
                        status="error",
                        http_status=None,
                        fetched_count=0,
                        new_count=0,
                        skipped_count=0,
                        error=str(exc),
                    )
                results[url] = result
                if on_result is not None:
                    on_result(result)

    report = FetchReport(
        started_at=started_at,
        finished_at=utc_now_iso(),
        per_feed=[results[url] for url in urls],
    )
    log_event(
        logger,
        logging.INFO,
        "fetch_complete",
        feeds=len(urls),
        feeds_ok=report.feeds_ok,
        feeds_error=report.feeds_error,
        fetched_count=report.fetched_count,
        new_count=report.new_count,
    )
    return report


def _unique_feed_urls(feed_urls: list[str], config: Config) -> list[str]:
    urls: list[str] = []
    seen: set[str] = set()
    for url in feed_urls:
        normalized = normalize_url(
            url,
            strip_tracking_params=config.url_normalization.strip_tracking_params,
            tracking_params=config.url_normalization.tracking_params,
        )
        if normalized and normalized not in seen:
            seen.add(normalized)
            urls.append(normalized)
    return urls
