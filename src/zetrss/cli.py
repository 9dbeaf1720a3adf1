from __future__ import annotations

import argparse
import curses
import dataclasses
import logging
import os
import sys

from .config import Config, ConfigError, load_config
from .discovery import scan
from .errors import (
    ConfirmationRequired,
    DiscoveryIOError,
    NotFound,
    StoreCorruption,
    ZetRssError,
)
from .fsinit import set_umask_from_env
from .ingest import fetch_feeds
from .models import Article, DiscoveryResult
from .query import build_filter, stats
from .storage import ArticleStore
from .utils import configure_logging, json_dumps, log_event, utc_now_iso
from .viewer import EXIT_ERROR, run_viewer

DEFAULT_SESSION_ID = "default"


def _setup_logging() -> logging.Logger:
    set_umask_from_env()
    return configure_logging("zetrss")


def _open_store(config: Config, logger: logging.Logger) -> ArticleStore:
    return ArticleStore(config.paths.data_dir, logger=logger).init()


def _err(message: str) -> None:
    print(message, file=sys.stderr)


def _run_scan(root: str, config: Config, store: ArticleStore, logger: logging.Logger) -> DiscoveryResult:
    result = scan(
        root,
        config.url_normalization,
        extensions=config.scan.extensions,
        logger=logger,
    )
    store.write_feed_list([feed.url for feed in result.feeds])
    store.write_discovery(result, scanned_at=utc_now_iso())
    return result


def _print_scan_summary(result: DiscoveryResult) -> None:
    by_file: dict[str, list[str]] = {}
    for record in result.records:
        by_file.setdefault(record.source_file, []).append(f"{record.url} (line {record.line_number})")
    for path, entries in by_file.items():
        label = os.path.relpath(path, result.root)
        print(f"{label}: {len(entries)} feed(s)")
        for entry in entries:
            print(f"  {entry}")
    for error in result.errors:
        _err(f"! {error}")
    print(f"Found {len(result.feeds)} unique feed(s) in {result.files_scanned} file(s) under {result.root}")


def _resolve_scan_root(args: argparse.Namespace, config: Config, store: ArticleStore) -> str | None:
    if getattr(args, "path", None):
        return args.path
    if config.scan.notes_dir:
        return config.scan.notes_dir
    root, _ = store.read_discovery()
    return root


def _cmd_scan(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    store = _open_store(config, logger)
    root = _resolve_scan_root(args, config, store)
    if not root:
        _err("No notes directory given; pass --path or set ZETRSS_NOTES_DIR")
        return 1
    try:
        result = _run_scan(root, config, store, logger)
    except DiscoveryIOError as exc:
        _err(f"Cannot scan {exc.path}: {exc.reason}")
        return 1
    _print_scan_summary(result)
    return 0


def _cmd_fetch(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    store = _open_store(config, logger)

    if args.update:
        root = _resolve_scan_root(args, config, store)
        if not root:
            _err("No notes directory to rescan; pass --path or set ZETRSS_NOTES_DIR")
            return 1
        try:
            result = _run_scan(root, config, store, logger)
        except DiscoveryIOError as exc:
            _err(f"Cannot scan {exc.path}: {exc.reason}")
            return 1
        print(f"Rescanned {result.root}: {len(result.feeds)} feed(s)")

    feed_urls = store.read_feed_list()
    if not feed_urls:
        print("No feeds to fetch; run `zetrss scan --path <notes dir>` first")
        return 0

    report = fetch_feeds(feed_urls, store, config, logger=logger)
    for result in report.per_feed:
        if result.error is None:
            skipped = f", {result.skipped_count} skipped" if result.skipped_count else ""
            print(f"✓ {result.url} ({result.new_count} new of {result.fetched_count}{skipped})")
        else:
            print(f"✗ {result.url}: {result.error}")
    print(
        f"Fetched {report.fetched_count} entries from {report.feeds_ok} feed(s): "
        f"{report.new_count} new, {report.feeds_error} feed(s) failed"
    )
    return 0


def _cmd_view(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = load_config(args.config)
    store = _open_store(config, logger)
    session_id = args.session_id or os.environ.get("ZETRSS_SESSION_ID") or DEFAULT_SESSION_ID
    try:
        return run_viewer(
            store,
            args.id,
            session_id,
            drafts_dir=config.paths.drafts_dir,
            page_overlap=config.viewer.page_overlap,
            max_width=config.viewer.max_width,
            logger=logger,
        )
    except NotFound as exc:
        _err(str(exc))
        return EXIT_ERROR
    except StoreCorruption as exc:
        log_event(logger, logging.ERROR, "store_corrupt", path=exc.path, error=exc.reason)
        _err(f"Corrupt article record {exc.path}: {exc.reason}")
        return EXIT_ERROR
    except curses.error as exc:
        log_event(logger, logging.ERROR, "terminal_error", error=str(exc))
        _err(f"view needs an interactive terminal: {exc}")
        return EXIT_ERROR


def _cmd_mark_read(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(load_config(args.config), logger)
    store.mark_read(args.id)
    return 0


def _cmd_mark_unread(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(load_config(args.config), logger)
    store.mark_unread(args.id)
    return 0


def _cmd_toggle_star(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(load_config(args.config), logger)
    starred = store.toggle_star(args.id)
    print("starred" if starred else "unstarred")
    return 0


def _cmd_mark_all_read(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(load_config(args.config), logger)
    changed = store.mark_all_read(feed_url=args.feed)
    print(f"Marked {changed} article(s) as read")
    return 0


def _cmd_list_feeds(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(load_config(args.config), logger)
    _, records = store.read_discovery()
    print(json_dumps([dataclasses.asdict(record) for record in records], indent=2))
    return 0


def _article_summary(article: Article) -> dict:
    return {
        "id": article.id,
        "feed": article.feed,
        "title": article.title,
        "link": article.link,
        "author": article.author,
        "date": article.published,
        "read": article.read,
        "starred": article.starred,
    }


def _cmd_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(load_config(args.config), logger)
    article_filter = build_filter(args.view, feed_url=args.feed, query=args.search, limit=args.limit)
    articles = store.list(article_filter)
    if args.json:
        print(json_dumps([_article_summary(article) for article in articles], indent=2))
        return 0
    for article in articles:
        flags = ("*" if article.starred else " ") + (" " if article.read else "N")
        date = (article.published or "")[:10] or "-" * 10
        print(f"{article.id}\t{date}\t{flags}\t{article.title or '(untitled)'}")
    if not articles:
        print("No articles")
    return 0


def _cmd_stats(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(load_config(args.config), logger)
    result = stats(store)
    if args.json:
        print(json_dumps(dataclasses.asdict(result), indent=2))
        return 0
    print(f"Total: {result.total}")
    print(f"Unread: {result.unread}")
    print(f"Starred: {result.starred}")
    if result.unread_by_feed:
        print("Unread by feed:")
        for url, count in sorted(result.unread_by_feed.items()):
            print(f"  {count:5d}  {url}")
    return 0


def _cmd_clear(args: argparse.Namespace, logger: logging.Logger) -> int:
    store = _open_store(load_config(args.config), logger)
    try:
        deleted = store.delete_all(confirm=args.yes)
    except ConfirmationRequired:
        print(f"This deletes every article under {store.data_dir}; re-run with --yes to confirm")
        return 0
    print(f"Deleted {deleted} article(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="zetrss", description="Read the RSS feeds referenced in your notes")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (defaults to ZETRSS_CONFIG or <data dir>/config.yml)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_parser = subparsers.add_parser("scan", help="Discover feed URLs in a notes directory")
    scan_parser.add_argument("--path", help="Notes directory (defaults to ZETRSS_NOTES_DIR)")
    scan_parser.set_defaults(func=_cmd_scan)

    fetch_parser = subparsers.add_parser("fetch", help="Fetch every discovered feed")
    fetch_parser.add_argument(
        "--update",
        action="store_true",
        help="Rescan the notes directory before fetching",
    )
    fetch_parser.add_argument("--path", help="Notes directory to rescan with --update")
    fetch_parser.set_defaults(func=_cmd_fetch)

    view_parser = subparsers.add_parser("view", help="Read one article in the terminal")
    view_parser.add_argument("--id", required=True, help="Article id")
    view_parser.add_argument(
        "--session-id",
        default=None,
        help="Exchange file scope (defaults to ZETRSS_SESSION_ID)",
    )
    view_parser.set_defaults(func=_cmd_view)

    mark_read = subparsers.add_parser("mark-read", help="Mark an article as read")
    mark_read.add_argument("id", help="Article id")
    mark_read.set_defaults(func=_cmd_mark_read)

    mark_unread = subparsers.add_parser("mark-unread", help="Mark an article as unread")
    mark_unread.add_argument("id", help="Article id")
    mark_unread.set_defaults(func=_cmd_mark_unread)

    toggle_star = subparsers.add_parser("toggle-star", help="Star or unstar an article")
    toggle_star.add_argument("id", help="Article id")
    toggle_star.set_defaults(func=_cmd_toggle_star)

    mark_all = subparsers.add_parser("mark-all-read", help="Mark every unread article as read")
    mark_all.add_argument("--feed", default=None, help="Only articles from this feed URL")
    mark_all.set_defaults(func=_cmd_mark_all_read)

    list_feeds = subparsers.add_parser("list-feeds", help="Print discovered feeds as JSON")
    list_feeds.set_defaults(func=_cmd_list_feeds)

    list_parser = subparsers.add_parser("list", help="List articles, newest first")
    view_group = list_parser.add_mutually_exclusive_group()
    view_group.add_argument(
        "--all",
        dest="view",
        action="store_const",
        const="all",
        help="Include read articles",
    )
    view_group.add_argument(
        "--starred",
        dest="view",
        action="store_const",
        const="starred",
        help="Only starred articles",
    )
    list_parser.set_defaults(view="unread")
    list_parser.add_argument("--feed", default=None, help="Only articles from this feed URL")
    list_parser.add_argument("--search", default=None, help="Case-insensitive text search")
    list_parser.add_argument("--limit", type=int, default=None, help="Maximum number of articles")
    list_parser.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    list_parser.set_defaults(func=_cmd_list)

    stats_parser = subparsers.add_parser("stats", help="Show article counts")
    stats_parser.add_argument("--json", action="store_true", help="Print JSON")
    stats_parser.set_defaults(func=_cmd_stats)

    clear_parser = subparsers.add_parser("clear", help="Delete every stored article")
    clear_parser.add_argument("--yes", action="store_true", help="Confirm deletion")
    clear_parser.set_defaults(func=_cmd_clear)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    try:
        return args.func(args, logger)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        _err(str(exc))
        return 1
    except NotFound as exc:
        _err(str(exc))
        return 1
    except StoreCorruption as exc:
        log_event(logger, logging.ERROR, "store_corrupt", path=exc.path, error=exc.reason)
        _err(f"Corrupt article record {exc.path}: {exc.reason}")
        return 1
    except ZetRssError as exc:
        _err(str(exc))
        return 1
    except OSError as exc:
        log_event(logger, logging.ERROR, "store_io_error", error=str(exc))
        _err(f"Store error: {exc}")
        return 1
