from __future__ import annotations

from .models import Article, ArticleFilter, StoreStats
from .storage import ArticleStore

VIEWS = ("unread", "all", "starred")


def unread(store: ArticleStore, limit: int | None = None) -> list[Article]:
    return store.list(ArticleFilter(show_read=False, limit=limit))


def all_articles(store: ArticleStore, limit: int | None = None) -> list[Article]:
    return store.list(ArticleFilter(show_read=True, limit=limit))


def starred(store: ArticleStore, limit: int | None = None) -> list[Article]:
    return store.list(ArticleFilter(show_read=True, starred_only=True, limit=limit))


def by_feed(
    store: ArticleStore,
    feed_url: str,
    show_read: bool = False,
    limit: int | None = None,
) -> list[Article]:
    return store.list(ArticleFilter(show_read=show_read, feed_url=feed_url, limit=limit))


def search(
    store: ArticleStore,
    query: str,
    show_read: bool = True,
    limit: int | None = None,
) -> list[Article]:
    return store.list(ArticleFilter(show_read=show_read, query=query, limit=limit))


def build_filter(
    view: str = "unread",
    feed_url: str | None = None,
    query: str | None = None,
    limit: int | None = None,
) -> ArticleFilter:
    if view not in VIEWS:
        raise ValueError(f"unknown view: {view}")
    return ArticleFilter(
        show_read=view != "unread",
        starred_only=view == "starred",
        feed_url=feed_url or None,
        query=query or None,
        limit=limit,
    )


def stats(store: ArticleStore) -> StoreStats:
    articles = store.list(ArticleFilter(show_read=True))
    unread_by_feed: dict[str, int] = {url: 0 for url in store.read_feed_list()}
    unread_count = 0
    starred_count = 0
    for article in articles:
        if article.starred:
            starred_count += 1
        if not article.read:
            unread_count += 1
            unread_by_feed[article.feed] = unread_by_feed.get(article.feed, 0) + 1
    return StoreStats(
        total=len(articles),
        unread=unread_count,
        starred=starred_count,
        unread_by_feed=unread_by_feed,
    )
