from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Feed:
    url: str


@dataclass(frozen=True)
class FeedRecord:
    url: str
    source_file: str
    line_number: int


@dataclass(frozen=True)
class Article:
    id: str
    feed: str
    title: str
    link: str
    author: str | None = None
    published: str | None = None
    read: bool = False
    starred: bool = False
    content: str = ""
    # keys found in a hand-edited record that this tool does not own, in file order
    extra: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ArticleFilter:
    show_read: bool = False
    starred_only: bool = False
    feed_url: str | None = None
    query: str | None = None
    limit: int | None = None


@dataclass(frozen=True)
class DiscoveryResult:
    root: str
    feeds: list[Feed]
    records: list[FeedRecord]
    files_scanned: int
    errors: list[str]


@dataclass(frozen=True)
class FeedResult:
    url: str
    status: str
    http_status: int | None
    fetched_count: int
    new_count: int
    skipped_count: int
    error: str | None


@dataclass(frozen=True)
class FetchReport:
    started_at: str
    finished_at: str
    per_feed: list[FeedResult]

    @property
    def feeds_ok(self) -> int:
        return sum(1 for result in self.per_feed if result.error is None)

    @property
    def feeds_error(self) -> int:
        return sum(1 for result in self.per_feed if result.error is not None)

    @property
    def fetched_count(self) -> int:
        return sum(result.fetched_count for result in self.per_feed)

    @property
    def new_count(self) -> int:
        return sum(result.new_count for result in self.per_feed)


@dataclass(frozen=True)
class StoreStats:
    total: int
    unread: int
    starred: int
    unread_by_feed: dict[str, int]
