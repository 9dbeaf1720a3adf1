import os
import socket
from urllib.error import HTTPError, URLError

import pytest

from zetrss import ingest
from zetrss.errors import NetworkError
from zetrss.ingest import FetchedDocument, fetch_document, fetch_feeds
from zetrss.utils import stable_article_id

FEED_A = "https://a.example/feed.xml"
FEED_B = "https://b.example/rss"


def _serve(monkeypatch, documents):
    calls = []

    def fake_fetch(url, **kwargs):
        calls.append(url)
        document = documents[url]
        if isinstance(document, Exception):
            raise document
        return FetchedDocument(url=url, http_status=200, content=document)

    monkeypatch.setattr(ingest, "fetch_document", fake_fetch)
    return calls


def test_fetch_is_idempotent(store, config, monkeypatch, rss_document):
    _serve(
        monkeypatch,
        {
            FEED_A: rss_document(
                [
                    {"title": "One", "link": "https://a.example/1", "guid": "urn:a:1"},
                    {"title": "Two", "link": "https://a.example/2", "guid": "urn:a:2"},
                ]
            )
        },
    )

    first = fetch_feeds([FEED_A], store, config)
    second = fetch_feeds([FEED_A], store, config)

    assert first.new_count == 2
    assert second.new_count == 0
    assert second.fetched_count == 2
    assert len(os.listdir(store.articles_dir)) == 2


def test_partial_failure_is_reported_per_feed(store, config, monkeypatch, rss_document):
    _serve(
        monkeypatch,
        {
            FEED_A: NetworkError(FEED_A, "timed out"),
            FEED_B: rss_document([{"title": "Hello", "link": "https://b.example/hello"}]),
        },
    )

    report = fetch_feeds([FEED_A, FEED_B], store, config)

    assert [result.url for result in report.per_feed] == [FEED_A, FEED_B]
    assert report.per_feed[0].status == "error"
    assert report.per_feed[0].error == "timed out"
    assert report.per_feed[1].new_count == 1
    assert report.feeds_ok == 1
    assert report.feeds_error == 1
    assert [a.title for a in store.list()] == ["Hello"]


def test_unparseable_document_fails_only_that_feed(store, config, monkeypatch, rss_document):
    _serve(
        monkeypatch,
        {
            FEED_A: b"this is not a feed",
            FEED_B: rss_document([{"title": "Hello", "link": "https://b.example/hello"}]),
        },
    )

    report = fetch_feeds([FEED_A, FEED_B], store, config)

    assert report.per_feed[0].error.startswith("parse error")
    assert report.per_feed[1].error is None


def test_guid_takes_priority_over_link(store, config, monkeypatch, rss_document):
    _serve(
        monkeypatch,
        {
            FEED_A: rss_document(
                [{"title": "One", "link": "https://a.example/1?ref=home", "guid": "urn:a:1"}]
            )
        },
    )

    fetch_feeds([FEED_A], store, config)

    article = store.get(stable_article_id(FEED_A, "urn:a:1"))
    assert article.link == "https://a.example/1?ref=home"
    assert article.feed == FEED_A


def test_entry_without_guid_or_link_is_skipped(store, config, monkeypatch, rss_document):
    _serve(
        monkeypatch,
        {FEED_A: rss_document([{"title": "Orphan"}, {"title": "Kept", "link": "https://a.example/k"}])},
    )

    report = fetch_feeds([FEED_A], store, config)

    assert report.per_feed[0].skipped_count == 1
    assert report.per_feed[0].new_count == 1
    assert store.get(stable_article_id(FEED_A, "https://a.example/k")).title == "Kept"


def test_entry_fields_are_extracted(store, config, monkeypatch, rss_document):
    _serve(
        monkeypatch,
        {
            FEED_A: rss_document(
                [
                    {
                        "title": "Multi\nline   title",
                        "link": "https://a.example/1",
                        "author": "jo@example.com (Jo)",
                        "pub_date": "Fri, 01 Mar 2024 12:00:00 +0100",
                        "description": "<p>Hello <b>world</b></p><script>x()</script><p>Second</p>",
                    }
                ]
            )
        },
    )

    fetch_feeds([FEED_A], store, config)

    [article] = store.list()
    assert article.title == "Multi line title"
    assert article.published == "2024-03-01T11:00:00+00:00"
    assert article.author
    assert article.content == "Hello world\n\nSecond"
    assert article.read is False
    assert article.starred is False


def test_atom_updated_is_used_when_published_missing(store, config, monkeypatch, atom_document):
    _serve(
        monkeypatch,
        {
            FEED_A: atom_document(
                [
                    {
                        "title": "Atom entry",
                        "id": "urn:atom:1",
                        "link": "https://a.example/atom/1",
                        "updated": "2024-02-01T08:30:00Z",
                        "content": "<p>Body</p>",
                    },
                    {"title": "Undated", "id": "urn:atom:2", "link": "https://a.example/atom/2"},
                ]
            )
        },
    )

    fetch_feeds([FEED_A], store, config)

    dated = store.get(stable_article_id(FEED_A, "urn:atom:1"))
    assert dated.published == "2024-02-01T08:30:00+00:00"
    assert dated.link == "https://a.example/atom/1"
    assert dated.content == "Body"


def test_duplicate_feed_urls_fetch_once(store, config, monkeypatch, rss_document):
    calls = _serve(monkeypatch, {FEED_A: rss_document([])})

    report = fetch_feeds([FEED_A, FEED_A, "https://A.example/feed.xml?utm_source=x"], store, config)

    assert calls == [FEED_A]
    assert len(report.per_feed) == 1


def test_on_result_called_per_feed(store, config, monkeypatch, rss_document):
    _serve(monkeypatch, {FEED_A: rss_document([]), FEED_B: NetworkError(FEED_B, "HTTP 500", 500)})
    seen = []

    fetch_feeds([FEED_A, FEED_B], store, config, on_result=seen.append)

    assert sorted(result.url for result in seen) == [FEED_A, FEED_B]


class _Response:
    def __init__(self, status, body):
        self.status = status
        self.body = body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def getcode(self):
        return self.status

    def read(self):
        return self.body


def test_fetch_document_retries_connection_failures(monkeypatch):
    attempts = []

    def fake_urlopen(request, timeout):
        attempts.append(request.get_header("User-agent"))
        if len(attempts) == 1:
            raise URLError(socket.timeout("timed out"))
        return _Response(200, b"<rss/>")

    monkeypatch.setattr(ingest, "urlopen", fake_urlopen)
    monkeypatch.setattr(ingest.time, "sleep", lambda seconds: None)

    document = fetch_document(FEED_A, {"User-Agent": "test-agent"}, timeout=5, max_retries=1, backoff_seconds=0)

    assert document.content == b"<rss/>"
    assert attempts == ["test-agent", "test-agent"]


def test_fetch_document_gives_up_after_retries(monkeypatch):
    sleeps = []

    def fake_urlopen(request, timeout):
        raise URLError(socket.timeout())

    monkeypatch.setattr(ingest, "urlopen", fake_urlopen)
    monkeypatch.setattr(ingest.time, "sleep", sleeps.append)

    with pytest.raises(NetworkError) as excinfo:
        fetch_document(FEED_A, {}, timeout=5, max_retries=2, backoff_seconds=1.5)

    assert excinfo.value.reason == "timed out"
    assert sleeps == [1.5, 3.0]


def test_fetch_document_does_not_retry_http_errors(monkeypatch):
    attempts = []

    def fake_urlopen(request, timeout):
        attempts.append(request.full_url)
        raise HTTPError(request.full_url, 404, "Not Found", None, None)

    monkeypatch.setattr(ingest, "urlopen", fake_urlopen)

    with pytest.raises(NetworkError) as excinfo:
        fetch_document(FEED_A, {}, timeout=5, max_retries=3, backoff_seconds=0)

    assert excinfo.value.http_status == 404
    assert excinfo.value.reason == "HTTP 404"
    assert len(attempts) == 1


def test_refetch_keeps_reader_state_and_first_copy(store, config, monkeypatch, rss_document):
    documents = {FEED_A: rss_document([{"title": "Original", "link": "https://a.example/1", "guid": "urn:a:1"}])}
    _serve(monkeypatch, documents)
    fetch_feeds([FEED_A], store, config)
    article_id = stable_article_id(FEED_A, "urn:a:1")
    store.mark_read(article_id)
    store.set_starred(article_id, True)

    documents[FEED_A] = rss_document([{"title": "Edited upstream", "link": "https://a.example/1", "guid": "urn:a:1"}])
    report = fetch_feeds([FEED_A], store, config)

    assert report.new_count == 0
    article = store.get(article_id)
    assert article.title == "Original"
    assert article.read is True
    assert article.starred is True


def test_repeated_guid_in_one_document_is_stored_once(store, config, monkeypatch, rss_document):
    _serve(
        monkeypatch,
        {
            FEED_A: rss_document(
                [
                    {"title": "First", "link": "https://a.example/1", "guid": "urn:a:same"},
                    {"title": "Second", "link": "https://a.example/2", "guid": "urn:a:same"},
                ]
            )
        },
    )

    report = fetch_feeds([FEED_A], store, config)

    assert report.per_feed[0].fetched_count == 2
    assert report.new_count == 1
    assert os.listdir(store.articles_dir) == [f"{stable_article_id(FEED_A, 'urn:a:same')}.md"]
    assert [a.title for a in store.list()] == ["First"]


def test_one_timeout_among_three_feeds(store, config, monkeypatch, rss_document):
    feed_c = "https://c.example/atom.xml"
    _serve(
        monkeypatch,
        {
            FEED_A: rss_document([{"title": "From A", "link": "https://a.example/1"}]),
            FEED_B: NetworkError(FEED_B, "timed out"),
            feed_c: rss_document([{"title": "From C", "link": "https://c.example/1"}]),
        },
    )

    report = fetch_feeds([FEED_A, FEED_B, feed_c], store, config)

    assert [result.url for result in report.per_feed] == [FEED_A, FEED_B, feed_c]
    assert [result.status for result in report.per_feed] == ["ok", "error", "ok"]
    assert report.per_feed[1].error == "timed out"
    assert report.feeds_ok == 2
    assert report.feeds_error == 1
    assert report.new_count == 2
    assert sorted(a.title for a in store.list()) == ["From A", "From C"]
