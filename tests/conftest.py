from __future__ import annotations

import logging
from xml.sax.saxutils import escape

import pytest

from zetrss.config import load_config
from zetrss.models import Article
from zetrss.storage import ArticleStore


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    for name in (
        "ZETRSS_CONFIG",
        "ZETRSS_NOTES_DIR",
        "ZETRSS_SESSION_ID",
        "ZETRSS_LOG_LEVEL",
        "ZETRSS_LOG_FILE",
        "ZETRSS_LOG_LEVELS",
    ):
        monkeypatch.delenv(name, raising=False)
    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    yield
    root.handlers = original_handlers
    root.setLevel(original_level)


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    path = tmp_path / "data"
    monkeypatch.setenv("ZETRSS_DATA_DIR", str(path))
    return path


@pytest.fixture
def config(data_dir):
    return load_config()


@pytest.fixture
def store(data_dir):
    return ArticleStore(str(data_dir)).init()


@pytest.fixture
def make_article():
    def _make(article_id: str = "a1", **overrides) -> Article:
        values = {
            "id": article_id,
            "feed": "https://example.com/feed.xml",
            "title": f"Title {article_id}",
            "link": f"https://example.com/{article_id}",
            "content": "First paragraph.\n\nSecond paragraph.",
        }
        values.update(overrides)
        return Article(**values)

    return _make


@pytest.fixture
def rss_document():
    def _build(items: list[dict], title: str = "Example Feed") -> bytes:
        parts = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<rss version="2.0"><channel>',
            f"<title>{escape(title)}</title>",
            "<link>https://example.com/</link>",
            "<description>Example</description>",
        ]
        for item in items:
            parts.append("<item>")
            if "title" in item:
                parts.append(f"<title>{escape(item['title'])}</title>")
            if "link" in item:
                parts.append(f"<link>{escape(item['link'])}</link>")
            if "guid" in item:
                parts.append(f'<guid isPermaLink="false">{escape(item["guid"])}</guid>')
            if "author" in item:
                parts.append(f"<author>{escape(item['author'])}</author>")
            if "pub_date" in item:
                parts.append(f"<pubDate>{item['pub_date']}</pubDate>")
            if "description" in item:
                parts.append(f"<description><![CDATA[{item['description']}]]></description>")
            parts.append("</item>")
        parts.append("</channel></rss>")
        return "\n".join(parts).encode("utf-8")

    return _build


@pytest.fixture
def atom_document():
    def _build(entries: list[dict], title: str = "Example Atom") -> bytes:
        parts = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<feed xmlns="http://www.w3.org/2005/Atom">',
            f"<title>{escape(title)}</title>",
            "<id>urn:example:feed</id>",
            "<updated>2024-03-01T00:00:00Z</updated>",
        ]
        for entry in entries:
            parts.append("<entry>")
            parts.append(f"<title>{escape(entry.get('title', ''))}</title>")
            if "id" in entry:
                parts.append(f"<id>{escape(entry['id'])}</id>")
            if "link" in entry:
                parts.append(f'<link rel="alternate" href="{escape(entry["link"])}"/>')
            if "updated" in entry:
                parts.append(f"<updated>{entry['updated']}</updated>")
            if "published" in entry:
                parts.append(f"<published>{entry['published']}</published>")
            if "content" in entry:
                parts.append(f'<content type="html">{escape(entry["content"])}</content>')
            parts.append("</entry>")
        parts.append("</feed>")
        return "\n".join(parts).encode("utf-8")

    return _build
