from __future__ import annotations

import re

from bs4 import BeautifulSoup

_BLOCK_TAGS = [
    "p",
    "div",
    "section",
    "article",
    "blockquote",
    "pre",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "ul",
    "ol",
    "table",
    "tr",
    "figure",
]
_HTML_HINT = re.compile(r"<\s*/?\s*[a-zA-Z][^>]*>|&[a-zA-Z#0-9]+;")


def looks_like_html(text: str) -> bool:
    return bool(_HTML_HINT.search(text))


def html_to_text(html: str) -> str:
    """Flatten an entry's HTML body into paragraphs of plain text.

    Block elements become blank-line separated paragraphs, list items get a
    leading dash, ``<br>`` becomes a newline and scripts/styles are dropped.
    """
    if not html:
        return ""
    if not looks_like_html(html):
        return _normalize_text(html)
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "iframe"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for item in soup.find_all("li"):
        item.insert_before("\n\n- ")
        item.insert_after("\n\n")
    for img in soup.find_all("img"):
        alt = (img.get("alt") or "").strip()
        img.replace_with(f"[image: {alt}]" if alt else "")
    for block in soup.find_all(_BLOCK_TAGS):
        block.insert_before("\n\n")
        block.insert_after("\n\n")
    return _normalize_text(soup.get_text())


def first_paragraph(text: str) -> str:
    for paragraph in text.split("\n\n"):
        if paragraph.strip():
            return paragraph.strip()
    return ""


def _normalize_text(text: str) -> str:
    paragraphs = []
    for block in re.split(r"\n\s*\n", text.replace("\r\n", "\n")):
        lines = [re.sub(r"[ \t\xa0]+", " ", line).strip() for line in block.split("\n")]
        cleaned = "\n".join(line for line in lines if line)
        if cleaned:
            paragraphs.append(cleaned)
    return "\n\n".join(paragraphs)
