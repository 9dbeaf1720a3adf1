"""Paged terminal reader for a single article.

``ViewerSession`` is the state machine (Loading -> Reading -> Exiting) and owns
the scroll position over the wrapped rendering of the article. It knows nothing
about terminals; ``run_terminal`` feeds it keys from curses. When the session
ends with an action the calling shell must perform, ``finish`` writes the
payload to the session's exchange file and returns the matching exit status:

    0  plain quit, no exchange file
    1  open in browser, exchange file holds the article link
    2  create note, exchange file holds the path of the drafted note
    3  the viewer could not run (unknown or corrupt article, no terminal)
"""

from __future__ import annotations

import curses
import dataclasses
import logging
import os
import textwrap
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, ClassVar

from .content import first_paragraph
from .models import Article
from .storage import ArticleStore
from .utils import log_event, slugify

EXIT_NORMAL = 0
EXIT_OPEN_BROWSER = 1
EXIT_CREATE_NOTE = 2
EXIT_ERROR = 3

SEPARATOR = "─"


class SessionState(Enum):
    LOADING = "loading"
    READING = "reading"
    EXITING = "exiting"


@dataclass(frozen=True)
class NormalExit:
    exit_code: ClassVar[int] = EXIT_NORMAL


@dataclass(frozen=True)
class OpenBrowser:
    url: str
    exit_code: ClassVar[int] = EXIT_OPEN_BROWSER


@dataclass(frozen=True)
class CreateNote:
    article: Article
    draft_path: str
    exit_code: ClassVar[int] = EXIT_CREATE_NOTE


ExitAction = NormalExit | OpenBrowser | CreateNote

KEYMAP: dict[str, str] = {
    "j": "line_down",
    "KEY_DOWN": "line_down",
    "k": "line_up",
    "KEY_UP": "line_up",
    " ": "page_down",
    "f": "page_down",
    "KEY_NPAGE": "page_down",
    "b": "page_up",
    "KEY_PPAGE": "page_up",
    "g": "jump_top",
    "KEY_HOME": "jump_top",
    "G": "jump_bottom",
    "KEY_END": "jump_bottom",
    "s": "toggle_star",
    "o": "open_in_browser",
    "n": "create_note",
    "q": "quit",
    "\x1b": "quit",
}

FOOTER = " q quit  j/k scroll  space/b page  g/G top/bottom  s star  o browser  n note "


class ViewerSession:
    def __init__(
        self,
        store: ArticleStore,
        article_id: str,
        viewport_height: int = 24,
        width: int = 80,
        drafts_dir: str | None = None,
        page_overlap: int = 2,
        max_width: int = 100,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.article_id = article_id
        self.viewport_height = max(1, viewport_height)
        self.width = max(1, width)
        self.drafts_dir = drafts_dir or os.path.join(store.data_dir, "drafts")
        self.page_overlap = max(0, page_overlap)
        self.max_width = max_width
        self.logger = logger or logging.getLogger("zetrss.viewer")
        self.state = SessionState.LOADING
        self.article: Article | None = None
        self.scroll_offset = 0
        self.lines: list[str] = []
        self.exit_action: ExitAction | None = None

    def open(self) -> Article:
        if self.state is not SessionState.LOADING:
            raise RuntimeError(f"session already {self.state.value}")
        article = self.store.get(self.article_id)
        if not article.read:
            self.store.mark_read(article.id)
            article = dataclasses.replace(article, read=True)
        self.article = article
        self._render()
        self.state = SessionState.READING
        log_event(self.logger, logging.INFO, "viewer_opened", article_id=article.id)
        return article

    @property
    def max_offset(self) -> int:
        return max(0, len(self.lines) - self.viewport_height)

    @property
    def page_step(self) -> int:
        return max(1, self.viewport_height - self.page_overlap)

    def visible_lines(self) -> list[str]:
        return self.lines[self.scroll_offset : self.scroll_offset + self.viewport_height]

    def resize(self, viewport_height: int, width: int) -> None:
        viewport_height = max(1, viewport_height)
        width = max(1, width)
        if (viewport_height, width) == (self.viewport_height, self.width):
            return
        self.viewport_height = viewport_height
        self.width = width
        if self.article is not None:
            self._render()

    def handle_key(self, key: str) -> bool:
        """Apply one key press; returns False once the session is exiting."""
        if self.state is not SessionState.READING:
            return False
        action = KEYMAP.get(key)
        if action is not None:
            getattr(self, action)()
        return self.state is SessionState.READING

    def line_down(self) -> None:
        self._scroll_to(self.scroll_offset + 1)

    def line_up(self) -> None:
        self._scroll_to(self.scroll_offset - 1)

    def page_down(self) -> None:
        self._scroll_to(self.scroll_offset + self.page_step)

    def page_up(self) -> None:
        self._scroll_to(self.scroll_offset - self.page_step)

    def jump_top(self) -> None:
        self._scroll_to(0)

    def jump_bottom(self) -> None:
        self._scroll_to(self.max_offset)

    def toggle_star(self) -> None:
        article = self._require_reading()
        starred = self.store.toggle_star(article.id)
        self.article = dataclasses.replace(article, starred=starred)
        self._render()
        log_event(self.logger, logging.INFO, "viewer_star_toggled", article_id=article.id, starred=starred)

    def open_in_browser(self) -> None:
        article = self._require_reading()
        self._exit(OpenBrowser(url=article.link))

    def create_note(self) -> None:
        article = self._require_reading()
        draft_path = write_draft_note(article, self.drafts_dir)
        self._exit(CreateNote(article=article, draft_path=draft_path))

    def quit(self) -> None:
        self._require_reading()
        self._exit(NormalExit())

    def _exit(self, action: ExitAction) -> None:
        self.exit_action = action
        self.state = SessionState.EXITING
        log_event(
            self.logger,
            logging.INFO,
            "viewer_exit",
            article_id=self.article_id,
            action=type(action).__name__,
        )

    def _require_reading(self) -> Article:
        if self.state is not SessionState.READING or self.article is None:
            raise RuntimeError(f"session is {self.state.value}, not reading")
        return self.article

    def _scroll_to(self, offset: int) -> None:
        self._require_reading()
        self.scroll_offset = min(max(0, offset), self.max_offset)

    def _render(self) -> None:
        assert self.article is not None
        wrap_width = max(10, min(self.width, self.max_width))
        self.lines = render_article(self.article, wrap_width)
        self.scroll_offset = min(self.scroll_offset, self.max_offset)


def render_article(article: Article, width: int) -> list[str]:
    title = article.title or "(untitled)"
    if article.starred:
        title = f"★ {title}"
    header = [title, f"Feed: {article.feed}"]
    if article.author:
        header.append(f"Author: {article.author}")
    if article.published:
        header.append(f"Published: {article.published}")
    header.append(f"Link: {article.link}")

    lines: list[str] = []
    for line in header:
        lines.extend(_wrap(line, width))
    lines.append(SEPARATOR * min(width, 40))
    lines.append("")

    body = article.content.strip() or "No content available"
    paragraphs = body.split("\n\n")
    for index, paragraph in enumerate(paragraphs):
        for line in paragraph.split("\n"):
            lines.extend(_wrap(line, width))
        if index < len(paragraphs) - 1:
            lines.append("")
    return lines


def _wrap(text: str, width: int) -> list[str]:
    if not text.strip():
        return [""]
    return textwrap.wrap(text, width=width, break_long_words=True, break_on_hyphens=False) or [""]


def write_draft_note(article: Article, drafts_dir: str, now: datetime | None = None) -> str:
    os.makedirs(drafts_dir, exist_ok=True)
    stamp = (now or datetime.now()).strftime("%Y%m%d%H%M")
    base = f"{stamp}-{slugify(article.title)}"
    lines = [f"# {article.title or 'Untitled'}", ""]
    lines.append(f"Source: {article.link}")
    lines.append(f"Feed: {article.feed}")
    if article.published:
        lines.append(f"Date: {article.published}")
    lines.extend(["", "## Summary", ""])
    summary = first_paragraph(article.content)
    if summary:
        lines.append(summary)
        lines.append("")
    lines.extend(["## Notes", "", ""])
    text = "\n".join(lines)

    suffix = 0
    while True:
        name = f"{base}.md" if suffix == 0 else f"{base}-{suffix}.md"
        path = os.path.join(drafts_dir, name)
        try:
            with open(path, "x", encoding="utf-8") as handle:
                handle.write(text)
        except FileExistsError:
            suffix += 1
            continue
        return path


def finish(session: ViewerSession, session_id: str) -> int:
    """Publish the session's exit action to its caller and return the exit status."""
    action = session.exit_action
    if action is None or isinstance(action, NormalExit):
        session.store.clear_exchange(session_id)
        return EXIT_NORMAL
    if isinstance(action, OpenBrowser):
        session.store.write_exchange(session_id, action.url)
    else:
        session.store.write_exchange(session_id, action.draft_path)
    return action.exit_code


def run_terminal(session: ViewerSession) -> None:
    try:
        curses.wrapper(_terminal_loop, session)
    except KeyboardInterrupt:
        pass
    if session.state is SessionState.READING:
        session.quit()


def _terminal_loop(stdscr, session: ViewerSession) -> None:
    try:
        curses.curs_set(0)
    except curses.error:
        pass
    stdscr.keypad(True)
    while session.state is SessionState.READING:
        height, width = stdscr.getmaxyx()
        session.resize(height - 1, width - 1)
        _draw(stdscr, session, height, width)
        try:
            key = stdscr.getkey()
        except curses.error:
            continue
        if key == "KEY_RESIZE":
            continue
        session.handle_key(key)


def _draw(stdscr, session: ViewerSession, height: int, width: int) -> None:
    stdscr.erase()
    for row, line in enumerate(session.visible_lines()):
        attr = curses.A_BOLD if session.scroll_offset + row == 0 else curses.A_NORMAL
        _put(stdscr, row, line, width, attr)
    total = len(session.lines)
    shown = min(total, session.scroll_offset + session.viewport_height)
    position = 100 if total == 0 else int(shown * 100 / total)
    status = f"{FOOTER}  {position}% "
    _put(stdscr, height - 1, status.ljust(width), width, curses.A_REVERSE)
    stdscr.refresh()


def _put(stdscr, row: int, text: str, width: int, attr: int) -> None:
    try:
        stdscr.addnstr(row, 0, text, max(0, width - 1), attr)
    except curses.error:
        pass


def run_viewer(
    store: ArticleStore,
    article_id: str,
    session_id: str,
    drafts_dir: str | None = None,
    page_overlap: int = 2,
    max_width: int = 100,
    terminal: Callable[[ViewerSession], None] = run_terminal,
    logger: logging.Logger | None = None,
) -> int:
    session = ViewerSession(
        store,
        article_id,
        drafts_dir=drafts_dir,
        page_overlap=page_overlap,
        max_width=max_width,
        logger=logger,
    )
    store.clear_exchange(session_id)
    session.open()
    terminal(session)
    if session.state is SessionState.READING:
        session.quit()
    return finish(session, session_id)
