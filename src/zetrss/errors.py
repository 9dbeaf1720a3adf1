from __future__ import annotations


class ZetRssError(Exception):
    pass


class DiscoveryIOError(ZetRssError):
    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class NetworkError(ZetRssError):
    def __init__(self, url: str, reason: str, http_status: int | None = None) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason
        self.http_status = http_status


class ParseError(ZetRssError):
    pass


class FormatError(ParseError):
    """Raised when an article record's frontmatter cannot be decoded."""


class StoreCorruption(ZetRssError):
    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class NotFound(ZetRssError):
    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class ConfirmationRequired(ZetRssError):
    pass
