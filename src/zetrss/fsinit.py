from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

ARTICLES_DIRNAME = "articles"
SESSIONS_DIRNAME = "sessions"
FEED_LIST_FILENAME = "feeds.txt"
DISCOVERY_FILENAME = "feeds.json"


def set_umask_from_env() -> None:
    _apply_umask()


def ensure_runtime_dirs(paths: Iterable[str]) -> None:
    for path in paths:
        if not path:
            continue
        Path(path).mkdir(parents=True, exist_ok=True)


def build_default_paths(data_dir: str) -> list[str]:
    return [
        data_dir,
        os.path.join(data_dir, ARTICLES_DIRNAME),
        os.path.join(data_dir, SESSIONS_DIRNAME),
    ]


def _apply_umask() -> None:
    umask_value = os.environ.get("ZETRSS_UMASK", "022")
    try:
        os.umask(int(umask_value, 8))
    except (ValueError, TypeError):
        os.umask(0o022)
