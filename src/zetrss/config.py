from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

import yaml


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class PathsConfig:
    data_dir: str
    drafts_dir: str


@dataclass(frozen=True)
class ScanConfig:
    notes_dir: str
    extensions: list[str]


@dataclass(frozen=True)
class FetchConfig:
    timeout_seconds: int
    user_agent: str
    max_retries: int
    backoff_seconds: float
    workers: int


@dataclass(frozen=True)
class UrlNormalizationConfig:
    strip_tracking_params: bool
    tracking_params: list[str]


@dataclass(frozen=True)
class ViewerConfig:
    page_overlap: int
    max_width: int


@dataclass(frozen=True)
class Config:
    paths: PathsConfig
    scan: ScanConfig
    fetch: FetchConfig
    url_normalization: UrlNormalizationConfig
    viewer: ViewerConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "paths": {
        "data_dir": "~/.local/share/zetrss",
        "drafts_dir": "",
    },
    "scan": {
        "notes_dir": "",
        "extensions": [".md", ".markdown", ".txt"],
    },
    "fetch": {
        "timeout_seconds": 30,
        "user_agent": "ZetRss/0.1",
        "max_retries": 1,
        "backoff_seconds": 2.0,
        "workers": 8,
    },
    "url_normalization": {
        "strip_tracking_params": True,
        "tracking_params": [
            "utm_source",
            "utm_medium",
            "utm_campaign",
            "utm_term",
            "utm_content",
            "fbclid",
            "gclid",
        ],
    },
    "viewer": {
        "page_overlap": 2,
        "max_width": 100,
    },
}

CONFIG_FILENAME = "config.yml"


def default_data_dir() -> str:
    data_dir = os.environ.get("ZETRSS_DATA_DIR") or DEFAULT_CONFIG["paths"]["data_dir"]
    return os.path.abspath(os.path.expanduser(data_dir))


def load_config(path: str | None = None) -> Config:
    cfg = _deep_copy(DEFAULT_CONFIG)
    config_path = path or os.environ.get("ZETRSS_CONFIG")
    if config_path is None:
        candidate = os.path.join(default_data_dir(), CONFIG_FILENAME)
        if os.path.exists(candidate):
            config_path = candidate
    if config_path is not None:
        overrides = _read_config_file(config_path)
        _deep_merge(cfg, overrides)

    if os.environ.get("ZETRSS_DATA_DIR"):
        cfg["paths"]["data_dir"] = os.environ["ZETRSS_DATA_DIR"]
    if os.environ.get("ZETRSS_NOTES_DIR"):
        cfg["scan"]["notes_dir"] = os.environ["ZETRSS_NOTES_DIR"]

    errors = validate_config(cfg)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return _build_config(cfg)


def _read_config_file(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"config file is not valid YAML: {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file must contain a mapping: {path}")
    return data


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    if not errors:
        if cfg["fetch"]["workers"] < 1:
            errors.append("config.fetch.workers must be at least 1")
        if cfg["fetch"]["timeout_seconds"] < 1:
            errors.append("config.fetch.timeout_seconds must be at least 1")
        if cfg["fetch"]["max_retries"] < 0:
            errors.append("config.fetch.max_retries must not be negative")
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            errors.append(f"missing {path}.{key}")
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, list):
        if not isinstance(value, list):
            errors.append(f"{path} must be a list")
            return
        for item in value:
            if not isinstance(item, str):
                errors.append(f"{path} must be a list of strings")
                break
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")


def _build_config(cfg: dict[str, Any]) -> Config:
    paths_cfg = cfg["paths"]
    scan_cfg = cfg["scan"]
    fetch_cfg = cfg["fetch"]
    url_norm_cfg = cfg["url_normalization"]
    viewer_cfg = cfg["viewer"]

    data_dir = os.path.abspath(os.path.expanduser(paths_cfg["data_dir"]))
    drafts_dir = paths_cfg["drafts_dir"]
    paths = PathsConfig(
        data_dir=data_dir,
        drafts_dir=(
            os.path.abspath(os.path.expanduser(drafts_dir))
            if drafts_dir
            else os.path.join(data_dir, "drafts")
        ),
    )

    notes_dir = scan_cfg["notes_dir"]
    scan = ScanConfig(
        notes_dir=os.path.abspath(os.path.expanduser(notes_dir)) if notes_dir else "",
        extensions=[ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in scan_cfg["extensions"]],
    )

    fetch = FetchConfig(
        timeout_seconds=int(fetch_cfg["timeout_seconds"]),
        user_agent=str(fetch_cfg["user_agent"]),
        max_retries=int(fetch_cfg["max_retries"]),
        backoff_seconds=float(fetch_cfg["backoff_seconds"]),
        workers=int(fetch_cfg["workers"]),
    )

    url_normalization = UrlNormalizationConfig(
        strip_tracking_params=bool(url_norm_cfg["strip_tracking_params"]),
        tracking_params=list(url_norm_cfg["tracking_params"]),
    )

    viewer = ViewerConfig(
        page_overlap=max(0, int(viewer_cfg["page_overlap"])),
        max_width=max(20, int(viewer_cfg["max_width"])),
    )

    return Config(
        paths=paths,
        scan=scan,
        fetch=fetch,
        url_normalization=url_normalization,
        viewer=viewer,
    )


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> None:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
