import copy
import os

import pytest

from zetrss.config import DEFAULT_CONFIG, ConfigError, load_config, validate_config


def test_defaults(data_dir):
    config = load_config()
    assert config.paths.data_dir == str(data_dir)
    assert config.paths.drafts_dir == os.path.join(str(data_dir), "drafts")
    assert config.fetch.timeout_seconds == 30
    assert config.fetch.workers == 8
    assert config.scan.notes_dir == ""
    assert "utm_source" in config.url_normalization.tracking_params


def test_config_file_in_data_dir_is_merged(data_dir):
    data_dir.mkdir()
    (data_dir / "config.yml").write_text(
        "fetch:\n  workers: 2\nscan:\n  extensions: [md, .ORG]\nviewer:\n  page_overlap: 0\n",
        encoding="utf-8",
    )
    config = load_config()
    assert config.fetch.workers == 2
    assert config.fetch.timeout_seconds == 30
    assert config.scan.extensions == [".md", ".org"]
    assert config.viewer.page_overlap == 0


def test_explicit_path_and_env_overrides(tmp_path, data_dir, monkeypatch):
    config_path = tmp_path / "custom.yml"
    config_path.write_text(
        "paths:\n  data_dir: /elsewhere\n  drafts_dir: ~/drafts\nscan:\n  notes_dir: /notes\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("ZETRSS_NOTES_DIR", str(tmp_path / "env-notes"))

    config = load_config(str(config_path))

    assert config.paths.data_dir == str(data_dir)
    assert config.paths.drafts_dir == os.path.expanduser("~/drafts")
    assert config.scan.notes_dir == str(tmp_path / "env-notes")


def test_unknown_key_rejected(tmp_path, data_dir):
    config_path = tmp_path / "bad.yml"
    config_path.write_text("fetch:\n  threads: 4\n", encoding="utf-8")
    with pytest.raises(ConfigError) as excinfo:
        load_config(str(config_path))
    assert "unknown config.fetch.threads" in str(excinfo.value)


def test_missing_config_file(tmp_path, data_dir):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "missing.yml"))


def test_validate_config_ranges():
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["fetch"]["workers"] = 0
    cfg["fetch"]["max_retries"] = -1
    errors = validate_config(cfg)
    assert "config.fetch.workers must be at least 1" in errors
    assert "config.fetch.max_retries must not be negative" in errors
    assert validate_config(copy.deepcopy(DEFAULT_CONFIG)) == []


def test_type_errors_reported():
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["url_normalization"]["strip_tracking_params"] = "yes"
    cfg["fetch"]["backoff_seconds"] = 1
    errors = validate_config(cfg)
    assert errors == ["config.url_normalization.strip_tracking_params must be a boolean"]
