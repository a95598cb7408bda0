"""Tests for chaintrace.settings and chaintrace.settings_store."""

from __future__ import annotations

import json
from pathlib import Path


def test_settings_dataclass_defaults():
    """Settings dataclass should carry the traversal budgets."""
    from chaintrace.settings import Settings

    s = Settings()
    assert s.initial_depth == 1
    assert s.deep_trace_depth == 2
    assert s.root_forced_tx_limit > s.forced_tx_limit > s.default_tx_limit
    assert s.root_forced_io_limit > s.forced_io_limit > s.default_io_limit
    assert s.osint_enabled is True


def test_app_metadata():
    from chaintrace.settings import APP_NAME, APP_VERSION

    assert APP_NAME == "chaintrace"
    assert APP_VERSION


def test_save_and_load_settings(tmp_path: Path, monkeypatch):
    """Settings should roundtrip through save/load."""
    from chaintrace.settings import Settings
    from chaintrace.settings_store import load_settings, save_settings

    monkeypatch.setenv("CHAINTRACE_CONFIG_DIR", str(tmp_path / "cfg"))

    save_settings(Settings(provider_timeout=3.5, default_tx_limit=4, osint_enabled=False))
    loaded = load_settings()
    assert loaded.provider_timeout == 3.5
    assert loaded.default_tx_limit == 4
    assert loaded.osint_enabled is False
    assert not (tmp_path / "cfg" / "settings.tmp").exists()


def test_load_settings_missing_file(tmp_path: Path, monkeypatch):
    from chaintrace.settings import Settings
    from chaintrace.settings_store import load_settings

    monkeypatch.setenv("CHAINTRACE_CONFIG_DIR", str(tmp_path / "empty"))
    assert load_settings() == Settings()


def test_load_settings_corrupt_file(tmp_path: Path, monkeypatch):
    """Corrupt JSON falls back to defaults instead of crashing."""
    from chaintrace.settings import Settings
    from chaintrace.settings_store import load_settings

    cfg_dir = tmp_path / "bad"
    cfg_dir.mkdir()
    (cfg_dir / "settings.json").write_text("{corrupt json!", encoding="utf-8")
    monkeypatch.setenv("CHAINTRACE_CONFIG_DIR", str(cfg_dir))
    assert load_settings() == Settings()


def test_unknown_keys_ignored_and_values_coerced(tmp_path: Path, monkeypatch):
    from chaintrace.settings_store import load_settings

    cfg_dir = tmp_path / "mixed"
    cfg_dir.mkdir()
    (cfg_dir / "settings.json").write_text(
        json.dumps({"whisper_model": "large", "deep_trace_depth": "3", "retry_backoff": 2, "default_io_limit": "many"}),
        encoding="utf-8",
    )
    monkeypatch.setenv("CHAINTRACE_CONFIG_DIR", str(cfg_dir))

    s = load_settings()
    assert not hasattr(s, "whisper_model")
    assert s.deep_trace_depth == 3
    assert s.retry_backoff == 2.0
    assert s.default_io_limit == 5


def test_bool_strings_are_parsed_not_truthy(tmp_path: Path, monkeypatch):
    from chaintrace.settings_store import load_settings

    cfg_dir = tmp_path / "bools"
    cfg_dir.mkdir()
    (cfg_dir / "settings.json").write_text(json.dumps({"osint_enabled": "false"}), encoding="utf-8")
    monkeypatch.setenv("CHAINTRACE_CONFIG_DIR", str(cfg_dir))
    assert load_settings().osint_enabled is False


def test_coerce_value():
    import pytest

    from chaintrace.settings_store import coerce_value

    assert coerce_value(True, "off") is False
    assert coerce_value(False, "Yes") is True
    assert coerce_value(True, 0) is False
    assert coerce_value(3, "4") == 4
    with pytest.raises(ValueError):
        coerce_value(True, "maybe")
    with pytest.raises(ValueError):
        coerce_value(True, 7)
