from __future__ import annotations

import json
import os
import sys
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

from .settings import Settings


APP_DIRNAME = "chaintrace"
FILENAME = "settings.json"


def _local_config_dir() -> Path:
    """Default location: inside the package folder (chaintrace/.chaintrace/).

    Override with CHAINTRACE_CONFIG_DIR (tests, packaged installs).
    """
    env_dir = (os.environ.get("CHAINTRACE_CONFIG_DIR") or "").strip()
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    # If bundled (PyInstaller, etc.), store next to the executable
    if getattr(sys, "frozen", False):
        exe_dir = Path(sys.executable).resolve().parent
        return exe_dir / f".{APP_DIRNAME}"

    pkg_dir = Path(__file__).resolve().parent
    return pkg_dir / f".{APP_DIRNAME}"


def _config_path() -> Path:
    cfg_dir = _local_config_dir()
    cfg_dir.mkdir(parents=True, exist_ok=True)
    return cfg_dir / FILENAME


def _read_settings_file(path: Path) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, ValueError):
        # Corrupt file: fall back to defaults, user can delete it.
        return {}
    return data if isinstance(data, dict) else {}


def load_settings() -> Settings:
    """Load settings from settings.json, falling back to defaults.

    Unknown keys are ignored; values are coerced to the type of the default.
    """
    data = _read_settings_file(_config_path())

    s = Settings()
    known = {f.name for f in fields(Settings)}
    for k, v in data.items():
        if k not in known:
            continue
        try:
            setattr(s, k, coerce_value(getattr(s, k), v))
        except (TypeError, ValueError):
            continue
    return s


_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def coerce_value(default: Any, value: Any) -> Any:
    """Convert a raw JSON value to the type of a settings default.

    Booleans accept only real bools, 0/1 and the usual true/false words.
    """
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str):
            word = value.strip().lower()
            if word in _TRUE:
                return True
            if word in _FALSE:
                return False
        raise ValueError(f"not a boolean: {value!r}")
    return type(default)(value)


def save_settings(settings: Settings) -> None:
    """Save settings to the local config path."""
    path = _config_path()
    tmp = path.with_suffix(".tmp")

    data = asdict(settings)
    # Write atomically (reduce risk of partial writes)
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)
