"""Shared pytest fixtures for chaintrace tests."""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import pytest

# Ensure the project root (and this folder, for fakes.py) is importable
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))
sys.path.insert(0, str(Path(__file__).resolve().parent))

# Keep settings.json out of the package folder.
os.environ["CHAINTRACE_CONFIG_DIR"] = tempfile.mkdtemp(prefix="chaintrace_test_cfg_")


@pytest.fixture
def settings():
    """Settings with pacing and backoff disabled so tests run instantly."""
    from chaintrace.settings import Settings

    return Settings(request_pacing=0.0, retry_backoff=0.0, osint_enabled=True)


@pytest.fixture
def store():
    from chaintrace.forensics.graph_store import EntityGraphStore

    return EntityGraphStore()
