"""Pytest configuration for test suite.

Ensures the project root is on ``sys.path`` so imports like
``import querynorm`` resolve correctly regardless of the working directory
pytest chooses.
"""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest


def _ensure_project_root_on_syspath() -> None:
    project_root = Path(__file__).resolve().parents[1]
    project_root_str = str(project_root)
    if project_root_str not in sys.path:
        # Prepend to prefer local sources over site-packages
        sys.path.insert(0, project_root_str)


_ensure_project_root_on_syspath()

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_adapter_registry():
    """Reset the source registry before each test to avoid cross-test leakage."""
    from querynorm.adapters import reset_adapters

    reset_adapters()
    yield
    reset_adapters()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host QUERYNORM_* variables from leaking into settings."""
    import os

    for key in list(os.environ):
        if key.startswith("QUERYNORM_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(Path(__file__).resolve().parent)


@pytest.fixture
def now() -> datetime:
    return NOW
