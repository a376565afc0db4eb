"""
Pytest Configuration

Makes ``src`` importable without an editable install and isolates the
settings environment so developer ``STATICDATA_*`` variables never leak into
the suite.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch, tmp_path):
    """Drop ``STATICDATA_*`` variables and point log output at ``tmp_path``."""

    for name in list(os.environ):
        if name.startswith("STATICDATA_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("STATICDATA_LOGGING__DIRECTORY", str(tmp_path / "logs"))

    from ProdToolkit.StaticData.settings import invalidate_settings_cache

    invalidate_settings_cache()
    yield
    invalidate_settings_cache()
