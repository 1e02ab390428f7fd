from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = ROOT / "src"
for entry in (ROOT, SRC_ROOT):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))

import pytest  # noqa: E402

from tmspyramid.config import ENV_BLOCK_SIZE, ENV_CONFIG  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_build_env(monkeypatch, tmp_path) -> None:
    """Prevent local option files and block-size overrides from bleeding into tests."""
    monkeypatch.delenv(ENV_BLOCK_SIZE, raising=False)
    monkeypatch.setenv(ENV_CONFIG, str(tmp_path / "missing_options.json"))
