from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


import pytest

from stemrunner.app.config import Settings
from stemrunner.app.models import Platform, ToolConfig
from tests.helpers import FakeClock


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    return tmp_path / "work"


@pytest.fixture
def make_settings(work_dir: Path, tmp_path: Path):
    def _make(**overrides) -> Settings:
        values = {
            "work_dir": work_dir,
            "platform": Platform.LINUX,
            "tool": ToolConfig(),
            "env_dir": tmp_path / "env",
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
