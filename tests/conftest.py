from __future__ import annotations

from pathlib import Path

import pytest

from tests.helpers import FakeLauncher, FakeTimerFactory, write_macho


@pytest.fixture
def timers() -> FakeTimerFactory:
    return FakeTimerFactory()


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def listener_binary(tmp_path: Path) -> Path:
    return write_macho(tmp_path / "macos-globe-listener", "arm64")
