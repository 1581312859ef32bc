"""Shared fakes for the rollout and rollback tests."""

from pathlib import Path
from typing import List

import pytest

INVALID_MARKER = "INVALID"


class FakeValidator:
    """Syntax check that rejects any file containing the INVALID marker."""

    def __init__(self) -> None:
        self.calls: List[Path] = []

    def validate(self, path: Path) -> bool:
        self.calls.append(path)
        return INVALID_MARKER.encode() not in path.read_bytes()


class FakeReloader:
    """Reloader with scripted outcomes and call tracking."""

    def __init__(self, reload_results: List[bool] | None = None, restart_ok: bool = True) -> None:
        self.reload_results = list(reload_results or [])
        self.restart_ok = restart_ok
        self.reload_calls: List[str] = []
        self.restart_calls: List[str] = []

    def reload(self, service: str) -> bool:
        self.reload_calls.append(service)
        if self.reload_results:
            return self.reload_results.pop(0)
        return True

    def restart(self, service: str) -> bool:
        self.restart_calls.append(service)
        return self.restart_ok


@pytest.fixture
def validator() -> FakeValidator:
    return FakeValidator()


@pytest.fixture
def reloader() -> FakeReloader:
    return FakeReloader()


@pytest.fixture
def live_config(tmp_path: Path) -> Path:
    path = tmp_path / "etc" / "haproxy.cfg"
    path.parent.mkdir(parents=True)
    return path


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    return tmp_path / "backup"


@pytest.fixture
def make_reloader():
    """Build a reloader with scripted reload outcomes."""

    def _make(reload_results: List[bool] | None = None, restart_ok: bool = True) -> FakeReloader:
        return FakeReloader(reload_results, restart_ok)

    return _make
