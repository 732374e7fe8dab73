from __future__ import annotations

from pathlib import Path

import pytest
from helpers import stage_tree
from hypothesis import HealthCheck, settings

_ALLOWED_MARKERS = {"unit", "integration", "slow"}

settings.register_profile(
    "rockctl",
    deadline=None,
    max_examples=30,
    suppress_health_check=[HealthCheck.too_slow],
)
settings.load_profile("rockctl")


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        names = {mark.name for mark in item.iter_markers()}
        if not names.intersection(_ALLOWED_MARKERS):
            item.add_marker("unit")


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("ROCKCTL_CONFIG", "ROCK_SYSROOT", "RUN_ID", "CI", "LD_LIBRARY_PATH"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def staged(tmp_path: Path) -> Path:
    return stage_tree(tmp_path / "staged")
