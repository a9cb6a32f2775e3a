"""Shared fixtures: a controllable clock and a store rooted in tmp_path."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from mnemo.config import MnemoConfig
from mnemo.memory.store import MemoryStore

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(tmp_path: Path) -> MnemoConfig:
    return MnemoConfig(memory_dir=tmp_path / "memories")


@pytest.fixture
def store(config: MnemoConfig, clock: FakeClock) -> MemoryStore:
    return MemoryStore(config, clock=clock)
