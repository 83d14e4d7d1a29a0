"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import pytest

from levelstore.config import DatabaseConfig, LevelingConfig, StoreConfig
from levelstore.engine.leveling import LevelingEngine
from levelstore.store import Store

TENANT = "1468816181854081229"
OTHER_TENANT = "1100000000000000001"


def make_config(tmp_path, **leveling) -> StoreConfig:
    """A StoreConfig pointing at a fresh SQLite file under *tmp_path*.

    A long checkpoint interval keeps the background thread quiet during
    tests; checkpoint tests call ``tick()`` directly.
    """
    return StoreConfig(
        database=DatabaseConfig(
            path=str(tmp_path / "leveling.db"),
            checkpoint_interval_seconds=3600,
        ),
        leveling=LevelingConfig(**leveling),
    )


@pytest.fixture
def store(tmp_path):
    """An opened Store on a tmp_path file with one provisioned tenant."""
    s = Store.open(make_config(tmp_path))
    s.ensure_tenant(TENANT)
    yield s
    s.close()


@pytest.fixture
def small_store(tmp_path):
    """A Store whose cap is level 5, so the sacrifice flow is reachable quickly."""
    s = Store.open(make_config(tmp_path, max_level=5))
    s.ensure_tenant(TENANT)
    yield s
    s.close()


@pytest.fixture
def leveling() -> LevelingEngine:
    """Default formula curve: base_xp=100, curve=1.5, max_level=100."""
    return LevelingEngine(LevelingConfig())
