"""
levelstore — Multi-Tenant Leveling Data Store
==============================================
Persists per-tenant XP and levels, typed tenant settings, leaderboards,
and the two-phase sacrifice reset on a single SQLite file in WAL mode.
Safe to share across many concurrent callers on one event loop.

Package layout::

    levelstore/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Tenant id rules, reserved keys
    ├── errors.py          # Error taxonomy
    ├── store.py           # Store facade (open/close + every operation)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine, sessions, async helper
    │   ├── checkpoint.py  # Background WAL checkpointer
    │   └── models.py      # ORM models
    ├── engine/
    │   ├── leveling.py    # XP ↔ level curve
    │   ├── sacrifice.py   # Sacrifice state machine (pure)
    │   └── values.py      # Tagged setting values
    └── services/
        ├── schema_service.py      # Tenant provisioning registry
        ├── settings_service.py    # Settings + statistics CRUD
        ├── user_service.py        # User ledger, add_xp, moderation
        ├── content_service.py     # Banner / avatar accessors
        ├── leaderboard_service.py # Leaderboard + rank
        ├── sacrifice_service.py   # Persisted sacrifice transitions
        └── migration_service.py   # One-shot legacy migration
"""

from __future__ import annotations

import logging

from levelstore.config import StoreConfig, load_config
from levelstore.database.engine import run_db
from levelstore.store import Store

__version__ = "0.1.0"

__all__ = ["Store", "StoreConfig", "configure_logging", "load_config", "run_db"]


def configure_logging(level: int = logging.INFO) -> None:
    """Console logging in the same format as the bot entry point."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt="%H:%M:%S",
    )
