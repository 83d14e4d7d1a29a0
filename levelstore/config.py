"""
levelstore.config — YAML Configuration Loader
==============================================

Reads ``config.yaml`` for the store's tunables: where the database lives and
how it is opened, the leveling curve, leaderboard paging, and the sacrifice
confirmation window.

Every section is optional.  A missing file yields the defaults, and
``LEVELSTORE_*`` environment variables (loaded from ``.env`` if present)
override individual keys.

Usage::

    from levelstore.config import load_config

    cfg = load_config()               # reads ./config.yaml by default
    print(cfg.database.path)          # "data/leveling.db"
    print(cfg.leveling.max_level)     # 100
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "LEVELSTORE_"


def _default_pragmas() -> dict[str, Any]:
    return {
        "journal_mode": "WAL",        # concurrent readers alongside one writer
        "synchronous": "NORMAL",
        "cache_size": -64000,         # 64 MB (negative means KiB)
        "foreign_keys": "ON",
        "temp_store": "MEMORY",
    }


# ---------------------------------------------------------------------------
# Typed settings objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    """Where the SQLite file lives and how each connection is tuned."""

    path: str = "data/leveling.db"
    checkpoint_interval_seconds: float = 10.0
    busy_timeout_ms: int = 5000
    pragmas: dict[str, Any] = field(default_factory=_default_pragmas)

    def __post_init__(self) -> None:
        if self.checkpoint_interval_seconds <= 0:
            raise ValueError("database.checkpoint_interval_seconds must be positive")
        if self.busy_timeout_ms < 0:
            raise ValueError("database.busy_timeout_ms must not be negative")


@dataclass(frozen=True, slots=True)
class LevelingConfig:
    """Leveling curve parameters.

    Without ``thresholds`` the XP needed for a level is
    ``floor(base_xp * level ** curve)``.  With a threshold table the listed
    levels are exact and, when ``interpolate`` is on, levels in between are
    linearly interpolated.
    """

    base_xp: float = 100
    curve: float = 1.5
    max_level: int = 100
    thresholds: dict[int, int] | None = None
    interpolate: bool = True

    def __post_init__(self) -> None:
        if self.base_xp <= 0:
            raise ValueError("leveling.base_xp must be positive")
        if self.curve <= 0:
            raise ValueError("leveling.curve must be positive")
        if self.max_level < 1:
            raise ValueError("leveling.max_level must be at least 1")
        if self.thresholds is not None:
            for level, xp in self.thresholds.items():
                if not isinstance(level, int) or level < 0:
                    raise ValueError(f"leveling.thresholds: invalid level {level!r}")
                if not isinstance(xp, int) or xp < 0:
                    raise ValueError(f"leveling.thresholds: invalid xp {xp!r} for level {level}")
            ordered = sorted(self.thresholds.items())
            for (low, low_xp), (high, high_xp) in zip(ordered, ordered[1:]):
                if high_xp < low_xp:
                    raise ValueError(
                        f"leveling.thresholds: level {high} needs {high_xp} xp, "
                        f"less than level {low} ({low_xp})"
                    )


@dataclass(frozen=True, slots=True)
class LeaderboardConfig:
    page_size: int = 10

    def __post_init__(self) -> None:
        if self.page_size < 1:
            raise ValueError("leaderboard.page_size must be at least 1")


@dataclass(frozen=True, slots=True)
class SacrificeConfig:
    confirmation_timeout_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.confirmation_timeout_seconds <= 0:
            raise ValueError("sacrifice.confirmation_timeout_seconds must be positive")


@dataclass(frozen=True, slots=True)
class StoreConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    leveling: LevelingConfig = field(default_factory=LevelingConfig)
    leaderboard: LeaderboardConfig = field(default_factory=LeaderboardConfig)
    sacrifice: SacrificeConfig = field(default_factory=SacrificeConfig)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------
def _coerce(value: str) -> Any:
    """Turn an environment string into a bool, int, float, or leave it a str."""
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Overlay ``LEVELSTORE_<SECTION>_<KEY>`` variables onto *raw*.

    ``LEVELSTORE_DB_PATH`` is accepted as a shortcut for the database file.
    """
    result = {section: dict(values or {}) for section, values in raw.items()}

    db_path = os.getenv(f"{ENV_PREFIX}DB_PATH")
    if db_path:
        result.setdefault("database", {})["path"] = db_path

    for name, value in os.environ.items():
        if not name.startswith(ENV_PREFIX) or name == f"{ENV_PREFIX}DB_PATH":
            continue
        section, _, key = name[len(ENV_PREFIX):].lower().partition("_")
        if section not in {"database", "leveling", "leaderboard", "sacrifice"} or not key:
            continue
        result.setdefault(section, {})[key] = _coerce(value)
        logger.debug("Config override from environment: %s.%s", section, key)

    return result


def _parse_thresholds(raw: Any) -> dict[int, int] | None:
    if not raw:
        return None
    if not isinstance(raw, dict):
        raise ValueError("leveling.thresholds must be a mapping of level → xp")
    try:
        return {int(level): int(xp) for level, xp in raw.items()}
    except (TypeError, ValueError) as exc:
        raise ValueError(f"leveling.thresholds: {exc}") from exc


def build_config(raw: dict[str, Any]) -> StoreConfig:
    """Build a :class:`StoreConfig` from an already-parsed mapping."""
    db_defaults, lv_defaults = DatabaseConfig(), LevelingConfig()
    lb_defaults, sc_defaults = LeaderboardConfig(), SacrificeConfig()

    db = raw.get("database") or {}
    lv = raw.get("leveling") or {}
    lb = raw.get("leaderboard") or {}
    sc = raw.get("sacrifice") or {}

    pragmas = _default_pragmas()
    pragmas.update(db.get("pragmas") or {})

    return StoreConfig(
        database=DatabaseConfig(
            path=str(db.get("path", db_defaults.path)),
            checkpoint_interval_seconds=float(
                db.get("checkpoint_interval_seconds", db_defaults.checkpoint_interval_seconds)
            ),
            busy_timeout_ms=int(db.get("busy_timeout_ms", db_defaults.busy_timeout_ms)),
            pragmas=pragmas,
        ),
        leveling=LevelingConfig(
            base_xp=float(lv.get("base_xp", lv_defaults.base_xp)),
            curve=float(lv.get("curve", lv_defaults.curve)),
            max_level=int(lv.get("max_level", lv_defaults.max_level)),
            thresholds=_parse_thresholds(lv.get("thresholds")),
            interpolate=bool(lv.get("interpolate", lv_defaults.interpolate)),
        ),
        leaderboard=LeaderboardConfig(
            page_size=int(lb.get("page_size", lb_defaults.page_size)),
        ),
        sacrifice=SacrificeConfig(
            confirmation_timeout_seconds=float(
                sc.get("confirmation_timeout_seconds", sc_defaults.confirmation_timeout_seconds)
            ),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> StoreConfig:
    """Read *path* and return a :class:`StoreConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    ValueError
        If a value is out of range or the file is not a YAML mapping.
    """
    load_dotenv()

    config_path = Path(path)
    raw: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path, encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"{config_path} must contain a YAML mapping")
    else:
        logger.warning(
            "Configuration file not found: %s — using defaults", config_path.resolve()
        )

    return build_config(_apply_env_overrides(raw))
