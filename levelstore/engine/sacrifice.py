"""
levelstore.engine.sacrifice — Sacrifice State Machine
======================================================

Pure transition logic.  No DB I/O.

States::

    INELIGIBLE ──(reach max level)──▶ ELIGIBLE ──request──▶ PENDING
         ▲                               ▲                     │
         │                               └────(expiry)─────────┤
         └───────────(confirm: reset to level 1)───────────────┘

The only persisted state is the pending flag plus its expiry timestamp.
Expiry is evaluated lazily on the next access, so a restart between the
request and the confirmation loses nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from levelstore.engine.leveling import LevelingEngine


class SacrificeState(StrEnum):
    INELIGIBLE = "ineligible"
    ELIGIBLE = "eligible"
    PENDING = "pending"


class SacrificeOutcome(StrEnum):
    NOT_ELIGIBLE = "not_eligible"
    NEEDS_CONFIRMATION = "needs_confirmation"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class SacrificeResult:
    outcome: SacrificeOutcome
    sacrifice_count: int
    pending_until: datetime | None = None

    @property
    def success(self) -> bool:
        return self.outcome is SacrificeOutcome.COMPLETED

    @property
    def needs_confirmation(self) -> bool:
        return self.outcome is SacrificeOutcome.NEEDS_CONFIRMATION


def is_eligible(level: int, xp: int, leveling: LevelingEngine) -> bool:
    """At the level cap with at least the cap's XP requirement."""
    return level >= leveling.max_level and xp >= leveling.xp_for_level(leveling.max_level)


def pending_active(pending: bool, pending_until: datetime | None, now: datetime) -> bool:
    """A pending flag without an expiry never lapses on its own."""
    if not pending:
        return False
    return pending_until is None or now < pending_until


def classify(
    *,
    level: int,
    xp: int,
    pending: bool,
    pending_until: datetime | None,
    now: datetime,
    leveling: LevelingEngine,
) -> SacrificeState:
    if not is_eligible(level, xp, leveling):
        return SacrificeState.INELIGIBLE
    if pending_active(pending, pending_until, now):
        return SacrificeState.PENDING
    return SacrificeState.ELIGIBLE
