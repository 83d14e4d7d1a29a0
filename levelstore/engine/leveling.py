"""
levelstore.engine.leveling — XP ↔ Level Conversion
===================================================

Pure calculation.  No DB I/O.  The single canonical implementation of the
leveling curve; every stored ``level`` is ``level_for_xp(xp)``.

Two modes:

* **Formula** — ``xp_for_level(L) = floor(base_xp * L ** curve)``.
* **Threshold table** — an explicit ``{level: xp}`` map.  Listed levels are
  exact.  With interpolation on (and at least two entries), unlisted levels
  are filled in linearly between their neighbours, scaled down from the
  lowest entry, and clamped to the highest one.  Unlisted levels without
  interpolation fall back to the formula.

``level_for_xp(xp_for_level(L)) == L`` holds at listed levels.  Between
them the inverse is a floored fractional level and may disagree with the
floored forward mapping by one; that is accepted, not a bug.
"""

from __future__ import annotations

import math
from bisect import bisect_right
from dataclasses import dataclass

from levelstore.config import LevelingConfig


@dataclass(frozen=True, slots=True)
class LevelProgress:
    """Where a user stands inside their current level."""

    level: int
    xp_into_level: int
    xp_for_next: int
    percent: float


class LevelingEngine:
    """XP/level conversion for one :class:`LevelingConfig`.

    Usage::

        engine = LevelingEngine(LevelingConfig(base_xp=100, curve=1.5))
        engine.xp_for_level(4)      # 800
        engine.level_for_xp(850)    # 4
    """

    def __init__(self, config: LevelingConfig | None = None) -> None:
        self.config = config or LevelingConfig()
        table = self.config.thresholds or {}
        # (level, xp) sorted by level
        self._table: list[tuple[int, int]] = sorted(table.items())
        self._levels: list[int] = [level for level, _ in self._table]

    # -------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------
    @property
    def max_level(self) -> int:
        return self.config.max_level

    @property
    def uses_thresholds(self) -> bool:
        return bool(self._table)

    @property
    def interpolating(self) -> bool:
        """Interpolation needs at least two configured thresholds."""
        return self.config.interpolate and len(self._table) > 1

    # -------------------------------------------------------------------
    # Level → XP
    # -------------------------------------------------------------------
    def _formula_xp(self, level: int) -> int:
        return math.floor(self.config.base_xp * level ** self.config.curve)

    def xp_for_level(self, level: int) -> int:
        """Total XP required to reach *level* (clamped to ``[0, max_level]``)."""
        level = max(0, min(int(level), self.max_level))

        if self._table:
            exact = self.config.thresholds.get(level)
            if exact is not None:
                return exact
            if self.interpolating:
                return self._interpolated_xp(level)

        return self._formula_xp(level)

    def _interpolated_xp(self, level: int) -> int:
        lowest_level, lowest_xp = self._table[0]
        highest_level, highest_xp = self._table[-1]

        if level < lowest_level:
            return math.floor(level / lowest_level * lowest_xp)
        if level > highest_level:
            return highest_xp

        # Bounding configured levels; level is strictly between them here.
        idx = bisect_right(self._levels, level)
        lower_level, lower_xp = self._table[idx - 1]
        upper_level, upper_xp = self._table[idx]
        return math.floor(
            lower_xp + (upper_xp - lower_xp) * (level - lower_level) / (upper_level - lower_level)
        )

    # -------------------------------------------------------------------
    # XP → Level
    # -------------------------------------------------------------------
    def level_for_xp(self, xp: int) -> int:
        """Highest level whose requirement *xp* satisfies, capped at ``max_level``."""
        if self._table:
            return min(self._threshold_level(xp), self.max_level)

        level = 0
        while level < self.max_level and xp >= self.xp_for_level(level + 1):
            level += 1
        return level

    def _threshold_level(self, xp: int) -> int:
        reached = 0
        for level, required in self._table:
            if xp >= required:
                reached = level
            else:
                break

        if self.interpolating and xp >= self._table[0][1]:
            for (lower_level, lower_xp), (upper_level, upper_xp) in zip(
                self._table, self._table[1:]
            ):
                if lower_xp <= xp < upper_xp:
                    fractional = lower_level + (
                        (upper_level - lower_level) * (xp - lower_xp) / (upper_xp - lower_xp)
                    )
                    return math.floor(fractional)

        return reached

    # -------------------------------------------------------------------
    # Helpers for the presentation layer
    # -------------------------------------------------------------------
    def xp_to_next_level(self, level: int, xp: int) -> int:
        """XP still missing for ``level + 1``; 0 at the cap."""
        if level >= self.max_level:
            return 0
        return max(0, self.xp_for_level(level + 1) - xp)

    def progress(self, xp: int) -> LevelProgress:
        level = self.level_for_xp(xp)
        floor_xp = self.xp_for_level(level)
        if level >= self.max_level:
            return LevelProgress(level=level, xp_into_level=xp - floor_xp, xp_for_next=0, percent=100.0)
        span = self.xp_for_level(level + 1) - floor_xp
        into = xp - floor_xp
        percent = 100.0 if span <= 0 else max(0.0, min(100.0, into / span * 100))
        return LevelProgress(
            level=level,
            xp_into_level=into,
            xp_for_next=max(0, span - into),
            percent=round(percent, 2),
        )
