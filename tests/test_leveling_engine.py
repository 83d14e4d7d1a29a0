"""
tests/test_leveling_engine.py — XP ↔ Level Curve
=================================================
Pure calculation tests for LevelingEngine.  No database needed.
"""

from __future__ import annotations

import pytest

from levelstore.config import LevelingConfig
from levelstore.engine.leveling import LevelingEngine


def _thresholds(interpolate: bool = True, **kw) -> LevelingEngine:
    return LevelingEngine(
        LevelingConfig(thresholds={1: 100, 10: 5000}, interpolate=interpolate, **kw)
    )


class TestFormulaCurve:
    def test_reference_points(self, leveling):
        assert leveling.xp_for_level(1) == 100
        assert leveling.xp_for_level(4) == 800
        assert leveling.level_for_xp(850) == 4

    def test_zero_xp_is_level_zero(self, leveling):
        assert leveling.xp_for_level(0) == 0
        assert leveling.level_for_xp(0) == 0
        assert leveling.level_for_xp(99) == 0
        assert leveling.level_for_xp(100) == 1

    def test_level_is_clamped(self, leveling):
        assert leveling.xp_for_level(500) == leveling.xp_for_level(100)
        assert leveling.xp_for_level(-3) == 0

    def test_level_never_exceeds_cap(self, leveling):
        assert leveling.level_for_xp(10**12) == 100

    def test_round_trip_everywhere(self, leveling):
        for level in range(1, leveling.max_level + 1):
            assert leveling.level_for_xp(leveling.xp_for_level(level)) == level

    def test_strictly_increasing(self, leveling):
        values = [leveling.xp_for_level(lv) for lv in range(0, 101)]
        assert all(a < b for a, b in zip(values, values[1:]))


class TestThresholdTable:
    def test_configured_levels_are_exact(self):
        engine = _thresholds()
        assert engine.xp_for_level(1) == 100
        assert engine.xp_for_level(10) == 5000

    def test_round_trip_at_configured_levels(self):
        engine = _thresholds()
        for level in (1, 10):
            assert engine.level_for_xp(engine.xp_for_level(level)) == level

    def test_interpolates_between_entries(self):
        # 100 + (5000 - 100) * 4/9 = 2277.7…
        assert _thresholds().xp_for_level(5) == 2277

    def test_scales_below_lowest_entry(self):
        engine = LevelingEngine(LevelingConfig(thresholds={10: 1000, 20: 3000}))
        assert engine.xp_for_level(5) == 500
        assert engine.xp_for_level(0) == 0

    def test_flat_step_skips_to_the_higher_level(self):
        engine = LevelingEngine(LevelingConfig(thresholds={1: 100, 2: 100, 3: 250}))
        assert engine.level_for_xp(99) == 0
        assert engine.level_for_xp(100) == 2
        assert engine.level_for_xp(249) == 2
        assert engine.level_for_xp(250) == 3

    def test_clamps_above_highest_entry(self):
        engine = _thresholds()
        assert engine.xp_for_level(20) == 5000
        assert engine.level_for_xp(10**9) == 10

    def test_inverse_between_entries_is_floored(self):
        engine = _thresholds()
        # 2277 sits just under the fractional level 5.
        assert engine.level_for_xp(2277) == 4
        assert engine.level_for_xp(2278) == 5
        assert engine.level_for_xp(4999) == 9

    def test_below_first_threshold_is_level_zero(self):
        assert _thresholds().level_for_xp(50) == 0

    def test_monotonic_over_full_range(self):
        engine = LevelingEngine(
            LevelingConfig(thresholds={1: 100, 10: 5000, 50: 150000}, max_level=60)
        )
        values = [engine.xp_for_level(lv) for lv in range(1, engine.max_level + 1)]
        assert all(a <= b for a, b in zip(values, values[1:]))

    def test_without_interpolation_unlisted_levels_use_formula(self):
        engine = _thresholds(interpolate=False)
        assert engine.xp_for_level(5) == 1118
        assert engine.level_for_xp(2000) == 1

    def test_single_entry_disables_interpolation(self):
        engine = LevelingEngine(LevelingConfig(thresholds={10: 5000}, interpolate=True))
        assert not engine.interpolating
        assert engine.xp_for_level(10) == 5000
        assert engine.xp_for_level(5) == 1118

    def test_threshold_level_capped_at_max(self):
        engine = LevelingEngine(LevelingConfig(thresholds={1: 100, 10: 5000}, max_level=5))
        assert engine.level_for_xp(5000) == 5


class TestHelpers:
    def test_xp_to_next_level(self, leveling):
        assert leveling.xp_to_next_level(4, 850) == 268

    def test_xp_to_next_level_never_negative(self, leveling):
        assert leveling.xp_to_next_level(4, 5000) == 0

    def test_xp_to_next_level_zero_at_cap(self, leveling):
        assert leveling.xp_to_next_level(100, 0) == 0

    def test_progress(self, leveling):
        progress = leveling.progress(850)
        assert progress.level == 4
        assert progress.xp_into_level == 50
        assert progress.xp_for_next == 268
        assert progress.percent == pytest.approx(15.72)

    def test_progress_at_cap(self):
        engine = LevelingEngine(LevelingConfig(max_level=2))
        progress = engine.progress(10**6)
        assert progress.level == 2
        assert progress.percent == 100.0
        assert progress.xp_for_next == 0


class TestValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_level": 0},
            {"curve": 0},
            {"base_xp": 0},
            {"thresholds": {-1: 10}},
            {"thresholds": {1: -10}},
        ],
    )
    def test_invalid_config_rejected(self, kwargs):
        with pytest.raises(ValueError):
            LevelingConfig(**kwargs)
