"""
tests/test_sacrifice.py — Two-Phase Sacrifice Reset
====================================================
``small_store`` caps at level 5 (1118 XP on the default curve).
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
from conftest import TENANT

from levelstore.config import LevelingConfig
from levelstore.constants import STAT_TOTAL_SACRIFICES
from levelstore.database.models import utcnow
from levelstore.engine.leveling import LevelingEngine
from levelstore.engine.sacrifice import (
    SacrificeOutcome,
    SacrificeState,
    classify,
    is_eligible,
    pending_active,
)

CAP_XP = 1118


def _max_out(store, user_id: str = "42") -> None:
    result = store.add_xp(user_id, TENANT, CAP_XP)
    assert result.new_level == 5


class TestStateMachine:
    @pytest.fixture
    def capped(self) -> LevelingEngine:
        return LevelingEngine(LevelingConfig(max_level=5))

    def test_ineligible_below_cap(self, capped):
        now = datetime(2026, 1, 1, tzinfo=UTC)
        state = classify(level=4, xp=900, pending=True, pending_until=None, now=now, leveling=capped)
        assert state is SacrificeState.INELIGIBLE

    def test_eligible_then_pending(self, capped):
        now = datetime(2026, 1, 1, tzinfo=UTC)
        kwargs = {"level": 5, "xp": CAP_XP, "now": now, "leveling": capped}
        assert classify(pending=False, pending_until=None, **kwargs) is SacrificeState.ELIGIBLE
        assert (
            classify(pending=True, pending_until=now + timedelta(seconds=1), **kwargs)
            is SacrificeState.PENDING
        )

    def test_expired_pending_is_eligible_again(self, capped):
        now = datetime(2026, 1, 1, tzinfo=UTC)
        state = classify(
            level=5, xp=CAP_XP, pending=True, pending_until=now, now=now, leveling=capped
        )
        assert state is SacrificeState.ELIGIBLE

    def test_pending_without_expiry_never_lapses(self):
        assert pending_active(True, None, datetime(2099, 1, 1, tzinfo=UTC))
        assert not pending_active(False, None, datetime(2000, 1, 1, tzinfo=UTC))

    def test_eligibility_needs_cap_xp(self, capped):
        assert is_eligible(5, CAP_XP, capped)
        assert not is_eligible(5, CAP_XP - 1, capped)
        assert not is_eligible(4, 10**6, capped)


class TestSacrificeFlow:
    def test_not_eligible(self, small_store):
        small_store.add_xp("42", TENANT, 10)
        result = small_store.sacrifice("42", TENANT)
        assert result.outcome is SacrificeOutcome.NOT_ELIGIBLE
        assert not result.success
        assert small_store.get_user("42", TENANT)["sacrifice_pending"] is False

    def test_two_phase_reset(self, small_store):
        _max_out(small_store)
        assert small_store.is_eligible_for_sacrifice("42", TENANT)

        first = small_store.sacrifice("42", TENANT)
        assert first.needs_confirmation
        assert first.pending_until is not None
        user = small_store.get_user("42", TENANT)
        assert user["sacrifice_pending"] is True
        assert user["level"] == 5
        assert user["xp"] == CAP_XP

        second = small_store.sacrifice("42", TENANT)
        assert second.success
        assert second.sacrifice_count == 1
        user = small_store.get_user("42", TENANT)
        assert user["level"] == 1
        assert user["xp"] == small_store.xp_for_level(1)
        assert user["sacrifice_pending"] is False
        assert user["sacrifice_pending_until"] is None
        assert small_store.get_statistic(STAT_TOTAL_SACRIFICES) == 1
        assert not small_store.is_eligible_for_sacrifice("42", TENANT)

    def test_expired_confirmation_asks_again(self, small_store):
        _max_out(small_store)
        small_store.sacrifice("42", TENANT)

        timeout = small_store.config.sacrifice.confirmation_timeout_seconds
        later = utcnow() + timedelta(seconds=timeout + 1)
        with patch("levelstore.services.sacrifice_service.utcnow", return_value=later):
            result = small_store.sacrifice("42", TENANT)

        assert result.needs_confirmation
        assert small_store.get_user("42", TENANT)["sacrifices"] == 0

    def test_cancel_pending(self, small_store):
        _max_out(small_store)
        small_store.sacrifice("42", TENANT)
        assert small_store.reset_sacrifice_pending("42", TENANT) is True
        assert small_store.reset_sacrifice_pending("42", TENANT) is False
        assert small_store.sacrifice("42", TENANT).needs_confirmation

    def test_count_accumulates(self, small_store):
        for expected in (1, 2):
            small_store.add_xp("42", TENANT, CAP_XP)
            small_store.sacrifice("42", TENANT)
            assert small_store.sacrifice("42", TENANT).sacrifice_count == expected

    def test_unknown_user_is_not_eligible(self, small_store):
        assert small_store.is_eligible_for_sacrifice("nobody", TENANT) is False
