"""
tests/test_settings_service.py — Settings & Statistics
=======================================================
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from conftest import TENANT

from levelstore.constants import STAT_TOTAL_XP_AWARDED
from levelstore.database.engine import get_session
from levelstore.database.models import Setting, utcnow
from levelstore.errors import ConflictRetryable, StorageUnavailable


class TestSettings:
    def test_missing_key_returns_default(self, store):
        assert store.get_setting(TENANT, "nope") is None
        assert store.get_setting(TENANT, "nope", "fallback") == "fallback"

    def test_dict_round_trip(self, store):
        value = {"channels": ["1", "2"], "enabled": True}
        result = store.set_setting(TENANT, "layout", value)
        assert result.success
        assert result.key == "layout"
        assert store.get_setting(TENANT, "layout") == value

    def test_bool_round_trip(self, store):
        store.set_setting(TENANT, "announce", False)
        assert store.get_setting(TENANT, "announce") is False

    def test_string_true_is_not_a_bool(self, store):
        store.set_setting(TENANT, "word", "true")
        assert store.get_setting(TENANT, "word") == "true"

    def test_upsert_overwrites(self, store):
        store.set_setting(TENANT, "k", 1)
        store.set_setting(TENANT, "k", 2)
        assert store.get_setting(TENANT, "k") == 2

    def test_get_all(self, store):
        store.set_setting(TENANT, "a", 1)
        store.set_setting(TENANT, "b", "two")
        assert store.get_all_settings(TENANT) == {"a": 1, "b": "two"}

    def test_delete(self, store):
        store.set_setting(TENANT, "k", 1)
        assert store.delete_setting(TENANT, "k").success is True
        assert store.delete_setting(TENANT, "k").success is False
        assert store.get_setting(TENANT, "k") is None

    def test_tenants_are_isolated(self, store):
        store.set_setting(TENANT, "k", "tenant")
        store.set_setting("global", "k", "global")
        assert store.get_setting(TENANT, "k") == "tenant"
        assert store.get_setting("global", "k") == "global"

    def test_untagged_legacy_rows_are_sniffed(self, store):
        now = utcnow()
        with get_session(store.engine, write=True) as session:
            session.add_all([
                Setting(tenant_id=TENANT, key="flag", value="true", created_at=now, updated_at=now),
                Setting(tenant_id=TENANT, key="obj", value='{"a": 1}', created_at=now, updated_at=now),
                Setting(tenant_id=TENANT, key="text", value="hello", created_at=now, updated_at=now),
            ])
        assert store.get_setting(TENANT, "flag") is True
        assert store.get_setting(TENANT, "obj") == {"a": 1}
        assert store.get_setting(TENANT, "text") == "hello"


class TestDegradedReads:
    @pytest.mark.parametrize("error", [StorageUnavailable("gone"), ConflictRetryable("busy")])
    def test_get_setting_falls_back_to_default(self, store, error):
        with patch("levelstore.services.settings_service.get_session", side_effect=error):
            assert store.get_setting(TENANT, "k", "default") == "default"
            assert store.get_all_settings(TENANT) == {}

    def test_writes_still_raise(self, store):
        with patch(
            "levelstore.services.settings_service.get_session",
            side_effect=StorageUnavailable("gone"),
        ):
            with pytest.raises(StorageUnavailable):
                store.set_setting(TENANT, "k", 1)


class TestContentPolicy:
    def test_allowed_by_default(self, store):
        assert store.is_user_content_allowed(TENANT, "banner") is True

    def test_allow_toggle(self, store):
        store.set_setting(TENANT, "allow_user_banner", False)
        assert store.is_user_content_allowed(TENANT, "banner") is False

    def test_guild_only_wins(self, store):
        store.set_setting(TENANT, "allow_user_avatar", True)
        store.set_setting(TENANT, "guild_only_avatar", True)
        assert store.is_user_content_allowed(TENANT, "avatar") is False


class TestStatistics:
    def test_increment(self, store):
        assert store.increment_statistic("commands") == 1
        assert store.increment_statistic("commands", 4) == 5
        assert store.get_statistic("commands") == 5

    def test_set_and_get(self, store):
        store.set_statistic("last_backup", "2026-01-01")
        assert store.get_statistic("last_backup") == "2026-01-01"
        assert store.get_statistic("missing", 0) == 0

    def test_non_numeric_counter_restarts(self, store):
        store.set_statistic("weird", "abc")
        assert store.increment_statistic("weird") == 1

    def test_add_xp_counts_total_awarded(self, store):
        store.add_xp("1", TENANT, 30)
        store.add_xp("2", TENANT, 12)
        assert store.get_statistic(STAT_TOTAL_XP_AWARDED) == 42
