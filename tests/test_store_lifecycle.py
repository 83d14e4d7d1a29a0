"""
tests/test_store_lifecycle.py — Open/Close, PRAGMAs, Checkpointing
===================================================================
"""

from __future__ import annotations

import asyncio
import time
from unittest.mock import patch

import pytest
from conftest import TENANT, make_config
from sqlalchemy.exc import OperationalError

from levelstore import Store, run_db
from levelstore.config import DatabaseConfig, StoreConfig
from levelstore.database.checkpoint import Checkpointer, run_checkpoint
from levelstore.database.engine import create_db_engine, translate_db_error
from levelstore.errors import ConflictRetryable, StorageUnavailable


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.run(coro)


class TestOpenClose:
    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "leveling.db"
        cfg = StoreConfig(database=DatabaseConfig(path=str(path), checkpoint_interval_seconds=3600))
        with Store.open(cfg):
            pass
        assert path.exists()

    def test_not_a_database(self, tmp_path):
        path = tmp_path / "leveling.db"
        path.write_bytes(b"definitely not sqlite " * 64)
        cfg = StoreConfig(database=DatabaseConfig(path=str(path), checkpoint_interval_seconds=3600))
        with pytest.raises(StorageUnavailable):
            Store.open(cfg)

    def test_close_is_idempotent(self, tmp_path):
        s = Store.open(make_config(tmp_path))
        assert s.checkpointer.running
        s.close()
        s.close()
        assert s.closed
        assert not s.checkpointer.running

    def test_data_survives_reopen(self, tmp_path):
        cfg = make_config(tmp_path)
        with Store.open(cfg) as s:
            s.ensure_tenant(TENANT)
            s.add_xp("42", TENANT, 120)
        with Store.open(cfg) as s:
            s.ensure_tenant(TENANT)
            assert s.get_user("42", TENANT)["xp"] == 120

    def test_pragmas_applied(self, store):
        with store.engine.connect() as conn:
            assert conn.exec_driver_sql("PRAGMA journal_mode").scalar() == "wal"
            assert conn.exec_driver_sql("PRAGMA busy_timeout").scalar() == 5000
            assert conn.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1

    def test_suspicious_pragma_rejected(self, tmp_path):
        cfg = DatabaseConfig(
            path=str(tmp_path / "x.db"),
            pragmas={"journal_mode": "WAL; DROP TABLE tenants"},
        )
        with pytest.raises(ValueError):
            create_db_engine(cfg)

    def test_run_db_bridge(self, store):
        result = run_async(run_db(store.add_xp, "42", TENANT, 100))
        assert result.new_level == 1


class TestErrorTranslation:
    def test_locked_is_retryable(self):
        exc = OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))
        assert isinstance(translate_db_error(exc), ConflictRetryable)

    def test_other_errors_are_unavailable(self):
        exc = OperationalError("SELECT 1", {}, Exception("disk I/O error"))
        assert isinstance(translate_db_error(exc), StorageUnavailable)


class TestCheckpointer:
    def test_passive_checkpoint_in_wal_mode(self, store):
        store.add_xp("42", TENANT, 1)
        result = run_checkpoint(store.engine)
        assert result is not None
        busy, log_frames, checkpointed = result
        assert busy in (0, 1)
        assert log_frames >= checkpointed >= 0

    def test_no_result_outside_wal(self):
        engine = create_db_engine(DatabaseConfig(path=":memory:"))
        try:
            assert run_checkpoint(engine) is None
        finally:
            engine.dispose()

    def test_unknown_mode_rejected(self, store):
        with pytest.raises(ValueError):
            run_checkpoint(store.engine, "TRUNCATE; DROP")

    def test_tick_counts_runs(self, store):
        store.checkpointer.tick()
        assert store.checkpointer.runs == 1
        assert store.checkpointer.failures == 0

    def test_tick_swallows_failures(self, store):
        with patch(
            "levelstore.database.checkpoint.run_checkpoint",
            side_effect=StorageUnavailable("gone"),
        ):
            store.checkpointer.tick()
        assert store.checkpointer.failures == 1

    def test_background_thread_runs_and_stops(self, store):
        checkpointer = Checkpointer(store.engine, interval=0.01)
        checkpointer.start()
        deadline = time.monotonic() + 5
        while checkpointer.runs == 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        checkpointer.stop()
        assert checkpointer.runs > 0
        assert not checkpointer.running

    def test_invalid_interval(self, store):
        with pytest.raises(ValueError):
            Checkpointer(store.engine, interval=0)
