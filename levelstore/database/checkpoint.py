"""
levelstore.database.checkpoint — Background WAL Checkpointer
=============================================================

In WAL mode every commit appends to ``<db>-wal``.  SQLite folds the log
back into the main file only when a checkpoint runs, so a busy bot would
otherwise grow the log without bound and pay for it on the next open.

:class:`Checkpointer` runs ``PRAGMA wal_checkpoint(PASSIVE)`` on a daemon
thread at a fixed interval.  PASSIVE never waits on readers or writers: it
copies what it can and returns, so foreground traffic is not blocked.
:meth:`Checkpointer.final_checkpoint` runs the blocking ``FULL`` variant
once at shutdown.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

PASSIVE = "PASSIVE"
FULL = "FULL"


def run_checkpoint(engine: Engine, mode: str = PASSIVE) -> tuple[int, int, int] | None:
    """Run one WAL checkpoint and return ``(busy, log_frames, checkpointed)``.

    Uses a raw DBAPI connection so no ``BEGIN`` is emitted around the
    PRAGMA; a checkpoint cannot make progress from inside a transaction.
    Returns ``None`` when the database is not in WAL mode.
    """
    if mode not in (PASSIVE, FULL):
        raise ValueError(f"Unsupported checkpoint mode: {mode!r}")
    raw = engine.raw_connection()
    try:
        cursor = raw.cursor()
        try:
            cursor.execute(f"PRAGMA wal_checkpoint({mode})")
            row = cursor.fetchone()
        finally:
            cursor.close()
    finally:
        raw.close()
    if row is None or row[1] == -1:
        return None
    return int(row[0]), int(row[1]), int(row[2])


class Checkpointer:
    """Periodic passive checkpoints on a daemon thread.

    Usage::

        checkpointer = Checkpointer(engine, interval=10.0)
        checkpointer.start()
        ...
        checkpointer.stop()
        checkpointer.final_checkpoint()
    """

    def __init__(self, engine: Engine, interval: float) -> None:
        if interval <= 0:
            raise ValueError("Checkpoint interval must be positive")
        self._engine = engine
        self._interval = interval
        self._shutdown_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.runs = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._shutdown_event.clear()
        thread = threading.Thread(
            target=self._loop, daemon=True, name="levelstore-checkpoint"
        )
        self._thread = thread
        thread.start()
        logger.info("Automatic database checkpoint set up (every %.1fs)", self._interval)

    def _loop(self) -> None:
        # Interruptible sleep: exits early on the shutdown signal
        while not self._shutdown_event.wait(timeout=self._interval):
            self.tick()

    def tick(self) -> None:
        """Run one passive checkpoint, logging rather than raising on failure."""
        try:
            result = run_checkpoint(self._engine, PASSIVE)
        except Exception:
            self.failures += 1
            logger.exception("Error during automatic database checkpoint")
            return
        self.runs += 1
        if result is not None:
            logger.debug(
                "Passive checkpoint: busy=%d log=%d checkpointed=%d", *result
            )

    def stop(self) -> None:
        """Signal the thread to stop and wait for it to exit."""
        self._shutdown_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._thread = None

    def final_checkpoint(self) -> tuple[int, int, int] | None:
        """Blocking ``FULL`` checkpoint, run once at shutdown."""
        result = run_checkpoint(self._engine, FULL)
        logger.info("Final database checkpoint complete")
        return result
