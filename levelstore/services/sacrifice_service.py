"""
levelstore.services.sacrifice_service — Persisted Sacrifice Transitions
=======================================================================

Applies :mod:`levelstore.engine.sacrifice` to stored users.  The first
request at max level arms a pending flag with an expiry; a second request
before the expiry resets the user to level 1 and counts the sacrifice.
Each call is a single ``BEGIN IMMEDIATE`` transaction.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from levelstore.constants import STAT_TOTAL_SACRIFICES
from levelstore.database.engine import get_session
from levelstore.database.models import TenantUser, as_utc, utcnow
from levelstore.engine.sacrifice import (
    SacrificeOutcome,
    SacrificeResult,
    SacrificeState,
    classify,
    is_eligible,
)
from levelstore.services.settings_service import bump_statistic
from levelstore.services.user_service import get_or_create_tenant_user

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from levelstore.engine.leveling import LevelingEngine

logger = logging.getLogger(__name__)


def _clear_pending(user: TenantUser) -> None:
    user.sacrifice_pending = False
    user.sacrifice_pending_until = None


def sacrifice(
    engine: Engine,
    leveling: LevelingEngine,
    user_id: str,
    tenant_id: str,
    timeout_seconds: float = 60.0,
) -> SacrificeResult:
    """Request or confirm a sacrifice for the user."""
    now = utcnow()
    with get_session(engine, write=True) as session:
        user = get_or_create_tenant_user(session, user_id, tenant_id, leveling)
        state = classify(
            level=user.level,
            xp=user.xp,
            pending=bool(user.sacrifice_pending),
            pending_until=as_utc(user.sacrifice_pending_until),
            now=now,
            leveling=leveling,
        )

        if state is SacrificeState.INELIGIBLE:
            if user.sacrifice_pending:
                _clear_pending(user)
            return SacrificeResult(SacrificeOutcome.NOT_ELIGIBLE, user.sacrifices)

        if state is SacrificeState.ELIGIBLE:
            pending_until = now + timedelta(seconds=timeout_seconds)
            user.sacrifice_pending = True
            user.sacrifice_pending_until = pending_until
            user.updated_at = now
            logger.debug("Sacrifice armed for user %s in %s", user_id, tenant_id)
            return SacrificeResult(
                SacrificeOutcome.NEEDS_CONFIRMATION, user.sacrifices, pending_until
            )

        # PENDING: confirm.
        user.level = 1
        user.xp = leveling.xp_for_level(1)
        user.sacrifices += 1
        _clear_pending(user)
        user.updated_at = now
        bump_statistic(session, STAT_TOTAL_SACRIFICES)
        count = user.sacrifices

    logger.info("User %s sacrificed in %s (total %d)", user_id, tenant_id, count)
    return SacrificeResult(SacrificeOutcome.COMPLETED, count)


def is_eligible_for_sacrifice(
    engine: Engine, leveling: LevelingEngine, user_id: str, tenant_id: str
) -> bool:
    with get_session(engine) as session:
        user = session.get(TenantUser, (tenant_id, user_id))
        if user is None:
            return False
        return is_eligible(user.level, user.xp, leveling)


def reset_sacrifice_pending(engine: Engine, user_id: str, tenant_id: str) -> bool:
    """Cancel an armed sacrifice.  True if a pending flag was cleared."""
    with get_session(engine, write=True) as session:
        user = session.get(TenantUser, (tenant_id, user_id))
        if user is None or not user.sacrifice_pending:
            return False
        _clear_pending(user)
        user.updated_at = utcnow()
        return True
