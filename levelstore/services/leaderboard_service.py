"""
levelstore.services.leaderboard_service — Leaderboard & Rank Queries
=====================================================================

Both queries run against the ``(tenant_id, xp DESC)`` index.  Ranks are
competition-style: users with equal XP share a rank and the next rank
skips accordingly.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from levelstore.database.engine import get_session
from levelstore.database.models import TenantUser
from levelstore.services.user_service import get_or_create_tenant_user

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from levelstore.engine.leveling import LevelingEngine


@dataclass(frozen=True, slots=True)
class LeaderboardRow:
    user_id: str
    xp: int
    level: int


@dataclass(frozen=True, slots=True)
class LeaderboardPage:
    rows: list[LeaderboardRow] = field(default_factory=list)
    current_page: int = 1
    total_pages: int = 0
    total_users: int = 0


def get_leaderboard(
    engine: Engine, tenant_id: str, page: int = 1, page_size: int = 10
) -> LeaderboardPage:
    """One page of the tenant's users by XP, highest first.

    Pages outside ``[1, total_pages]`` come back with no rows but still
    report the totals.
    """
    if page_size < 1:
        raise ValueError("page_size must be >= 1")

    with get_session(engine) as session:
        total_users = session.scalar(
            select(func.count()).select_from(TenantUser).where(TenantUser.tenant_id == tenant_id)
        ) or 0
        total_pages = math.ceil(total_users / page_size)

        rows: list[LeaderboardRow] = []
        if 1 <= page <= total_pages:
            result = session.execute(
                select(TenantUser.user_id, TenantUser.xp, TenantUser.level)
                .where(TenantUser.tenant_id == tenant_id)
                .order_by(TenantUser.xp.desc(), TenantUser.user_id.asc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            rows = [LeaderboardRow(user_id=u, xp=x, level=lv) for u, x, lv in result]

    return LeaderboardPage(
        rows=rows,
        current_page=page,
        total_pages=total_pages,
        total_users=total_users,
    )


def get_rank(engine: Engine, leveling: LevelingEngine, user_id: str, tenant_id: str) -> int:
    """1-based rank of the user; creates the user row if it is missing."""
    with get_session(engine, write=True) as session:
        user = get_or_create_tenant_user(session, user_id, tenant_id, leveling)
        ahead = session.scalar(
            select(func.count())
            .select_from(TenantUser)
            .where(TenantUser.tenant_id == tenant_id, TenantUser.xp > user.xp)
        )
        return 1 + (ahead or 0)
