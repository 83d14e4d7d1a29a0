"""
levelstore.services.user_service — User Ledger & XP Application
================================================================

Per-tenant user rows (``tenant_users``) and the cross-tenant identity row
(``global_users``).  Rows are created lazily on first touch with
insert-or-ignore, so two callers racing to create the same user both end up
reading the single row that won.

:func:`add_xp` is the hot path: it fires on every qualifying message.  The
whole read-modify-write runs in one ``BEGIN IMMEDIATE`` transaction and the
increment itself is done in SQL, so concurrent grants for one user never
lose updates.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from levelstore.constants import CONTENT_KINDS, STAT_TOTAL_XP_AWARDED
from levelstore.database.engine import get_session
from levelstore.database.models import GlobalUser, TenantUser, as_utc, utcnow
from levelstore.errors import NotFound
from levelstore.services.settings_service import bump_statistic

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from levelstore.engine.leveling import LevelingEngine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Records returned to callers (detached from any session)
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GlobalUserRecord:
    user_id: str
    first_seen: datetime | None
    display_name: str | None
    blacklisted: bool
    blacklist_reason: str | None
    blacklisted_at: datetime | None
    blacklisted_by: str | None
    last_updated: datetime | None

    @classmethod
    def from_row(cls, row: GlobalUser) -> GlobalUserRecord:
        return cls(
            user_id=row.user_id,
            first_seen=as_utc(row.first_seen),
            display_name=row.display_name,
            blacklisted=bool(row.blacklisted),
            blacklist_reason=row.blacklist_reason,
            blacklisted_at=as_utc(row.blacklisted_at),
            blacklisted_by=row.blacklisted_by,
            last_updated=as_utc(row.last_updated),
        )


@dataclass(frozen=True, slots=True)
class TenantUserRecord:
    user_id: str
    tenant_id: str
    xp: int
    level: int
    last_message_at: datetime | None
    sacrifices: int
    sacrifice_pending: bool
    sacrifice_pending_until: datetime | None
    is_blacklisted: bool
    warning_count: int
    banner_url: str | None
    avatar_url: str | None
    created_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_row(cls, row: TenantUser) -> TenantUserRecord:
        return cls(
            user_id=row.user_id,
            tenant_id=row.tenant_id,
            xp=row.xp,
            level=row.level,
            last_message_at=as_utc(row.last_message_at),
            sacrifices=row.sacrifices,
            sacrifice_pending=bool(row.sacrifice_pending),
            sacrifice_pending_until=as_utc(row.sacrifice_pending_until),
            is_blacklisted=bool(row.is_blacklisted),
            warning_count=row.warning_count,
            banner_url=row.banner_url,
            avatar_url=row.avatar_url,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )


@dataclass(frozen=True, slots=True)
class XpResult:
    """Snapshot returned by :func:`add_xp`, consistent with the committed row."""

    leveled_up: bool
    old_level: int
    new_level: int
    current_xp: int
    xp_to_next_level: int


# ---------------------------------------------------------------------------
# Session-level helpers
# ---------------------------------------------------------------------------
def get_or_create_global_user(
    session: Session, user_id: str, display_name: str | None = None
) -> GlobalUser:
    """Fetch or insert a GlobalUser row; refresh the display name if it changed."""
    now = utcnow()
    session.execute(
        sqlite_insert(GlobalUser)
        .values(
            user_id=user_id,
            first_seen=now,
            display_name=display_name,
            blacklisted=False,
            last_updated=now,
        )
        .on_conflict_do_nothing(index_elements=["user_id"])
    )
    user = session.get(GlobalUser, user_id, populate_existing=True)
    if display_name and user.display_name != display_name:
        user.display_name = display_name
        user.last_updated = now
    return user


def get_or_create_tenant_user(
    session: Session, user_id: str, tenant_id: str, leveling: LevelingEngine
) -> TenantUser:
    """Fetch or insert a TenantUser row.

    New rows start at ``leveling.level_for_xp(0)`` so the cached level
    matches the curve even when the threshold table defines level 0 xp.
    """
    now = utcnow()
    session.execute(
        sqlite_insert(TenantUser)
        .values(
            tenant_id=tenant_id,
            user_id=user_id,
            xp=0,
            level=leveling.level_for_xp(0),
            sacrifices=0,
            sacrifice_pending=False,
            is_blacklisted=False,
            warning_count=0,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["tenant_id", "user_id"])
    )
    return session.get(TenantUser, (tenant_id, user_id), populate_existing=True)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------
def ensure_tenant_user(
    engine: Engine, leveling: LevelingEngine, user_id: str, tenant_id: str
) -> TenantUserRecord:
    with get_session(engine, write=True) as session:
        user = get_or_create_tenant_user(session, user_id, tenant_id, leveling)
        return TenantUserRecord.from_row(user)


def ensure_global_user(
    engine: Engine, user_id: str, display_name: str | None = None
) -> GlobalUserRecord:
    with get_session(engine, write=True) as session:
        user = get_or_create_global_user(session, user_id, display_name)
        session.flush()
        return GlobalUserRecord.from_row(user)


def get_global_user(engine: Engine, user_id: str) -> GlobalUserRecord:
    """Read a GlobalUser without creating it.

    Raises
    ------
    NotFound
        If the user has never been seen.
    """
    with get_session(engine) as session:
        user = session.get(GlobalUser, user_id)
        if user is None:
            raise NotFound(f"Global user {user_id} not found")
        return GlobalUserRecord.from_row(user)


def get_user(
    engine: Engine, leveling: LevelingEngine, user_id: str, tenant_id: str
) -> dict[str, Any]:
    """Tenant row (created if missing) merged over the global row.

    Tenant fields win when both rows define the same name.
    """
    with get_session(engine, write=True) as session:
        tenant_user = TenantUserRecord.from_row(
            get_or_create_tenant_user(session, user_id, tenant_id, leveling)
        )
        global_row = session.get(GlobalUser, user_id)
        merged: dict[str, Any] = {}
        if global_row is not None:
            merged.update(asdict(GlobalUserRecord.from_row(global_row)))
        merged.update(asdict(tenant_user))
        return merged


# ---------------------------------------------------------------------------
# XP
# ---------------------------------------------------------------------------
def add_xp(
    engine: Engine,
    leveling: LevelingEngine,
    user_id: str,
    tenant_id: str,
    amount: int,
) -> XpResult:
    """Add *amount* XP and recompute the level in one transaction.

    The stored level only ever moves up here.
    """
    if amount < 0:
        raise ValueError("XP amount must not be negative")

    now = utcnow()
    with get_session(engine, write=True) as session:
        get_or_create_global_user(session, user_id)
        user = get_or_create_tenant_user(session, user_id, tenant_id, leveling)
        old_level = user.level

        session.execute(
            update(TenantUser)
            .where(TenantUser.tenant_id == tenant_id, TenantUser.user_id == user_id)
            .values(xp=TenantUser.xp + amount, last_message_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        session.refresh(user)

        computed = leveling.level_for_xp(user.xp)
        leveled_up = computed > old_level
        if leveled_up:
            user.level = computed
        new_level = user.level

        if amount:
            bump_statistic(session, STAT_TOTAL_XP_AWARDED, amount)

        result = XpResult(
            leveled_up=leveled_up,
            old_level=old_level,
            new_level=new_level,
            current_xp=user.xp,
            xp_to_next_level=leveling.xp_to_next_level(new_level, user.xp),
        )

    if result.leveled_up:
        logger.debug(
            "User %s leveled up in %s: %d → %d",
            user_id, tenant_id, result.old_level, result.new_level,
        )
    return result


# ---------------------------------------------------------------------------
# Moderation
# ---------------------------------------------------------------------------
def set_global_blacklist(
    engine: Engine,
    user_id: str,
    blacklisted: bool,
    *,
    reason: str | None = None,
    actor_id: str | None = None,
) -> GlobalUserRecord:
    now = utcnow()
    with get_session(engine, write=True) as session:
        user = get_or_create_global_user(session, user_id)
        user.blacklisted = blacklisted
        if blacklisted:
            user.blacklist_reason = reason
            user.blacklisted_at = now
            user.blacklisted_by = actor_id
        else:
            user.blacklist_reason = None
            user.blacklisted_at = None
            user.blacklisted_by = None
        user.last_updated = now
        session.flush()
        record = GlobalUserRecord.from_row(user)
    logger.info(
        "Global blacklist %s for user %s (by %s)",
        "set" if blacklisted else "cleared", user_id, actor_id,
    )
    return record


def is_globally_blacklisted(engine: Engine, user_id: str) -> bool:
    with get_session(engine) as session:
        user = session.get(GlobalUser, user_id)
        return bool(user and user.blacklisted)


def set_tenant_blacklist(
    engine: Engine,
    leveling: LevelingEngine,
    user_id: str,
    tenant_id: str,
    blacklisted: bool,
) -> TenantUserRecord:
    with get_session(engine, write=True) as session:
        user = get_or_create_tenant_user(session, user_id, tenant_id, leveling)
        user.is_blacklisted = blacklisted
        user.updated_at = utcnow()
        session.flush()
        return TenantUserRecord.from_row(user)


def is_blacklisted(engine: Engine, user_id: str, tenant_id: str) -> bool:
    """Global blacklist short-circuits the tenant check."""
    with get_session(engine) as session:
        global_user = session.get(GlobalUser, user_id)
        if global_user is not None and global_user.blacklisted:
            return True
        tenant_user = session.get(TenantUser, (tenant_id, user_id))
        return bool(tenant_user and tenant_user.is_blacklisted)


def increment_warnings(
    engine: Engine, leveling: LevelingEngine, user_id: str, tenant_id: str
) -> int:
    with get_session(engine, write=True) as session:
        user = get_or_create_tenant_user(session, user_id, tenant_id, leveling)
        user.warning_count += 1
        user.updated_at = utcnow()
        return user.warning_count


def get_warning_count(engine: Engine, user_id: str, tenant_id: str) -> int:
    with get_session(engine) as session:
        user = session.get(TenantUser, (tenant_id, user_id))
        return user.warning_count if user is not None else 0


# ---------------------------------------------------------------------------
# Profile content URLs
# ---------------------------------------------------------------------------
def _content_column(kind: str) -> str:
    if kind not in CONTENT_KINDS:
        raise ValueError(f"Unknown content kind {kind!r}")
    return f"{kind}_url"


def get_content_url(engine: Engine, user_id: str, tenant_id: str, kind: str) -> str | None:
    column = _content_column(kind)
    with get_session(engine) as session:
        user = session.get(TenantUser, (tenant_id, user_id))
        return getattr(user, column) if user is not None else None


def set_content_url(
    engine: Engine,
    leveling: LevelingEngine,
    user_id: str,
    tenant_id: str,
    kind: str,
    url: str | None,
) -> TenantUserRecord:
    column = _content_column(kind)
    with get_session(engine, write=True) as session:
        user = get_or_create_tenant_user(session, user_id, tenant_id, leveling)
        setattr(user, column, url)
        user.updated_at = utcnow()
        session.flush()
        return TenantUserRecord.from_row(user)
