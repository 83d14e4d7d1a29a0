"""
levelstore.services.migration_service — Legacy Schema Migration
================================================================

One-shot carry-over from the single-table legacy layout:

    users(user_id, xp, level, last_message, first_seen, guild_id,
          sacrifices, sacrifice_pending)
    guild_settings(guild_id, setting_key, setting_value, created_at, updated_at)
    statistics(key, value)

Timestamps in the legacy tables are epoch milliseconds.

Mapping:
    users                    → global_users (per user_id, earliest first_seen)
                             → tenant_users (per user_id + guild_id; the
                               ``global`` guild keeps its rows but is never
                               registered as a provisioned tenant)
    guild_settings, user_*   → tenant_users fields (content_blacklisted,
                               warning_count, banner_url, avatar_url) or
                               ``user.<uid>.<key>`` settings of that tenant
    guild_settings, global   → global_users.blacklisted for
      blacklist_user_<uid>     ``blacklist_user_<uid>`` rows
    guild_settings, tenant   → tenant_settings, untagged
    statistics               → store_statistics, untagged

Everything happens in one transaction.  The legacy tables are then renamed
to ``<name>_legacy_v1`` and the completion marker is written, so the
migration never runs twice and no legacy data is lost.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import inspect, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from levelstore.constants import (
    GLOBAL_TENANT,
    LEGACY_MIGRATION_MARKER,
    LEGACY_TABLE_SUFFIX,
    TENANT_ID_PATTERN,
)
from levelstore.database.engine import get_session, translate_errors
from levelstore.database.models import (
    GlobalUser,
    Setting,
    Statistic,
    Tenant,
    TenantUser,
    as_utc,
    utcnow,
)
from levelstore.engine.values import sniff_legacy
from levelstore.services.settings_service import get_statistic, write_statistic
from levelstore.services.user_service import get_or_create_tenant_user

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from levelstore.engine.leveling import LevelingEngine
    from levelstore.services.schema_service import SchemaRegistry

logger = logging.getLogger(__name__)

LEGACY_TABLES = ("users", "guild_settings", "statistics")

# Per-user pseudo-tenant rows in the legacy settings table.
_USER_SCOPE = re.compile(r"^user_(\d{1,20})_(\d{1,20}|global)$")

# Global upload ban, stored as a "global" setting per user.
_GLOBAL_BAN_KEY = re.compile(r"^blacklist_user_(\d{1,20})$")

# Legacy per-user keys that became TenantUser columns.
_USER_FIELD_KEYS = frozenset({"content_blacklisted", "warning_count", "banner_url", "avatar_url"})


@dataclass
class MigrationReport:
    detected: bool = False
    already_migrated: bool = False
    completed: bool = False
    failed: bool = False
    error: str | None = None
    global_users: int = 0
    tenant_users: int = 0
    settings: int = 0
    user_fields: int = 0
    statistics: int = 0
    skipped_rows: int = 0
    tenants: list[str] = field(default_factory=list)
    renamed_tables: list[str] = field(default_factory=list)


@dataclass
class _LegacyMembership:
    xp: int = 0
    sacrifices: int = 0
    last_message: datetime | None = None
    first_seen: datetime | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _from_epoch_ms(value: Any) -> datetime | None:
    try:
        millis = int(value or 0)
    except (TypeError, ValueError):
        return None
    if millis <= 0:
        return None
    return datetime.fromtimestamp(millis / 1000, UTC)


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _earliest(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None or b is None:
        return a or b
    return min(a, b)


def _latest(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None or b is None:
        return a or b
    return max(a, b)


def detect_legacy_schema(engine: Engine) -> bool:
    """A ``users`` table with a ``guild_id`` column only exists in the legacy layout."""
    with translate_errors():
        inspector = inspect(engine)
        if not inspector.has_table("users"):
            return False
        return any(col["name"] == "guild_id" for col in inspector.get_columns("users"))


# ---------------------------------------------------------------------------
# Steps (all inside the caller's session)
# ---------------------------------------------------------------------------
def _migrate_users(
    session: Session, leveling: LevelingEngine, report: MigrationReport, tenants: set[str]
) -> None:
    rows = session.execute(
        text(
            "SELECT user_id, xp, last_message, first_seen, guild_id, sacrifices FROM users"
        )
    ).all()

    first_seen: dict[str, datetime | None] = {}
    memberships: dict[tuple[str, str], _LegacyMembership] = defaultdict(_LegacyMembership)

    for row in rows:
        user_id = str(row.user_id)
        seen = _from_epoch_ms(row.first_seen)
        first_seen[user_id] = _earliest(first_seen.get(user_id), seen)

        guild_id = str(row.guild_id) if row.guild_id is not None else GLOBAL_TENANT
        if guild_id != GLOBAL_TENANT and not TENANT_ID_PATTERN.fullmatch(guild_id):
            logger.warning("Skipping legacy user %s with malformed guild id %r", user_id, guild_id)
            report.skipped_rows += 1
            continue

        membership = memberships[(guild_id, user_id)]
        membership.xp += max(0, _as_int(row.xp))
        membership.sacrifices += _as_int(row.sacrifices)
        membership.last_message = _latest(membership.last_message, _from_epoch_ms(row.last_message))
        membership.first_seen = _earliest(membership.first_seen, seen)

    now = utcnow()
    for user_id, seen in first_seen.items():
        session.execute(
            sqlite_insert(GlobalUser)
            .values(
                user_id=user_id,
                first_seen=seen or now,
                blacklisted=False,
                last_updated=now,
            )
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
    report.global_users = len(first_seen)

    for (guild_id, user_id), membership in memberships.items():
        user = session.get(TenantUser, (guild_id, user_id))
        if user is None:
            user = TenantUser(
                tenant_id=guild_id,
                user_id=user_id,
                xp=0,
                sacrifices=0,
                warning_count=0,
                is_blacklisted=False,
                created_at=membership.first_seen or now,
            )
            session.add(user)
        user.xp = (user.xp or 0) + membership.xp
        user.sacrifices = (user.sacrifices or 0) + membership.sacrifices
        user.level = leveling.level_for_xp(user.xp)
        user.last_message_at = _latest(as_utc(user.last_message_at), membership.last_message)
        user.sacrifice_pending = False
        user.sacrifice_pending_until = None
        user.updated_at = now
        if guild_id != GLOBAL_TENANT:
            tenants.add(guild_id)
    session.flush()
    report.tenant_users = len(memberships)


def _apply_user_field(user: TenantUser, key: str, value: Any) -> None:
    if key == "content_blacklisted":
        user.is_blacklisted = value is True
    elif key == "warning_count":
        user.warning_count = _as_int(value)
    else:
        setattr(user, key, value if isinstance(value, str) else None)


def _apply_global_ban(session: Session, user_id: str, banned_at: datetime) -> None:
    now = utcnow()
    ban = {
        "blacklisted": True,
        "blacklist_reason": "migrated from legacy settings",
        "blacklisted_at": banned_at,
        "last_updated": now,
    }
    session.execute(
        sqlite_insert(GlobalUser)
        .values(user_id=user_id, first_seen=now, **ban)
        .on_conflict_do_update(index_elements=["user_id"], set_=ban)
    )


def _migrate_settings(
    session: Session, leveling: LevelingEngine, report: MigrationReport, tenants: set[str]
) -> None:
    rows = session.execute(
        text("SELECT guild_id, setting_key, setting_value, created_at, updated_at FROM guild_settings")
    ).all()

    now = utcnow()
    for row in rows:
        scope = str(row.guild_id)
        key = str(row.setting_key)

        user_scope = _USER_SCOPE.fullmatch(scope)
        ban = _GLOBAL_BAN_KEY.fullmatch(key) if scope == GLOBAL_TENANT else None
        if user_scope:
            user_id, tenant_id = user_scope.groups()
            if key in _USER_FIELD_KEYS:
                user = get_or_create_tenant_user(session, user_id, tenant_id, leveling)
                _apply_user_field(user, key, sniff_legacy(row.setting_value))
                user.updated_at = now
                report.user_fields += 1
                if tenant_id != GLOBAL_TENANT:
                    tenants.add(tenant_id)
                continue
            key = f"user.{user_id}.{key}"
        elif ban:
            if sniff_legacy(row.setting_value) is True:
                _apply_global_ban(session, ban.group(1), _from_epoch_ms(row.updated_at) or now)
            report.user_fields += 1
            continue
        elif scope == GLOBAL_TENANT or TENANT_ID_PATTERN.fullmatch(scope):
            tenant_id = scope
        else:
            logger.warning("Skipping legacy setting %r for malformed tenant %r", key, scope)
            report.skipped_rows += 1
            continue

        session.execute(
            sqlite_insert(Setting)
            .values(
                tenant_id=tenant_id,
                key=key,
                value=row.setting_value,
                value_type=None,
                created_at=_from_epoch_ms(row.created_at) or now,
                updated_at=_from_epoch_ms(row.updated_at) or now,
            )
            .on_conflict_do_nothing(index_elements=["tenant_id", "key"])
        )
        report.settings += 1
        if tenant_id != GLOBAL_TENANT:
            tenants.add(tenant_id)


def _migrate_statistics(session: Session, report: MigrationReport) -> None:
    rows = session.execute(text("SELECT key, value FROM statistics")).all()
    now = utcnow()
    for row in rows:
        session.execute(
            sqlite_insert(Statistic)
            .values(key=str(row.key), value=row.value, value_type=None, updated_at=now)
            .on_conflict_do_nothing(index_elements=["key"])
        )
    report.statistics = len(rows)


def _register_tenants(session: Session, tenants: set[str]) -> None:
    now = utcnow()
    for tenant_id in sorted(tenants):
        session.execute(
            sqlite_insert(Tenant)
            .values(tenant_id=tenant_id, provisioned_at=now)
            .on_conflict_do_nothing(index_elements=["tenant_id"])
        )


def _rename_legacy_tables(session: Session, report: MigrationReport) -> None:
    connection = session.connection()
    op = Operations(MigrationContext.configure(connection))
    existing = set(inspect(connection).get_table_names())
    for name in LEGACY_TABLES:
        if name in existing:
            op.rename_table(name, f"{name}{LEGACY_TABLE_SUFFIX}")
            report.renamed_tables.append(name)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def run_legacy_migration(
    engine: Engine,
    leveling: LevelingEngine,
    registry: SchemaRegistry | None = None,
) -> MigrationReport:
    """Carry legacy data into the current schema, once.

    Never raises: a failed migration is rolled back, logged, and reported
    with ``failed=True`` so startup can carry on and retry next time.
    """
    report = MigrationReport()
    try:
        report.detected = detect_legacy_schema(engine)
        if not report.detected:
            return report
        if get_statistic(engine, LEGACY_MIGRATION_MARKER) is not None:
            report.already_migrated = True
            return report

        logger.info("Legacy schema detected — migrating")
        tenants: set[str] = set()
        existing = set(inspect(engine).get_table_names())

        with get_session(engine, write=True) as session:
            _migrate_users(session, leveling, report, tenants)
            if "guild_settings" in existing:
                _migrate_settings(session, leveling, report, tenants)
            if "statistics" in existing:
                _migrate_statistics(session, report)
            _register_tenants(session, tenants)
            _rename_legacy_tables(session, report)
            write_statistic(session, LEGACY_MIGRATION_MARKER, utcnow().isoformat())
    except Exception as exc:
        logger.exception("Legacy migration failed — rolled back, will retry on next start")
        return MigrationReport(detected=report.detected, failed=True, error=str(exc))

    report.tenants = sorted(tenants)
    report.completed = True
    if registry is not None:
        for tenant_id in report.tenants:
            registry.register_provisioned(tenant_id)

    logger.info(
        "Legacy migration complete: %d global users, %d tenant users, %d settings, "
        "%d statistics across %d tenants (%d rows skipped)",
        report.global_users, report.tenant_users, report.settings,
        report.statistics, len(report.tenants), report.skipped_rows,
    )
    return report
