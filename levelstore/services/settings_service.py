"""
levelstore.services.settings_service — Settings & Statistics CRUD
==================================================================

Typed read/write access to the ``tenant_settings`` and ``store_statistics``
tables.  Values are encoded with :mod:`levelstore.engine.values`.

Reads of settings are advisory: if the database is briefly unavailable the
caller gets its default back and a warning is logged.  Writes always raise.

These functions assume the tenant has already been checked with
:meth:`~levelstore.services.schema_service.SchemaRegistry.require_tenant`;
:class:`~levelstore.store.Store` does that before delegating here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from levelstore.database.engine import get_session
from levelstore.database.models import Setting, Statistic, utcnow
from levelstore.engine.values import decode_value, encode_value
from levelstore.errors import ConflictRetryable, StorageUnavailable

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SettingResult:
    success: bool
    tenant_id: str
    key: str
    value: Any


@dataclass(frozen=True, slots=True)
class DeleteResult:
    success: bool
    tenant_id: str
    key: str


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_setting(engine: Engine, tenant_id: str, key: str, default: Any = None) -> Any:
    """Return the decoded value of *key* for *tenant_id*, or *default*."""
    try:
        with get_session(engine) as session:
            row = session.get(Setting, (tenant_id, key))
            if row is None:
                return default
            return decode_value(row.value, row.value_type)
    except (StorageUnavailable, ConflictRetryable):
        logger.warning(
            "Error getting setting %s for tenant %s — using default", key, tenant_id,
            exc_info=True,
        )
        return default


def get_all_settings(engine: Engine, tenant_id: str) -> dict[str, Any]:
    """Every setting of *tenant_id*, decoded.  Empty on transient failure."""
    try:
        with get_session(engine) as session:
            rows = session.scalars(
                select(Setting).where(Setting.tenant_id == tenant_id).order_by(Setting.key)
            ).all()
            return {row.key: decode_value(row.value, row.value_type) for row in rows}
    except (StorageUnavailable, ConflictRetryable):
        logger.warning("Error getting all settings for tenant %s", tenant_id, exc_info=True)
        return {}


def is_user_content_allowed(engine: Engine, tenant_id: str, feature: str) -> bool:
    """Whether members may use their own *feature* content (banner, avatar).

    Guild-only mode wins over the allow toggle.
    """
    if get_setting(engine, tenant_id, f"guild_only_{feature}", False) is True:
        return False
    return get_setting(engine, tenant_id, f"allow_user_{feature}", True) is not False


def get_default_content_url(engine: Engine, tenant_id: str, kind: str) -> str | None:
    return get_setting(engine, tenant_id, f"default_{kind}_url", None)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def set_setting(engine: Engine, tenant_id: str, key: str, value: Any) -> SettingResult:
    """Insert or update a single setting."""
    text, tag = encode_value(value)
    now = utcnow()
    stmt = sqlite_insert(Setting).values(
        tenant_id=tenant_id,
        key=key,
        value=text,
        value_type=tag.value,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["tenant_id", "key"],
        set_={
            "value": stmt.excluded.value,
            "value_type": stmt.excluded.value_type,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    with get_session(engine, write=True) as session:
        session.execute(stmt)
    logger.debug("Setting %s updated for tenant %s", key, tenant_id)
    return SettingResult(success=True, tenant_id=tenant_id, key=key, value=value)


def delete_setting(engine: Engine, tenant_id: str, key: str) -> DeleteResult:
    with get_session(engine, write=True) as session:
        result = session.execute(
            delete(Setting).where(Setting.tenant_id == tenant_id, Setting.key == key)
        )
        removed = result.rowcount > 0
    return DeleteResult(success=removed, tenant_id=tenant_id, key=key)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def get_statistic(engine: Engine, key: str, default: Any = None) -> Any:
    with get_session(engine) as session:
        row = session.get(Statistic, key)
        if row is None:
            return default
        return decode_value(row.value, row.value_type)


def write_statistic(session: Session, key: str, value: Any) -> None:
    """Upsert a statistic inside an existing session."""
    text, tag = encode_value(value)
    stmt = sqlite_insert(Statistic).values(
        key=key, value=text, value_type=tag.value, updated_at=utcnow()
    )
    session.execute(
        stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={
                "value": stmt.excluded.value,
                "value_type": stmt.excluded.value_type,
                "updated_at": stmt.excluded.updated_at,
            },
        )
    )


def bump_statistic(session: Session, key: str, amount: int = 1) -> int:
    """Add *amount* to a numeric statistic inside an existing write session.

    Non-numeric current values restart the counter from zero.
    """
    row = session.get(Statistic, key, populate_existing=True)
    current = decode_value(row.value, row.value_type) if row is not None else 0
    if isinstance(current, bool) or not isinstance(current, (int, float)):
        logger.warning("Statistic %s held non-numeric %r — restarting at 0", key, current)
        current = 0
    new_value = current + amount
    write_statistic(session, key, new_value)
    return new_value


def set_statistic(engine: Engine, key: str, value: Any) -> None:
    with get_session(engine, write=True) as session:
        write_statistic(session, key, value)


def increment_statistic(engine: Engine, key: str, amount: int = 1) -> int:
    """Atomically add *amount* to *key* and return the new total."""
    with get_session(engine, write=True) as session:
        return bump_statistic(session, key, amount)

