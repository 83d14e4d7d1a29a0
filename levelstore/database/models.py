"""
levelstore.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- global_users     — one row per end user across every tenant
- tenants          — registry of provisioned tenants
- tenant_users     — per-tenant XP/level ledger, partitioned by tenant_id
- tenant_settings  — per-tenant typed key/value settings ("global" included)
- store_statistics — process-wide counters and markers

Tenant data lives in shared tables keyed by ``tenant_id`` rather than one
table per tenant, so no identifier is ever built from caller input.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all levelstore ORM models."""


# ---------------------------------------------------------------------------
# GlobalUser — cross-tenant identity
# ---------------------------------------------------------------------------
class GlobalUser(Base):
    __tablename__ = "global_users"

    user_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    first_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    display_name: Mapped[str | None] = mapped_column(String(100), default=None)
    blacklisted: Mapped[bool] = mapped_column(Boolean, default=False)
    blacklist_reason: Mapped[str | None] = mapped_column(Text, default=None)
    blacklisted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    blacklisted_by: Mapped[str | None] = mapped_column(String(32), default=None)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<GlobalUser id={self.user_id} name={self.display_name!r}>"


# ---------------------------------------------------------------------------
# Tenant — provisioning registry
# ---------------------------------------------------------------------------
class Tenant(Base):
    __tablename__ = "tenants"

    tenant_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    provisioned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<Tenant id={self.tenant_id}>"


# ---------------------------------------------------------------------------
# TenantUser — per-tenant XP ledger
# ---------------------------------------------------------------------------
class TenantUser(Base):
    __tablename__ = "tenant_users"

    tenant_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    xp: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    sacrifices: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sacrifice_pending: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sacrifice_pending_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    is_blacklisted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    warning_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    banner_url: Mapped[str | None] = mapped_column(String(500), default=None)
    avatar_url: Mapped[str | None] = mapped_column(String(500), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("ix_tenant_users_xp_desc", "tenant_id", xp.desc()),
        Index("ix_tenant_users_level_desc", "tenant_id", level.desc()),
    )

    def __repr__(self) -> str:
        return (
            f"<TenantUser tenant={self.tenant_id} user={self.user_id} "
            f"xp={self.xp} lvl={self.level}>"
        )


# ---------------------------------------------------------------------------
# Setting — per-tenant typed key/value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value settings, one partition per tenant.

    ``value`` is always text.  ``value_type`` records how it was encoded
    (see :mod:`levelstore.engine.values`); rows carried over from the legacy
    schema have no tag and are decoded by sniffing.
    """
    __tablename__ = "tenant_settings"

    tenant_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text, default=None)
    value_type: Mapped[str | None] = mapped_column(String(10), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<Setting tenant={self.tenant_id} key={self.key!r}>"


# ---------------------------------------------------------------------------
# Statistic — process-wide counters and markers
# ---------------------------------------------------------------------------
class Statistic(Base):
    __tablename__ = "store_statistics"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text, default=None)
    value_type: Mapped[str | None] = mapped_column(String(10), default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<Statistic key={self.key!r}>"


# Tables created by tenant provisioning (shared across tenants).
TENANT_TABLES = (TenantUser.__table__, Setting.__table__)
