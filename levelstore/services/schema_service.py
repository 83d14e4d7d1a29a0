"""
levelstore.services.schema_service — Tenant Provisioning Registry
==================================================================

A tenant must be provisioned before any read or write against it.
Provisioning is idempotent DDL (create-if-missing of the tenant user and
settings tables with their descending-xp / descending-level indexes) plus a
row in the ``tenants`` registry.

The in-memory membership set is only updated *after* provisioning commits,
so a crash between the DDL and the cache update is simply retried on the
next call.  After that every ``ensure_tenant`` for the tenant is a set
lookup.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from levelstore.constants import GLOBAL_TENANT, is_valid_tenant_id
from levelstore.database.engine import get_session, translate_errors
from levelstore.database.models import TENANT_TABLES, Base, Tenant, utcnow
from levelstore.errors import InvalidTenantId, SchemaNotReady

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def validate_tenant_id(tenant_id: object) -> str:
    """Return *tenant_id* unchanged or raise :class:`InvalidTenantId`."""
    if not is_valid_tenant_id(tenant_id):
        raise InvalidTenantId(tenant_id)
    return tenant_id  # type: ignore[return-value]


class SchemaRegistry:
    """Thread-safe registry of provisioned tenants.

    Usage::

        registry = SchemaRegistry(engine)
        registry.ensure_tenant("1468816181854081229")   # provisions once
        registry.require_tenant("1468816181854081229")  # O(1) check
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        self._provisioned: set[str] = set()

    # -------------------------------------------------------------------
    # Provisioning
    # -------------------------------------------------------------------
    def ensure_tenant(self, tenant_id: str) -> None:
        """Provision *tenant_id* if this process has not seen it yet.

        Raises
        ------
        InvalidTenantId
            If *tenant_id* is not the global sentinel or a snowflake.
        """
        validate_tenant_id(tenant_id)
        if tenant_id == GLOBAL_TENANT or tenant_id in self._provisioned:
            return

        with self._lock:
            if tenant_id in self._provisioned:
                return
            self._provision(tenant_id)
            self._provisioned.add(tenant_id)
        logger.info("Provisioned tenant %s", tenant_id)

    def _provision(self, tenant_id: str) -> None:
        with translate_errors():
            Base.metadata.create_all(self._engine, tables=list(TENANT_TABLES), checkfirst=True)

        with get_session(self._engine, write=True) as session:
            session.execute(
                sqlite_insert(Tenant)
                .values(tenant_id=tenant_id, provisioned_at=utcnow())
                .on_conflict_do_nothing(index_elements=["tenant_id"])
            )

    def register_provisioned(self, tenant_id: str) -> None:
        """Mark *tenant_id* as provisioned after an external commit (migration)."""
        validate_tenant_id(tenant_id)
        if tenant_id != GLOBAL_TENANT:
            with self._lock:
                self._provisioned.add(tenant_id)

    # -------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------
    def require_tenant(self, tenant_id: str) -> str:
        """Raise unless *tenant_id* is valid and provisioned.

        Raises
        ------
        InvalidTenantId
            Malformed identifier.
        SchemaNotReady
            ``ensure_tenant`` was never called for this tenant.
        """
        validate_tenant_id(tenant_id)
        if tenant_id != GLOBAL_TENANT and tenant_id not in self._provisioned:
            raise SchemaNotReady(tenant_id)
        return tenant_id

    def is_provisioned(self, tenant_id: str) -> bool:
        return tenant_id == GLOBAL_TENANT or tenant_id in self._provisioned

    def known_tenants(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._provisioned)

    def load_provisioned(self) -> int:
        """Warm the cache from the ``tenants`` table.  Returns the count loaded."""
        with get_session(self._engine) as session:
            tenant_ids = session.scalars(select(Tenant.tenant_id)).all()
        with self._lock:
            self._provisioned.update(tenant_ids)
        logger.info("Loaded %d provisioned tenants", len(tenant_ids))
        return len(tenant_ids)
