"""
levelstore.store — The Store Facade
====================================

One :class:`Store` per process owns the engine, the tenant registry, the
leveling engine, and the checkpoint thread.  Every public method is
synchronous; async callers wrap them with
:func:`~levelstore.database.engine.run_db`.

Wiring (``Store.open``):
1. Create the SQLAlchemy engine (PRAGMAs applied per connection).
2. Create the shared tables.
3. Run the one-shot legacy migration (failure is logged, not fatal).
4. Start the background WAL checkpointer.

Usage::

    from levelstore import Store, load_config

    with Store.open(load_config()) as store:
        store.ensure_tenant("1468816181854081229")
        result = store.add_xp("42", "1468816181854081229", 15)
        if result.leveled_up:
            ...

Every tenant-scoped method raises :class:`~levelstore.errors.SchemaNotReady`
until :meth:`Store.ensure_tenant` has been called for that tenant.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from levelstore.config import StoreConfig
from levelstore.database.checkpoint import Checkpointer
from levelstore.database.engine import create_db_engine, init_db
from levelstore.engine.leveling import LevelingEngine
from levelstore.errors import StorageUnavailable
from levelstore.services import (
    content_service,
    leaderboard_service,
    sacrifice_service,
    settings_service,
    user_service,
)
from levelstore.services.migration_service import MigrationReport, run_legacy_migration
from levelstore.services.schema_service import SchemaRegistry

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from levelstore.engine.sacrifice import SacrificeResult
    from levelstore.services.leaderboard_service import LeaderboardPage
    from levelstore.services.settings_service import DeleteResult, SettingResult
    from levelstore.services.user_service import GlobalUserRecord, TenantUserRecord, XpResult

logger = logging.getLogger(__name__)


class Store:
    """Persistent multi-tenant leveling store."""

    def __init__(self, config: StoreConfig, engine: Engine) -> None:
        self.config = config
        self.engine = engine
        self.leveling = LevelingEngine(config.leveling)
        self.registry = SchemaRegistry(engine)
        self.checkpointer = Checkpointer(engine, config.database.checkpoint_interval_seconds)
        self.migration_report: MigrationReport | None = None
        self._closed = False

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    @classmethod
    def open(cls, config: StoreConfig | None = None) -> Store:
        """Open (creating if needed) the database described by *config*.

        Raises
        ------
        StorageUnavailable
            If the file cannot be created or opened, or is not a database.
        """
        config = config or StoreConfig()
        engine = create_db_engine(config.database)
        try:
            init_db(engine)
        except StorageUnavailable:
            engine.dispose()
            raise

        store = cls(config, engine)
        store.migration_report = run_legacy_migration(engine, store.leveling, store.registry)
        store.checkpointer.start()
        logger.info("Store opened at %s", config.database.path)
        return store

    def close(self) -> None:
        """Stop the checkpointer, fold the WAL back in, and release the engine.

        Call only after in-flight operations have returned.  Safe to call twice.
        """
        if self._closed:
            return
        self._closed = True
        self.checkpointer.stop()
        try:
            self.checkpointer.final_checkpoint()
        except Exception:
            logger.exception("Final checkpoint failed")
        finally:
            self.engine.dispose()
        logger.info("Store closed")

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -------------------------------------------------------------------
    # Tenants
    # -------------------------------------------------------------------
    def ensure_tenant(self, tenant_id: str) -> None:
        self.registry.ensure_tenant(tenant_id)

    def is_provisioned(self, tenant_id: str) -> bool:
        return self.registry.is_provisioned(tenant_id)

    # -------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------
    def ensure_user(self, user_id: str, tenant_id: str) -> TenantUserRecord:
        self.registry.require_tenant(tenant_id)
        return user_service.ensure_tenant_user(self.engine, self.leveling, user_id, tenant_id)

    def ensure_global_user(self, user_id: str, display_name: str | None = None) -> GlobalUserRecord:
        return user_service.ensure_global_user(self.engine, user_id, display_name)

    def get_global_user(self, user_id: str) -> GlobalUserRecord:
        return user_service.get_global_user(self.engine, user_id)

    def get_user(self, user_id: str, tenant_id: str) -> dict[str, Any]:
        self.registry.require_tenant(tenant_id)
        return user_service.get_user(self.engine, self.leveling, user_id, tenant_id)

    def add_xp(self, user_id: str, tenant_id: str, amount: int) -> XpResult:
        self.registry.require_tenant(tenant_id)
        return user_service.add_xp(self.engine, self.leveling, user_id, tenant_id, amount)

    # -------------------------------------------------------------------
    # Moderation
    # -------------------------------------------------------------------
    def set_global_blacklist(
        self,
        user_id: str,
        blacklisted: bool,
        reason: str | None = None,
        actor_id: str | None = None,
    ) -> GlobalUserRecord:
        return user_service.set_global_blacklist(
            self.engine, user_id, blacklisted, reason=reason, actor_id=actor_id
        )

    def is_globally_blacklisted(self, user_id: str) -> bool:
        return user_service.is_globally_blacklisted(self.engine, user_id)

    def set_tenant_blacklist(
        self, user_id: str, tenant_id: str, blacklisted: bool
    ) -> TenantUserRecord:
        self.registry.require_tenant(tenant_id)
        return user_service.set_tenant_blacklist(
            self.engine, self.leveling, user_id, tenant_id, blacklisted
        )

    def is_blacklisted(self, user_id: str, tenant_id: str) -> bool:
        self.registry.require_tenant(tenant_id)
        return user_service.is_blacklisted(self.engine, user_id, tenant_id)

    def increment_warnings(self, user_id: str, tenant_id: str) -> int:
        self.registry.require_tenant(tenant_id)
        return user_service.increment_warnings(self.engine, self.leveling, user_id, tenant_id)

    def get_warning_count(self, user_id: str, tenant_id: str) -> int:
        self.registry.require_tenant(tenant_id)
        return user_service.get_warning_count(self.engine, user_id, tenant_id)

    # -------------------------------------------------------------------
    # Leveling
    # -------------------------------------------------------------------
    def xp_for_level(self, level: int) -> int:
        return self.leveling.xp_for_level(level)

    def level_for_xp(self, xp: int) -> int:
        return self.leveling.level_for_xp(xp)

    # -------------------------------------------------------------------
    # Leaderboard
    # -------------------------------------------------------------------
    def get_leaderboard(
        self, tenant_id: str, page: int = 1, page_size: int | None = None
    ) -> LeaderboardPage:
        self.registry.require_tenant(tenant_id)
        size = page_size if page_size is not None else self.config.leaderboard.page_size
        return leaderboard_service.get_leaderboard(self.engine, tenant_id, page, size)

    def get_rank(self, user_id: str, tenant_id: str) -> int:
        self.registry.require_tenant(tenant_id)
        return leaderboard_service.get_rank(self.engine, self.leveling, user_id, tenant_id)

    # -------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------
    def get_setting(self, tenant_id: str, key: str, default: Any = None) -> Any:
        self.registry.require_tenant(tenant_id)
        return settings_service.get_setting(self.engine, tenant_id, key, default)

    def set_setting(self, tenant_id: str, key: str, value: Any) -> SettingResult:
        self.registry.require_tenant(tenant_id)
        return settings_service.set_setting(self.engine, tenant_id, key, value)

    def get_all_settings(self, tenant_id: str) -> dict[str, Any]:
        self.registry.require_tenant(tenant_id)
        return settings_service.get_all_settings(self.engine, tenant_id)

    def delete_setting(self, tenant_id: str, key: str) -> DeleteResult:
        self.registry.require_tenant(tenant_id)
        return settings_service.delete_setting(self.engine, tenant_id, key)

    def is_user_content_allowed(self, tenant_id: str, feature: str) -> bool:
        self.registry.require_tenant(tenant_id)
        return settings_service.is_user_content_allowed(self.engine, tenant_id, feature)

    # -------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------
    def get_statistic(self, key: str, default: Any = None) -> Any:
        return settings_service.get_statistic(self.engine, key, default)

    def set_statistic(self, key: str, value: Any) -> None:
        settings_service.set_statistic(self.engine, key, value)

    def increment_statistic(self, key: str, amount: int = 1) -> int:
        return settings_service.increment_statistic(self.engine, key, amount)

    # -------------------------------------------------------------------
    # Sacrifice
    # -------------------------------------------------------------------
    def sacrifice(self, user_id: str, tenant_id: str) -> SacrificeResult:
        self.registry.require_tenant(tenant_id)
        return sacrifice_service.sacrifice(
            self.engine,
            self.leveling,
            user_id,
            tenant_id,
            self.config.sacrifice.confirmation_timeout_seconds,
        )

    def is_eligible_for_sacrifice(self, user_id: str, tenant_id: str) -> bool:
        self.registry.require_tenant(tenant_id)
        return sacrifice_service.is_eligible_for_sacrifice(
            self.engine, self.leveling, user_id, tenant_id
        )

    def reset_sacrifice_pending(self, user_id: str, tenant_id: str) -> bool:
        self.registry.require_tenant(tenant_id)
        return sacrifice_service.reset_sacrifice_pending(self.engine, user_id, tenant_id)

    # -------------------------------------------------------------------
    # Banner / avatar
    # -------------------------------------------------------------------
    def get_banner(self, user_id: str, tenant_id: str, default: str | None = None) -> str | None:
        self.registry.require_tenant(tenant_id)
        return content_service.get_banner(self.engine, user_id, tenant_id, default)

    def set_banner(self, user_id: str, tenant_id: str, url: str | None) -> TenantUserRecord:
        self.registry.require_tenant(tenant_id)
        return content_service.set_banner(self.engine, self.leveling, user_id, tenant_id, url)

    def get_avatar(self, user_id: str, tenant_id: str, default: str | None = None) -> str | None:
        self.registry.require_tenant(tenant_id)
        return content_service.get_avatar(self.engine, user_id, tenant_id, default)

    def set_avatar(self, user_id: str, tenant_id: str, url: str | None) -> TenantUserRecord:
        self.registry.require_tenant(tenant_id)
        return content_service.set_avatar(self.engine, self.leveling, user_id, tenant_id, url)

    def resolve_content_url(self, user_id: str, tenant_id: str, kind: str) -> str | None:
        self.registry.require_tenant(tenant_id)
        return content_service.resolve_content_url(self.engine, user_id, tenant_id, kind)
