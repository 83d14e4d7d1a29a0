"""
levelstore.services.content_service — Banner & Avatar Accessors
================================================================

Per-user profile content URLs and the tenant policy that decides which
URL a profile card should actually show.  Reads are advisory and degrade
to the caller's default on transient storage failures.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from levelstore.errors import ConflictRetryable, StorageUnavailable
from levelstore.services import settings_service, user_service

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from levelstore.engine.leveling import LevelingEngine
    from levelstore.services.user_service import TenantUserRecord

logger = logging.getLogger(__name__)


def _read_url(
    engine: Engine, user_id: str, tenant_id: str, kind: str, default: str | None
) -> str | None:
    try:
        url = user_service.get_content_url(engine, user_id, tenant_id, kind)
    except (StorageUnavailable, ConflictRetryable):
        logger.warning(
            "Error reading %s for user %s in %s — using default",
            kind, user_id, tenant_id, exc_info=True,
        )
        return default
    return url if url is not None else default


def get_banner(
    engine: Engine, user_id: str, tenant_id: str, default: str | None = None
) -> str | None:
    return _read_url(engine, user_id, tenant_id, "banner", default)


def set_banner(
    engine: Engine, leveling: LevelingEngine, user_id: str, tenant_id: str, url: str | None
) -> TenantUserRecord:
    return user_service.set_content_url(engine, leveling, user_id, tenant_id, "banner", url)


def get_avatar(
    engine: Engine, user_id: str, tenant_id: str, default: str | None = None
) -> str | None:
    return _read_url(engine, user_id, tenant_id, "avatar", default)


def set_avatar(
    engine: Engine, leveling: LevelingEngine, user_id: str, tenant_id: str, url: str | None
) -> TenantUserRecord:
    return user_service.set_content_url(engine, leveling, user_id, tenant_id, "avatar", url)


def resolve_content_url(engine: Engine, user_id: str, tenant_id: str, kind: str) -> str | None:
    """URL to display for *kind* on this user's card.

    Order: the user's own upload (if the tenant allows member content),
    then the tenant default, then ``None``.
    """
    own = _read_url(engine, user_id, tenant_id, kind, None)
    if own and settings_service.is_user_content_allowed(engine, tenant_id, kind):
        return own
    return settings_service.get_default_content_url(engine, tenant_id, kind)
