"""
levelstore.constants — Shared Constants & Helpers
==================================================

Single source of truth for tenant identifiers, reserved keys, and the
content kinds the banner/avatar accessors understand.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------
GLOBAL_TENANT = "global"

# Platform snowflakes: decimal digits only.
TENANT_ID_PATTERN = re.compile(r"^[0-9]{1,20}$")


def is_valid_tenant_id(tenant_id: object) -> bool:
    """True for the global sentinel or a well-formed tenant snowflake."""
    if not isinstance(tenant_id, str):
        return False
    return tenant_id == GLOBAL_TENANT or TENANT_ID_PATTERN.fullmatch(tenant_id) is not None


# ---------------------------------------------------------------------------
# User-generated content
# ---------------------------------------------------------------------------
CONTENT_KINDS: frozenset[str] = frozenset({"banner", "avatar"})

# ---------------------------------------------------------------------------
# Statistics keys
# ---------------------------------------------------------------------------
LEGACY_MIGRATION_MARKER = "migration.legacy_v1.completed_at"
STAT_TOTAL_XP_AWARDED = "xp.total_awarded"
STAT_TOTAL_SACRIFICES = "sacrifice.total_completed"

# Suffix appended to legacy tables once their data has been carried over.
LEGACY_TABLE_SUFFIX = "_legacy_v1"
