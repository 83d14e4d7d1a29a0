"""
levelstore.errors — Store Error Taxonomy
=========================================

Every failure the store reports upward is one of these.  Contract
violations (``InvalidTenantId``, ``SchemaNotReady``) mean the caller broke
the ensure-then-use rule and are never defaulted away.  Storage failures
(``StorageUnavailable``, ``ConflictRetryable``) come from the backend; only
advisory reads swallow them.
"""

from __future__ import annotations


class LevelStoreError(Exception):
    """Base class for all levelstore errors."""

    is_retryable: bool = False


class InvalidTenantId(LevelStoreError):
    """The tenant identifier does not match the accepted format."""

    def __init__(self, tenant_id: object) -> None:
        super().__init__(f"Invalid tenant id: {tenant_id!r}")
        self.tenant_id = tenant_id


class SchemaNotReady(LevelStoreError):
    """A data operation targeted a tenant that was never provisioned."""

    def __init__(self, tenant_id: str) -> None:
        super().__init__(
            f"Tenant {tenant_id!r} is not provisioned; call ensure_tenant() first"
        )
        self.tenant_id = tenant_id


class StorageUnavailable(LevelStoreError):
    """The backing database is unreachable, unreadable, or corrupt."""


class ConflictRetryable(LevelStoreError):
    """The write lock could not be acquired in time.  Safe to retry."""

    is_retryable = True


class NotFound(LevelStoreError):
    """A requested record does not exist."""
