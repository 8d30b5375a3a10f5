"""Column mixins shared by tenant-owned entities."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import declared_attr

from cafm.utils.serialization import utcnow


class TenantScopedMixin:
    """
    Rows partitioned by company.

    Every mapped subclass is filtered to the active tenant on read.
    """

    @declared_attr
    def company_id(cls):
        return Column(Uuid, nullable=False, index=True)


class TenantOwnedMixin(TenantScopedMixin):
    """Business rows: tenant scoped, stamped and validated on write."""

    @declared_attr
    def company_id(cls):
        return Column(Uuid, ForeignKey('companies.id'), nullable=False, index=True)


class TimestampMixin:
    """created/updated bookkeeping; set by the flush pipeline."""

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    created_by = Column(Uuid, nullable=True)
    updated_by = Column(Uuid, nullable=True)


@dataclass(frozen=True)
class Deletion:
    """Soft-deletion marker of a row."""
    at: datetime
    by: Optional[uuid.UUID]
    reason: Optional[str]


class SoftDeleteMixin:
    """Rows hidden from normal reads once deleted_at is set."""

    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)
    deleted_by = Column(Uuid, nullable=True)
    deletion_reason = Column(Text, nullable=True)

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @property
    def deletion(self):
        """Deletion marker, or None while the row is active."""
        if self.deleted_at is None:
            return None
        return Deletion(self.deleted_at, self.deleted_by, self.deletion_reason)
