"""Tenant-scoped repository for business entities."""
import logging
from datetime import timedelta

from sqlalchemy import select

from cafm.database import translate_errors
from cafm.exceptions import BusinessLogicError, PrivilegedOperationRequired, StaleWrite, TenantViolation
from cafm.models import SoftDeleteMixin
from cafm.services.tenant_context import get_context, is_privileged
from cafm.utils.serialization import as_uuid, utcnow

logger = logging.getLogger(__name__)

# Never assignable through update()
PROTECTED_FIELDS = frozenset({
    'id', 'company_id', 'version', 'created_at', 'created_by', 'updated_at', 'updated_by',
    'deleted_at', 'deleted_by', 'deletion_reason',
})


class TenantRepository:
    """
    CRUD over one model for the session's active tenant.

    All reads go through ``select()`` so the tenant criteria apply even when
    the row is already in the identity map.
    """

    def __init__(self, session, model):
        self.session = session
        self.model = model

    @property
    def name(self):
        return self.model.__tablename__

    def _select(self, include_deleted=False):
        stmt = select(self.model)
        if include_deleted:
            stmt = stmt.execution_options(include_deleted=True)
        return stmt

    def get(self, record_id, include_deleted=False, refresh=False):
        """Row by id, or None if missing, soft-deleted or another tenant's."""
        try:
            record_id = as_uuid(record_id)
        except ValueError:
            return None
        stmt = self._select(include_deleted).where(self.model.id == record_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def require(self, record_id, include_deleted=False, refresh=False):
        """
        Row by id.

        Raises:
            TenantViolation: If the row is not visible to the active tenant
        """
        obj = self.get(record_id, include_deleted=include_deleted, refresh=refresh)
        if obj is None:
            raise TenantViolation(f"{self.name} {record_id} not found")
        return obj

    def list(self, include_deleted=False, **filters):
        stmt = self._select(include_deleted).filter_by(**filters)
        if hasattr(self.model, 'created_at'):
            stmt = stmt.order_by(self.model.created_at)
        return self.session.execute(stmt).scalars().all()

    def create(self, **values):
        """
        Create a row for the active tenant (quota checked for users/schools).

        Raises:
            QuotaExceededError: If the tenant is at its quota
            TenantViolation: If company_id names another tenant
        """
        from cafm.services import company_service

        company_service.enforce_quota_for(self.session, self.model, values)
        obj = self.model(**values)
        with translate_errors(self.session):
            self.session.add(obj)
            self.session.flush()
        logger.info(f"Created {self.name} {obj.id}")
        return obj

    def update(self, record_id, expected_version=None, **changes):
        """
        Apply changes to a row.

        Args:
            record_id: Row id
            expected_version: Version the caller read; mismatch -> StaleWrite
            **changes: Column values to assign

        Raises:
            TenantViolation: Row not visible to the active tenant
            StaleWrite: Row was modified since it was read
            BusinessLogicError: A protected column was assigned
        """
        protected = PROTECTED_FIELDS.intersection(changes)
        if protected:
            raise BusinessLogicError(f"Cannot assign protected fields: {', '.join(sorted(protected))}")

        obj = self.require(record_id, refresh=expected_version is not None)
        if expected_version is not None and obj.version != expected_version:
            logger.warning(
                f"[TENANT] Stale write on {self.name} {obj.id}: "
                f"expected v{expected_version}, found v{obj.version}"
            )
            raise StaleWrite(payload={'expected_version': expected_version, 'current_version': obj.version})

        for key, value in changes.items():
            if not hasattr(self.model, key):
                raise BusinessLogicError(f"{self.name} has no field {key}")
            setattr(obj, key, value)

        with translate_errors(self.session):
            self.session.flush()
        return obj

    def soft_delete(self, record_id, reason=None):
        """Mark a row deleted; it disappears from normal reads."""
        self._require_soft_delete()
        obj = self.require(record_id)
        ctx = get_context(self.session)
        obj.deleted_at = utcnow()
        obj.deleted_by = ctx.user_id if ctx else None
        obj.deletion_reason = reason
        with translate_errors(self.session):
            self.session.flush()
        logger.info(f"Soft-deleted {self.name} {obj.id}: {reason}")
        return obj

    def restore(self, record_id):
        """Bring a soft-deleted row back."""
        self._require_soft_delete()
        obj = self.require(record_id, include_deleted=True)
        if obj.deleted_at is None:
            raise BusinessLogicError(f"{self.name} {record_id} is not deleted")
        obj.deleted_at = None
        obj.deleted_by = None
        obj.deletion_reason = None
        with translate_errors(self.session):
            self.session.flush()
        logger.info(f"Restored {self.name} {obj.id}")
        return obj

    def purge_deleted(self, older_than_days=90):
        """
        Physically delete rows soft-deleted more than N days ago.

        Each delete is audited. Requires a privileged scope.

        Returns:
            Number of rows purged
        """
        self._require_soft_delete()
        if not is_privileged(self.session):
            raise PrivilegedOperationRequired(f"Purging {self.name} requires a privileged scope")

        cutoff = utcnow() - timedelta(days=older_than_days)
        stmt = (
            self._select(include_deleted=True)
            .where(self.model.deleted_at.is_not(None), self.model.deleted_at < cutoff)
        )
        rows = self.session.execute(stmt).scalars().all()
        for row in rows:
            self.session.delete(row)
        with translate_errors(self.session):
            self.session.flush()
        logger.info(f"Purged {len(rows)} {self.name} rows deleted before {cutoff:%Y-%m-%d}")
        return len(rows)

    def _require_soft_delete(self):
        if not issubclass(self.model, SoftDeleteMixin):
            raise BusinessLogicError(f"{self.name} does not support soft delete")
