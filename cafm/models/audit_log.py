"""Audit log models: append-only change records and their archive."""
import enum
import uuid

from sqlalchemy import Column, DateTime, Enum, Index, JSON, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from cafm.database import Base
from cafm.models.base import TenantScopedMixin
from cafm.utils.serialization import utcnow

JSONType = JSON().with_variant(JSONB(), 'postgresql')


class AuditOperation(enum.Enum):
    """Kinds of audited operations."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    TRUNCATE = "TRUNCATE"
    PRIVILEGED_ACCESS = "PRIVILEGED_ACCESS"


class AuditColumnsMixin(TenantScopedMixin):
    """Columns shared by the live audit log and its archive."""

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    table_name = Column(String(100), nullable=False)
    record_id = Column(Uuid, nullable=True)
    operation = Column(Enum(AuditOperation, name='audit_operation'), nullable=False)
    user_id = Column(Uuid, nullable=True)
    operation_timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    old_values = Column(JSONType, nullable=True)
    new_values = Column(JSONType, nullable=True)
    changed_fields = Column(JSONType, nullable=True)
    request_id = Column(String(100), nullable=True)
    correlation_id = Column(String(100), nullable=True)
    request_metadata = Column('metadata', JSONType, nullable=True)

    __immutable__ = True


class AuditEntry(AuditColumnsMixin, Base):
    """One audited change. Never updated or deleted by normal writes."""

    __tablename__ = 'audit_log'

    __table_args__ = (
        Index('ix_audit_log_table_record', 'table_name', 'record_id'),
        Index('ix_audit_log_user_ts', 'user_id', 'operation_timestamp'),
        Index('ix_audit_log_ts', 'operation_timestamp'),
    )

    def __repr__(self):
        return f"<AuditEntry({self.operation}, {self.table_name}:{self.record_id})>"


class AuditArchive(AuditColumnsMixin, Base):
    """Audit entries moved out of the live log by retention."""

    __tablename__ = 'audit_log_archive'

    def __repr__(self):
        return f"<AuditArchive({self.operation}, {self.table_name}:{self.record_id})>"
