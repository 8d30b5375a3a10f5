"""Historical versions of temporally tracked rows."""
import uuid

from sqlalchemy import Column, DateTime, Integer, String, Text, Uuid, UniqueConstraint, Index

from cafm.database import Base
from cafm.models.base import TenantScopedMixin
from cafm.models.audit_log import JSONType


class EntityVersion(TenantScopedMixin, Base):
    """
    Snapshot of a row's tracked fields, valid over [valid_from, valid_to).

    Versions of a record are numbered 1, 2, 3... with no gaps and are
    never modified once written.
    """

    __tablename__ = 'entity_history'
    __immutable__ = True

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    table_name = Column(String(100), nullable=False)
    record_id = Column(Uuid, nullable=False)
    version_number = Column(Integer, nullable=False)
    snapshot = Column(JSONType, nullable=False)
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_to = Column(DateTime(timezone=True), nullable=False)
    modified_by = Column(Uuid, nullable=True)
    modification_reason = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint('table_name', 'record_id', 'version_number', name='uq_entity_history_version'),
        Index('ix_entity_history_record', 'table_name', 'record_id'),
    )

    def __repr__(self):
        return f"<EntityVersion({self.table_name}:{self.record_id} v{self.version_number})>"
