"""Work order task model."""
import uuid

from sqlalchemy import Column, Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from cafm.database import Base
from cafm.models.base import TenantOwnedMixin, TimestampMixin, SoftDeleteMixin


class WorkOrderTask(TenantOwnedMixin, TimestampMixin, SoftDeleteMixin, Base):
    """Checklist item of a work order; done once completed_at is set."""

    __tablename__ = 'work_order_tasks'
    __audited__ = True

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    work_order_id = Column(Uuid, ForeignKey('work_orders.id'), nullable=False, index=True)
    task_number = Column(Integer, nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_mandatory = Column(Boolean, nullable=False, default=True)
    estimated_hours = Column(Numeric(6, 2), nullable=True)
    actual_hours = Column(Numeric(6, 2), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by = Column(Uuid, nullable=True)

    version = Column(Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}

    work_order = relationship('WorkOrder', back_populates='tasks')

    @property
    def is_completed(self):
        return self.completed_at is not None

    def __repr__(self):
        return f"<WorkOrderTask(id={self.id}, title='{self.title}', done={self.is_completed})>"
