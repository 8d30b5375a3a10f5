"""Work order model."""
import enum
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from cafm.database import Base
from cafm.models.base import TenantOwnedMixin, TimestampMixin, SoftDeleteMixin


class WorkOrderStatus(str, enum.Enum):
    PENDING = 'pending'
    ASSIGNED = 'assigned'
    IN_PROGRESS = 'in_progress'
    ON_HOLD = 'on_hold'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    VERIFIED = 'verified'


# Statuses that task progress never moves a work order out of
CLOSED_STATUSES = (
    WorkOrderStatus.COMPLETED.value,
    WorkOrderStatus.CANCELLED.value,
    WorkOrderStatus.VERIFIED.value,
)


class WorkOrder(TenantOwnedMixin, TimestampMixin, SoftDeleteMixin, Base):
    """Work order; completion_percentage is derived from its tasks."""

    __tablename__ = 'work_orders'
    __audited__ = True

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    work_order_number = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=WorkOrderStatus.PENDING.value)
    priority = Column(String(20), nullable=False, default='medium')
    school_id = Column(Uuid, ForeignKey('schools.id'), nullable=True, index=True)
    asset_id = Column(Uuid, ForeignKey('assets.id'), nullable=True)
    report_id = Column(Uuid, ForeignKey('reports.id'), nullable=True)
    assigned_to_id = Column(Uuid, ForeignKey('users.id'), nullable=True)
    scheduled_start = Column(DateTime(timezone=True), nullable=True)

    # Derived
    completion_percentage = Column(Integer, nullable=False, default=0)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}

    tasks = relationship('WorkOrderTask', back_populates='work_order')

    def __repr__(self):
        return f"<WorkOrder(id={self.id}, number='{self.work_order_number}', progress={self.completion_percentage})>"
