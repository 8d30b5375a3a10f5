"""Report model - maintenance issues reported for a school."""
import enum
import uuid

from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from cafm.database import Base
from cafm.models.base import TenantOwnedMixin, TimestampMixin, SoftDeleteMixin


class ReportStatus(str, enum.Enum):
    """Workflow status of a report."""
    DRAFT = 'draft'
    SUBMITTED = 'submitted'
    IN_REVIEW = 'in_review'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class ReportPriority(str, enum.Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    URGENT = 'urgent'


class Report(TenantOwnedMixin, TimestampMixin, SoftDeleteMixin, Base):
    """Maintenance report."""

    __tablename__ = 'reports'
    __audited__ = True
    __history_fields__ = (
        'report_number', 'school_id', 'supervisor_id', 'assigned_to_id',
        'title', 'description', 'category', 'status', 'priority',
        'reported_date', 'scheduled_date', 'completed_date', 'work_description',
        'labor_hours', 'estimated_cost', 'actual_cost', 'is_urgent',
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    report_number = Column(String(50), nullable=True)
    school_id = Column(Uuid, ForeignKey('schools.id'), nullable=True, index=True)
    supervisor_id = Column(Uuid, ForeignKey('users.id'), nullable=True)
    assigned_to_id = Column(Uuid, ForeignKey('users.id'), nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default=ReportStatus.DRAFT.value)
    priority = Column(String(20), nullable=False, default=ReportPriority.MEDIUM.value)
    reported_date = Column(Date, nullable=True)
    scheduled_date = Column(Date, nullable=True)
    completed_date = Column(Date, nullable=True)
    work_description = Column(Text, nullable=True)
    labor_hours = Column(Numeric(6, 2), nullable=True)
    estimated_cost = Column(Numeric(12, 2), nullable=True)
    actual_cost = Column(Numeric(12, 2), nullable=True)
    is_urgent = Column(Boolean, nullable=False, default=False)

    version = Column(Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}

    school = relationship('School', back_populates='reports')

    def __repr__(self):
        return f"<Report(id={self.id}, title='{self.title}', status='{self.status}')>"
