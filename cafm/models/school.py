"""School model - a facility maintained by a company."""
import uuid

from sqlalchemy import Column, Boolean, Integer, String, Text, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship

from cafm.database import Base
from cafm.models.base import TenantOwnedMixin, TimestampMixin, SoftDeleteMixin


class School(TenantOwnedMixin, TimestampMixin, SoftDeleteMixin, Base):
    """School (site)."""

    __tablename__ = 'schools'
    __audited__ = True
    __history_fields__ = (
        'code', 'name', 'name_ar', 'type', 'gender', 'address', 'city', 'district',
        'phone', 'email', 'principal_name', 'is_active', 'student_count', 'staff_count',
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    name_ar = Column(String(255), nullable=True)
    type = Column(String(50), nullable=True)
    gender = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    district = Column(String(100), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    principal_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    student_count = Column(Integer, nullable=True)
    staff_count = Column(Integer, nullable=True)

    version = Column(Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}

    __table_args__ = (
        UniqueConstraint('company_id', 'code', name='uq_schools_company_code'),
    )

    reports = relationship('Report', back_populates='school')

    def __repr__(self):
        return f"<School(id={self.id}, code='{self.code}', name='{self.name}')>"
