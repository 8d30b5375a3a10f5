"""Company model - the tenant boundary of the platform."""
import enum
import uuid

from sqlalchemy import Column, Boolean, Enum, Integer, String, Text, Uuid, CheckConstraint

from cafm.database import Base
from cafm.models.base import TimestampMixin, SoftDeleteMixin


class CompanyStatus(enum.Enum):
    """Lifecycle status of a company."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    TRIAL = "trial"
    PENDING_SETUP = "pending_setup"


class SubscriptionPlan(enum.Enum):
    """Commercial plan of a company."""
    FREE = "free"
    BASIC = "basic"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


# Statuses under which a company's data may be accessed
ACCESSIBLE_STATUSES = (CompanyStatus.ACTIVE, CompanyStatus.TRIAL)


class Company(TimestampMixin, SoftDeleteMixin, Base):
    """Company (tenant). Every tenant-owned row references one."""

    __tablename__ = 'companies'
    __audited__ = True

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    display_name = Column(String(255), nullable=True)
    domain = Column(String(255), nullable=True, unique=True)
    subdomain = Column(String(100), nullable=True, unique=True)
    contact_email = Column(String(255), nullable=True)
    contact_phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)

    status = Column(Enum(CompanyStatus, name='company_status'), nullable=False, default=CompanyStatus.PENDING_SETUP)
    subscription_plan = Column(Enum(SubscriptionPlan, name='subscription_plan'), nullable=False, default=SubscriptionPlan.FREE)
    is_active = Column(Boolean, nullable=False, default=True)

    # Resource quotas
    max_users = Column(Integer, nullable=False, default=10)
    max_schools = Column(Integer, nullable=False, default=5)
    max_supervisors = Column(Integer, nullable=False, default=3)
    max_technicians = Column(Integer, nullable=False, default=15)
    max_storage_gb = Column(Integer, nullable=False, default=5)

    __table_args__ = (
        CheckConstraint('max_users > 0', name='ck_companies_max_users'),
        CheckConstraint('max_schools > 0', name='ck_companies_max_schools'),
        CheckConstraint('max_supervisors > 0', name='ck_companies_max_supervisors'),
        CheckConstraint('max_technicians > 0', name='ck_companies_max_technicians'),
        CheckConstraint('max_storage_gb > 0', name='ck_companies_max_storage_gb'),
    )

    @property
    def is_accessible(self):
        """Exists, not deleted, active, and in an accessible status."""
        return (
            self.deleted_at is None
            and bool(self.is_active)
            and self.status in ACCESSIBLE_STATUSES
        )

    def __repr__(self):
        return f"<Company(id={self.id}, name='{self.name}', status={self.status})>"
