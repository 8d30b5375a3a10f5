"""User model - people working for a company."""
import enum
import uuid

from sqlalchemy import Column, Boolean, DateTime, Enum, Integer, String, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship

from cafm.database import Base
from cafm.models.base import TenantOwnedMixin, TimestampMixin, SoftDeleteMixin


class UserType(enum.Enum):
    """Role of a user inside the company."""
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    TECHNICIAN = "technician"
    VIEWER = "viewer"


class UserStatus(enum.Enum):
    """Account status."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING_VERIFICATION = "pending_verification"
    LOCKED = "locked"


class User(TenantOwnedMixin, TimestampMixin, SoftDeleteMixin, Base):
    """User account, unique by email within a company."""

    __tablename__ = 'users'
    __audited__ = True
    # last_login_at is login bookkeeping: neither audited nor versioned
    __audit_exclude__ = ('last_login_at',)
    __history_fields__ = (
        'email', 'username', 'first_name', 'last_name', 'phone', 'employee_id',
        'user_type', 'status', 'department', 'position', 'is_active', 'is_locked',
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False)
    username = Column(String(100), nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(50), nullable=True)
    employee_id = Column(String(50), nullable=True)
    user_type = Column(Enum(UserType, name='user_type'), nullable=False, default=UserType.VIEWER)
    status = Column(Enum(UserStatus, name='user_status'), nullable=False, default=UserStatus.PENDING_VERIFICATION)
    department = Column(String(100), nullable=True)
    position = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_locked = Column(Boolean, nullable=False, default=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}

    __table_args__ = (
        UniqueConstraint('company_id', 'email', name='uq_users_company_email'),
    )

    company = relationship('Company')

    @property
    def full_name(self):
        return ' '.join(p for p in (self.first_name, self.last_name) if p) or self.email

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', type={self.user_type})>"
