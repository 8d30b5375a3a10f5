"""Asset model - depreciable equipment installed at schools."""
import enum
import uuid

from sqlalchemy import Column, Date, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from cafm.database import Base
from cafm.models.base import TenantOwnedMixin, TimestampMixin, SoftDeleteMixin


class DepreciationMethod(str, enum.Enum):
    STRAIGHT_LINE = 'straight_line'
    DECLINING_BALANCE = 'declining_balance'


class AssetStatus(str, enum.Enum):
    ACTIVE = 'active'
    MAINTENANCE = 'maintenance'
    RETIRED = 'retired'
    DISPOSED = 'disposed'


class Asset(TenantOwnedMixin, TimestampMixin, SoftDeleteMixin, Base):
    """
    Asset.

    accumulated_depreciation and current_value are derived from the
    purchase inputs and kept current on every write.
    """

    __tablename__ = 'assets'
    __audited__ = True

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    asset_code = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    school_id = Column(Uuid, ForeignKey('schools.id'), nullable=True, index=True)
    status = Column(String(20), nullable=False, default=AssetStatus.ACTIVE.value)

    purchase_date = Column(Date, nullable=True)
    purchase_cost = Column(Numeric(12, 2), nullable=True)
    salvage_value = Column(Numeric(12, 2), nullable=True, default=0)
    depreciation_rate = Column(Numeric(5, 2), nullable=True)  # percent per year
    depreciation_method = Column(String(30), nullable=False, default=DepreciationMethod.STRAIGHT_LINE.value)

    # Derived
    accumulated_depreciation = Column(Numeric(12, 2), nullable=True)
    current_value = Column(Numeric(12, 2), nullable=True)

    version = Column(Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}

    school = relationship('School')

    def __repr__(self):
        return f"<Asset(id={self.id}, code='{self.asset_code}', current_value={self.current_value})>"
