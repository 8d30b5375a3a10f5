"""Inventory transaction model."""
import enum
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from cafm.database import Base
from cafm.models.base import TenantOwnedMixin, TimestampMixin, SoftDeleteMixin


class TransactionType(str, enum.Enum):
    RECEIPT = 'receipt'
    ISSUE = 'issue'
    TRANSFER = 'transfer'
    ADJUSTMENT = 'adjustment'
    RETURN = 'return'
    DISPOSAL = 'disposal'
    DAMAGE = 'damage'
    STOCK_CHECK = 'stock_check'


class TransactionStatus(str, enum.Enum):
    PENDING = 'pending'
    PROCESSED = 'processed'
    CANCELLED = 'cancelled'


class InventoryTransaction(TenantOwnedMixin, TimestampMixin, SoftDeleteMixin, Base):
    """Stock movement; applied to its item when processed."""

    __tablename__ = 'inventory_transactions'
    __audited__ = True

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_number = Column(String(50), nullable=True)
    inventory_item_id = Column(Uuid, ForeignKey('inventory_items.id'), nullable=False, index=True)
    transaction_type = Column(String(20), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False)
    unit_cost = Column(Numeric(12, 2), nullable=True)
    total_cost = Column(Numeric(14, 2), nullable=True)
    status = Column(String(20), nullable=False, default=TransactionStatus.PENDING.value)
    notes = Column(Text, nullable=True)

    stock_before = Column(Numeric(12, 3), nullable=True)
    stock_after = Column(Numeric(12, 3), nullable=True)
    cost_impact = Column(Numeric(14, 2), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}

    item = relationship('InventoryItem')

    def __repr__(self):
        return f"<InventoryTransaction(id={self.id}, type='{self.transaction_type}', qty={self.quantity})>"
