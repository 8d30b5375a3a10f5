"""Inventory item model."""
import uuid

from sqlalchemy import Column, Numeric, String, Text, Integer, Uuid, UniqueConstraint

from cafm.database import Base
from cafm.models.base import TenantOwnedMixin, TimestampMixin, SoftDeleteMixin


class InventoryItem(TenantOwnedMixin, TimestampMixin, SoftDeleteMixin, Base):
    """
    Stocked spare part or consumable.

    available_stock and total_inventory_value are derived.
    """

    __tablename__ = 'inventory_items'
    __audited__ = True

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    item_code = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    unit = Column(String(20), nullable=False, default='unit')

    current_stock = Column(Numeric(12, 3), nullable=False, default=0)
    reserved_stock = Column(Numeric(12, 3), nullable=False, default=0)
    minimum_stock = Column(Numeric(12, 3), nullable=True)
    average_cost = Column(Numeric(12, 2), nullable=True, default=0)
    last_purchase_cost = Column(Numeric(12, 2), nullable=True)

    # Derived
    available_stock = Column(Numeric(12, 3), nullable=True)
    total_inventory_value = Column(Numeric(14, 2), nullable=True)

    version = Column(Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}

    __table_args__ = (
        UniqueConstraint('company_id', 'item_code', name='uq_inventory_items_company_code'),
    )

    @property
    def is_low_stock(self):
        if self.minimum_stock is None:
            return False
        return (self.current_stock or 0) <= self.minimum_stock

    def __repr__(self):
        return f"<InventoryItem(id={self.id}, code='{self.item_code}', stock={self.current_stock})>"
