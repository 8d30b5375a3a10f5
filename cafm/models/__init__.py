"""Models package - exports all SQLAlchemy models."""
# Tenancy
from cafm.models.base import TenantScopedMixin, TenantOwnedMixin, TimestampMixin, SoftDeleteMixin, Deletion
from cafm.models.company import Company, CompanyStatus, SubscriptionPlan, ACCESSIBLE_STATUSES

# Business Models
from cafm.models.user import User, UserType, UserStatus
from cafm.models.school import School
from cafm.models.report import Report, ReportStatus, ReportPriority
from cafm.models.asset import Asset, AssetStatus, DepreciationMethod
from cafm.models.work_order import WorkOrder, WorkOrderStatus
from cafm.models.work_order_task import WorkOrderTask
from cafm.models.inventory_item import InventoryItem
from cafm.models.inventory_transaction import InventoryTransaction, TransactionType, TransactionStatus

# Audit & history
from cafm.models.audit_log import AuditEntry, AuditArchive, AuditOperation
from cafm.models.entity_history import EntityVersion

__all__ = [
    # Tenancy
    'TenantScopedMixin', 'TenantOwnedMixin', 'TimestampMixin', 'SoftDeleteMixin', 'Deletion',
    'Company', 'CompanyStatus', 'SubscriptionPlan', 'ACCESSIBLE_STATUSES',
    # Business
    'User', 'UserType', 'UserStatus', 'School', 'Report', 'ReportStatus', 'ReportPriority',
    'Asset', 'AssetStatus', 'DepreciationMethod', 'WorkOrder', 'WorkOrderStatus', 'WorkOrderTask',
    'InventoryItem', 'InventoryTransaction', 'TransactionType', 'TransactionStatus',
    # Audit & history
    'AuditEntry', 'AuditArchive', 'AuditOperation', 'EntityVersion',
]
