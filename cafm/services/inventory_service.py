"""
Inventory service - stock movements for spare parts and consumables.

Transactions are recorded pending and applied to their item when
processed. The item's available stock and inventory value are derived
fields and follow automatically on flush.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import func, select

from cafm.database import translate_errors
from cafm.exceptions import BusinessLogicError, InsufficientStockError
from cafm.models import InventoryItem, InventoryTransaction, TransactionStatus, TransactionType
from cafm.services.repository import TenantRepository
from cafm.utils.serialization import utcnow

logger = logging.getLogger(__name__)

# Kinds that take stock out; stock never goes below zero
OUTBOUND_TYPES = {
    TransactionType.ISSUE.value,
    TransactionType.TRANSFER.value,
    TransactionType.DISPOSAL.value,
    TransactionType.DAMAGE.value,
}

NUMBER_PREFIXES = {
    TransactionType.RECEIPT.value: 'RCV',
    TransactionType.ISSUE.value: 'ISS',
    TransactionType.TRANSFER.value: 'TRF',
    TransactionType.ADJUSTMENT.value: 'ADJ',
    TransactionType.RETURN.value: 'RET',
    TransactionType.DISPOSAL.value: 'DSP',
    TransactionType.DAMAGE.value: 'DMG',
    TransactionType.STOCK_CHECK.value: 'CHK',
}


def _decimal(value, default='0'):
    return Decimal(str(value)) if value is not None else Decimal(default)


def _type_value(transaction_type):
    value = transaction_type.value if isinstance(transaction_type, TransactionType) else str(transaction_type)
    if value not in NUMBER_PREFIXES:
        raise BusinessLogicError(f"Unknown transaction type: {transaction_type}")
    return value


def _next_transaction_number(session, transaction_type):
    prefix = f"{NUMBER_PREFIXES[transaction_type]}-{utcnow():%Y%m%d}-"
    count = session.execute(
        select(func.count())
        .select_from(InventoryTransaction)
        .where(InventoryTransaction.transaction_number.like(f"{prefix}%"))
        .execution_options(include_deleted=True)
    ).scalar()
    return f"{prefix}{count + 1:04d}"


def record_transaction(session, item_id, transaction_type, quantity, unit_cost=None,
                       notes: Optional[str] = None, process: bool = True):
    """
    Record a stock movement, optionally applying it immediately.

    Args:
        session: Database session
        item_id: Inventory item id
        transaction_type: TransactionType (or its value)
        quantity: Quantity moved; for STOCK_CHECK the counted quantity,
            for ADJUSTMENT a signed delta
        unit_cost: Unit cost (receipts)
        notes: Free text
        process: Apply to the item right away

    Returns:
        The InventoryTransaction
    """
    kind = _type_value(transaction_type)
    quantity = _decimal(quantity)
    if kind != TransactionType.ADJUSTMENT.value and quantity < 0:
        raise BusinessLogicError("Quantity must not be negative")

    item = TenantRepository(session, InventoryItem).require(item_id)
    transaction = InventoryTransaction(
        transaction_number=_next_transaction_number(session, kind),
        inventory_item_id=item.id,
        transaction_type=kind,
        quantity=quantity,
        unit_cost=_decimal(unit_cost) if unit_cost is not None else None,
        total_cost=(quantity * _decimal(unit_cost)).quantize(Decimal('0.01')) if unit_cost is not None else None,
        status=TransactionStatus.PENDING.value,
        notes=notes,
    )
    with translate_errors(session):
        session.add(transaction)
        session.flush()

    if process:
        process_transaction(session, transaction)
    return transaction


def process_transaction(session, transaction):
    """
    Apply a pending transaction to its item's stock.

    RECEIPT and RETURN add, outbound kinds subtract (floored at 0),
    ADJUSTMENT adds a signed delta, STOCK_CHECK sets the counted quantity.
    Receipts with a unit cost re-weight the item's average cost.

    Args:
        session: Database session
        transaction: InventoryTransaction or its id

    Returns:
        The processed InventoryTransaction

    Raises:
        BusinessLogicError: If the transaction is not pending
    """
    if not isinstance(transaction, InventoryTransaction):
        transaction = TenantRepository(session, InventoryTransaction).require(transaction)
    if transaction.status != TransactionStatus.PENDING.value:
        raise BusinessLogicError(f"Transaction {transaction.transaction_number} is already {transaction.status}")

    item = session.execute(
        select(InventoryItem)
        .where(InventoryItem.id == transaction.inventory_item_id)
        .with_for_update()
    ).scalar_one_or_none()
    if item is None:
        raise BusinessLogicError("Inventory item not found for transaction")

    kind = transaction.transaction_type
    qty = _decimal(transaction.quantity)
    before = _decimal(item.current_stock)
    average = _decimal(item.average_cost)

    if kind == TransactionType.RECEIPT.value:
        after = before + qty
        if transaction.unit_cost is not None and after > 0:
            unit_cost = _decimal(transaction.unit_cost)
            average = ((before * average + qty * unit_cost) / after).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
            item.last_purchase_cost = unit_cost
    elif kind == TransactionType.RETURN.value:
        after = before + qty
    elif kind in OUTBOUND_TYPES:
        after = max(Decimal(0), before - qty)
    elif kind == TransactionType.ADJUSTMENT.value:
        after = max(Decimal(0), before + qty)
    elif kind == TransactionType.STOCK_CHECK.value:
        after = qty
    else:
        raise BusinessLogicError(f"Unknown transaction type: {kind}")

    item.current_stock = after
    item.average_cost = average

    transaction.stock_before = before
    transaction.stock_after = after
    transaction.cost_impact = ((after - before) * average).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    transaction.status = TransactionStatus.PROCESSED.value
    transaction.processed_at = utcnow()

    with translate_errors(session):
        session.flush()
    logger.info(
        f"Processed {kind} {transaction.transaction_number}: "
        f"{item.item_code} stock {before} -> {after}"
    )
    return transaction


def reserve_stock(session, item_id, quantity):
    """
    Reserve stock for a work order.

    Raises:
        InsufficientStockError: If less than ``quantity`` is available
    """
    quantity = _decimal(quantity)
    if quantity <= 0:
        raise BusinessLogicError("Quantity must be greater than 0")

    item = TenantRepository(session, InventoryItem).require(item_id)
    available = max(Decimal(0), _decimal(item.current_stock) - _decimal(item.reserved_stock))
    if quantity > available:
        raise InsufficientStockError(item.name, quantity, available)

    item.reserved_stock = _decimal(item.reserved_stock) + quantity
    with translate_errors(session):
        session.flush()
    return item


def release_stock(session, item_id, quantity):
    """Release a reservation (never below zero)."""
    quantity = _decimal(quantity)
    item = TenantRepository(session, InventoryItem).require(item_id)
    item.reserved_stock = max(Decimal(0), _decimal(item.reserved_stock) - quantity)
    with translate_errors(session):
        session.flush()
    return item
