"""
Derived field recalculation.

Derived values (asset depreciation, inventory availability and value,
work order progress) are declared once in a registry and recomputed
inside the flush pipeline whenever one of their inputs changes, so the
stored value never disagrees with its inputs at commit.

A recomputation that cannot run (missing or invalid inputs) is logged as
a warning and leaves the stored value untouched; the surrounding write
still commits.
"""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Callable, Optional, Tuple

from sqlalchemy import inspect, select

from cafm.exceptions import RecalculationDegraded
from cafm.models import (
    Asset, DepreciationMethod, InventoryItem, WorkOrder, WorkOrderTask, WorkOrderStatus,
)
from cafm.models.work_order import CLOSED_STATUSES
from cafm.utils.serialization import utcnow

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
MILLI = Decimal('0.001')


@dataclass(frozen=True)
class DerivedField:
    """
    Registry entry for one group of derived columns.

    Args:
        name: Identifier used in logs
        model: Class owning the derived columns
        targets: Derived column names
        inputs: Owner columns whose change forces a recompute
        compute: fn(session, owner) -> {target: value}
        source_model: Related class whose rows are also inputs
        source_inputs: Source columns whose change forces a recompute
        resolve_owners: fn(session, source) -> owners to recompute
    """
    name: str
    model: type
    targets: Tuple[str, ...]
    inputs: Tuple[str, ...]
    compute: Callable
    source_model: Optional[type] = None
    source_inputs: Tuple[str, ...] = ()
    resolve_owners: Optional[Callable] = None


REGISTRY = []


def register(derived):
    REGISTRY.append(derived)
    return derived


def _to_decimal(value, field_name):
    if value is None:
        raise RecalculationDegraded(f"missing input {field_name}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise RecalculationDegraded(f"invalid input {field_name}={value!r}")


# ---------------------------------------------------------------------------
# Pure formulas
# ---------------------------------------------------------------------------

def whole_years_between(start, end):
    """Completed years from start to end; 0 if end precedes start."""
    if end <= start:
        return 0
    years = end.year - start.year
    if (end.month, end.day) < (start.month, start.day):
        years -= 1
    return max(years, 0)


def compute_depreciation(purchase_cost, salvage_value, depreciation_rate, years,
                         method=DepreciationMethod.STRAIGHT_LINE.value):
    """
    Depreciation of an asset after a number of whole years.

    Straight line:
        accumulated = min((cost - salvage) * rate/100 * years, cost - salvage)
    Declining balance:
        value = max(cost * (1 - rate/100) ** years, salvage)

    Returns:
        (accumulated_depreciation, current_value), rounded to cents

    Raises:
        RecalculationDegraded: If an input is missing or inconsistent
    """
    cost = _to_decimal(purchase_cost, 'purchase_cost')
    salvage = _to_decimal(salvage_value if salvage_value is not None else 0, 'salvage_value')
    rate = _to_decimal(depreciation_rate, 'depreciation_rate') / Decimal(100)

    if cost < 0 or salvage < 0 or rate < 0:
        raise RecalculationDegraded("depreciation inputs must not be negative")
    if salvage > cost:
        raise RecalculationDegraded("salvage_value exceeds purchase_cost")

    depreciable = cost - salvage
    years = max(int(years), 0)

    if method == DepreciationMethod.DECLINING_BALANCE.value:
        current = max(cost * (Decimal(1) - rate) ** years, salvage)
        accumulated = cost - current
    elif method == DepreciationMethod.STRAIGHT_LINE.value:
        accumulated = min(depreciable * rate * years, depreciable)
        current = cost - accumulated
    else:
        raise RecalculationDegraded(f"unknown depreciation method {method!r}")

    return (
        accumulated.quantize(CENT, rounding=ROUND_HALF_UP),
        current.quantize(CENT, rounding=ROUND_HALF_UP),
    )


def compute_completion_percentage(completed, total):
    """round(100 * completed / total), half up; 0 when there are no tasks."""
    if total <= 0:
        return 0
    pct = (Decimal(100) * Decimal(completed) / Decimal(total)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(pct)


def compute_inventory_figures(current_stock, reserved_stock, average_cost):
    """
    Returns:
        (available_stock, total_inventory_value); availability floors at 0
    """
    current = _to_decimal(current_stock, 'current_stock')
    reserved = _to_decimal(reserved_stock if reserved_stock is not None else 0, 'reserved_stock')
    cost = _to_decimal(average_cost if average_cost is not None else 0, 'average_cost')

    available = max(Decimal(0), current - reserved)
    value = current * cost
    return (
        available.quantize(MILLI, rounding=ROUND_HALF_UP),
        value.quantize(CENT, rounding=ROUND_HALF_UP),
    )


# ---------------------------------------------------------------------------
# Registered derivations
# ---------------------------------------------------------------------------

def _as_of(session):
    return session.info.get('as_of_date') or date.today()


def _asset_depreciation(session, asset):
    if asset.purchase_date is None:
        raise RecalculationDegraded("missing input purchase_date")
    years = whole_years_between(asset.purchase_date, _as_of(session))
    accumulated, current = compute_depreciation(
        asset.purchase_cost, asset.salvage_value, asset.depreciation_rate,
        years, asset.depreciation_method or DepreciationMethod.STRAIGHT_LINE.value,
    )
    return {'accumulated_depreciation': accumulated, 'current_value': current}


def _inventory_figures(session, item):
    available, value = compute_inventory_figures(item.current_stock, item.reserved_stock, item.average_cost)
    return {'available_stock': available, 'total_inventory_value': value}


def _live_tasks(session, work_order):
    """Tasks of a work order as this flush will leave them."""
    def belongs(task):
        if task.work_order_id is not None:
            return task.work_order_id == work_order.id
        return task.work_order is work_order

    tasks = set()
    if work_order.id is not None:
        # Stored tasks, merged with their in-memory (possibly modified) state
        tasks.update(session.execute(
            select(WorkOrderTask)
            .where(WorkOrderTask.work_order_id == work_order.id)
            .execution_options(include_deleted=True)
        ).scalars())
    if 'tasks' in inspect(work_order).dict:
        tasks.update(work_order.tasks)
    tasks.update(obj for obj in session.new if isinstance(obj, WorkOrderTask) and belongs(obj))
    return [
        t for t in tasks
        if t not in session.deleted and t.deleted_at is None and belongs(t)
    ]


def _work_order_progress(session, work_order):
    tasks = _live_tasks(session, work_order)
    completed = sum(1 for t in tasks if t.completed_at is not None)
    values = {'completion_percentage': compute_completion_percentage(completed, len(tasks))}

    if tasks and completed == len(tasks) and work_order.status not in CLOSED_STATUSES:
        values['status'] = WorkOrderStatus.COMPLETED.value
        values['completed_at'] = utcnow()
        logger.info(f"[RECALC] Work order {work_order.id} auto-completed ({len(tasks)} tasks done)")
    return values


def _find_work_order(session, work_order_id):
    return session.execute(
        select(WorkOrder).where(WorkOrder.id == work_order_id)
    ).scalar_one_or_none()


def _task_work_orders(session, task):
    owners = []
    # The foreign key wins over a possibly stale relationship
    if task.work_order_id is not None:
        owner = _find_work_order(session, task.work_order_id)
    else:
        owner = task.work_order
    if owner is not None:
        owners.append(owner)

    # A task moved between work orders also changes the previous owner
    history = inspect(task).attrs.work_order_id.history
    for previous_id in history.deleted or ():
        if previous_id is not None:
            previous = _find_work_order(session, previous_id)
            if previous is not None:
                owners.append(previous)
    return owners


register(DerivedField(
    name='asset_depreciation',
    model=Asset,
    targets=('accumulated_depreciation', 'current_value'),
    inputs=('purchase_cost', 'salvage_value', 'depreciation_rate', 'purchase_date', 'depreciation_method'),
    compute=_asset_depreciation,
))

register(DerivedField(
    name='inventory_figures',
    model=InventoryItem,
    targets=('available_stock', 'total_inventory_value'),
    inputs=('current_stock', 'reserved_stock', 'average_cost'),
    compute=_inventory_figures,
))

register(DerivedField(
    name='work_order_progress',
    model=WorkOrder,
    targets=('completion_percentage', 'status', 'completed_at'),
    inputs=(),
    compute=_work_order_progress,
    source_model=WorkOrderTask,
    source_inputs=('completed_at', 'deleted_at', 'work_order_id'),
    resolve_owners=_task_work_orders,
))


# ---------------------------------------------------------------------------
# Pipeline stage
# ---------------------------------------------------------------------------

def _inputs_changed(obj, fields):
    attrs = inspect(obj).attrs
    return any(attrs[name].history.has_changes() for name in fields)


def apply(session, derived, owner):
    """
    Recompute one derivation on one row, assigning only changed values.

    Returns:
        True if any derived column changed
    """
    try:
        values = derived.compute(session, owner)
    except RecalculationDegraded as e:
        logger.warning(f"[RECALC] {derived.name} degraded for {owner.__tablename__} {owner.id}: {e.message}")
        return False
    except (ArithmeticError, TypeError, ValueError) as e:
        logger.warning(f"[RECALC] {derived.name} degraded for {owner.__tablename__} {owner.id}: {e}")
        return False

    changed = False
    for name, value in values.items():
        if getattr(owner, name) != value:
            setattr(owner, name, value)
            changed = True
    if changed:
        logger.debug(f"[RECALC] {derived.name} updated {owner.__tablename__} {owner.id}: {values}")
    return changed


def recalculate_pending(session):
    """
    Flush pipeline stage: recompute derivations touched by pending changes.

    Runs before the audit stage so the audit's after-image includes the
    recomputed values.
    """
    pending = {}
    new = set(session.new)
    deleted = set(session.deleted)

    for obj in list(new) + list(session.dirty) + list(deleted):
        for derived in REGISTRY:
            if isinstance(obj, derived.model) and obj not in deleted:
                if obj in new or _inputs_changed(obj, derived.inputs):
                    pending[(id(obj), derived.name)] = (derived, obj)

            if derived.source_model is not None and isinstance(obj, derived.source_model):
                if obj in new or obj in deleted or _inputs_changed(obj, derived.source_inputs):
                    for owner in derived.resolve_owners(session, obj):
                        if owner not in deleted:
                            pending[(id(owner), derived.name)] = (derived, owner)

    for derived, owner in pending.values():
        apply(session, derived, owner)


def recalculate_all(session, models=None):
    """
    Recompute every registered derivation over all visible rows.

    Time-dependent values (depreciation) drift without any write, so this
    is run periodically from the CLI in a privileged scope.

    Returns:
        Number of rows whose derived values changed
    """
    updated = 0
    for derived in REGISTRY:
        if models and derived.model not in models:
            continue
        rows = session.execute(select(derived.model)).scalars().all()
        for row in rows:
            if apply(session, derived, row):
                updated += 1
        logger.info(f"[RECALC] {derived.name}: checked {len(rows)} rows")
    return updated
