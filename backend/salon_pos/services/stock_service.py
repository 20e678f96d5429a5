# Overview: FIFO batch deduction engine for branch stock, partitioned by usage type.

from __future__ import annotations

import json
from dataclasses import dataclass, field

from sqlalchemy import func

from ..extensions import db
from ..identity import Actor, resolve_actor
from ..models import AuditOutcome, BatchStatus, StockBatch, StockMovement, UsageType
from .audit_service import append_audit_entry
from .concurrency import lock_for_update, run_with_retry
"""
Stock Batch Invariants (authoritative)

Batch pools:
- A pool is (branch_id, product_id, usage_type). OTC stock is sold over the
  counter; SALON-USE stock is consumed while performing services. A deduction
  never crosses pools.
- Batches are created by the receiving process; this module only decrements
  remaining_quantity and marks batches DEPLETED at zero.

FIFO:
- Oldest first by received_at, ties broken by batch id.
- Greedy: take min(remaining, still_needed) from each batch in order.

Shortage policy:
- If the pool holds less than requested, everything available is taken and
  the result reports success=False with the shortfall. Callers decide whether
  that is fatal; bill creation treats it as a degraded side effect.

Concurrency:
- Batch rows are versioned; a concurrent deduction that touched the same
  batch raises StaleDataError and the whole deduction is re-run on fresh rows.

Audit:
- Every call writes exactly one StockMovement, including zero-quantity
  outcomes, referencing the bill, reason and actor.
- Standalone calls also append a stock.deduct audit entry. Bill creation
  passes audit=False and records the outcome as its own saga step.
"""

REASON_TRANSACTION_SALE = "Transaction Sale"
REASON_SERVICE_USE = "Service Use"


class StockError(Exception):
    """Raised for invalid stock deduction requests."""
    code = "STOCK_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class BatchAllocation:
    batch_id: int
    quantity: int
    remaining_after: int
    unit_cost_cents: int | None = None

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "quantity": self.quantity,
            "remaining_after": self.remaining_after,
            "unit_cost_cents": self.unit_cost_cents,
        }


@dataclass
class FifoDeductionResult:
    branch_id: str
    product_id: str
    usage_type: UsageType
    requested: int
    allocations: list[BatchAllocation] = field(default_factory=list)
    movement_id: int | None = None

    @property
    def deducted(self) -> int:
        return sum(a.quantity for a in self.allocations)

    @property
    def shortfall(self) -> int:
        return max(0, self.requested - self.deducted)

    @property
    def success(self) -> bool:
        return self.shortfall == 0

    @property
    def cost_cents(self) -> int | None:
        costs = [a.quantity * a.unit_cost_cents for a in self.allocations if a.unit_cost_cents is not None]
        return sum(costs) if costs else None

    @property
    def message(self) -> str:
        label = "OTC" if self.usage_type == UsageType.OTC else "salon-use"
        if self.success:
            return f"Deducted {self.deducted} {label} unit(s) of {self.product_id} from {len(self.allocations)} batch(es)"
        if not self.allocations:
            return f"No {label} stock available for {self.product_id}; {self.requested} unit(s) not deducted"
        return (
            f"Insufficient {label} stock for {self.product_id}: "
            f"only {self.deducted} of {self.requested} unit(s) deducted"
        )

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "usage_type": self.usage_type.value,
            "requested": self.requested,
            "deducted": self.deducted,
            "shortfall": self.shortfall,
            "success": self.success,
            "cost_cents": self.cost_cents,
            "allocations": [a.to_dict() for a in self.allocations],
            "movement_id": self.movement_id,
            "message": self.message,
        }


def _coerce_usage_type(usage_type) -> UsageType:
    if isinstance(usage_type, UsageType):
        return usage_type
    try:
        return UsageType(usage_type)
    except ValueError:
        raise StockError(f"Unknown usage type: {usage_type!r}")


def _fifo_query(branch_id: str, product_id: str, usage_type: UsageType):
    return (
        db.session.query(StockBatch)
        .filter(
            StockBatch.branch_id == branch_id,
            StockBatch.product_id == product_id,
            StockBatch.usage_type == usage_type,
            StockBatch.status == BatchStatus.ACTIVE,
        )
        .order_by(StockBatch.received_at.asc(), StockBatch.id.asc())
    )


def get_product_batches(
    branch_id: str,
    product_id: str,
    usage_type=None,
    status=None,
) -> list[StockBatch]:
    """All batches for a product at a branch, oldest first."""
    q = db.session.query(StockBatch).filter(
        StockBatch.branch_id == branch_id,
        StockBatch.product_id == product_id,
    )
    if usage_type is not None:
        q = q.filter(StockBatch.usage_type == _coerce_usage_type(usage_type))
    if status is not None:
        q = q.filter(StockBatch.status == BatchStatus(status))
    return q.order_by(StockBatch.received_at.asc(), StockBatch.id.asc()).all()


def get_available_quantity(branch_id: str, product_id: str, usage_type) -> int:
    usage_type = _coerce_usage_type(usage_type)
    total = (
        db.session.query(func.coalesce(func.sum(StockBatch.remaining_quantity), 0))
        .filter(
            StockBatch.branch_id == branch_id,
            StockBatch.product_id == product_id,
            StockBatch.usage_type == usage_type,
            StockBatch.status == BatchStatus.ACTIVE,
        )
        .scalar()
    )
    return int(total or 0)


def preview_fifo_allocation(
    branch_id: str,
    product_id: str,
    usage_type,
    quantity: int,
) -> FifoDeductionResult:
    """Which batches a deduction would use right now. Writes nothing."""
    usage_type = _coerce_usage_type(usage_type)
    _validate_quantity(quantity)

    result = FifoDeductionResult(
        branch_id=branch_id,
        product_id=product_id,
        usage_type=usage_type,
        requested=quantity,
    )
    still_needed = quantity
    for batch in _fifo_query(branch_id, product_id, usage_type).all():
        if still_needed <= 0:
            break
        take = min(batch.remaining_quantity, still_needed)
        if take <= 0:
            continue
        still_needed -= take
        result.allocations.append(BatchAllocation(
            batch_id=batch.id,
            quantity=take,
            remaining_after=batch.remaining_quantity - take,
            unit_cost_cents=batch.unit_cost_cents,
        ))
    return result


def _validate_quantity(quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise StockError("quantity must be an integer", {"quantity": quantity})
    if quantity <= 0:
        raise StockError("quantity must be positive", {"quantity": quantity})


def _deduct_locked(
    *,
    branch_id: str,
    product_id: str,
    usage_type: UsageType,
    quantity: int,
    reason: str,
    bill_id: int | None,
    actor: Actor,
    notes: str | None,
    product_name: str | None,
) -> FifoDeductionResult:
    result = FifoDeductionResult(
        branch_id=branch_id,
        product_id=product_id,
        usage_type=usage_type,
        requested=quantity,
    )

    still_needed = quantity
    batches = lock_for_update(_fifo_query(branch_id, product_id, usage_type)).all()
    for batch in batches:
        if still_needed <= 0:
            break
        taken = batch.take(still_needed)
        if taken == 0:
            continue
        still_needed -= taken
        result.allocations.append(BatchAllocation(
            batch_id=batch.id,
            quantity=taken,
            remaining_after=batch.remaining_quantity,
            unit_cost_cents=batch.unit_cost_cents,
        ))

    movement = StockMovement(
        branch_id=branch_id,
        product_id=product_id,
        product_name=product_name,
        usage_type=usage_type,
        movement_type="stock_out",
        requested_quantity=quantity,
        deducted_quantity=result.deducted,
        cost_cents=result.cost_cents,
        reason=reason,
        bill_id=bill_id,
        notes=(notes or "")[:255] or None,
        performed_by=actor.id,
        allocations=json.dumps([a.to_dict() for a in result.allocations]),
    )
    db.session.add(movement)
    # Flush here so version conflicts on the batches surface inside the retry
    db.session.flush()
    result.movement_id = movement.id
    return result


def deduct_stock_fifo(
    branch_id: str,
    product_id: str,
    usage_type,
    quantity: int,
    *,
    reason: str,
    bill_id: int | None = None,
    actor: Actor | None = None,
    notes: str | None = None,
    product_name: str | None = None,
    audit: bool = True,
    commit: bool = True,
) -> FifoDeductionResult:
    """
    Deduct quantity units from the (branch, product, usage_type) pool, oldest
    batches first.

    Partial deduction on shortage: whatever is available is taken and the
    result reports success=False. Raises StockError only for invalid input.
    """
    usage_type = _coerce_usage_type(usage_type)
    _validate_quantity(quantity)
    actor = resolve_actor(actor)

    def _op():
        result = _deduct_locked(
            branch_id=branch_id,
            product_id=product_id,
            usage_type=usage_type,
            quantity=quantity,
            reason=reason,
            bill_id=bill_id,
            actor=actor,
            notes=notes,
            product_name=product_name,
        )
        if audit:
            append_audit_entry(
                action="stock.deduct",
                entity_type="stock_movement",
                entity_id=result.movement_id,
                actor=actor,
                branch_id=branch_id,
                bill_id=bill_id,
                outcome=AuditOutcome.OK if result.success else AuditOutcome.DEGRADED,
                details=result.message,
            )
        if commit:
            db.session.commit()
        return result

    if not commit:
        return _op()
    return run_with_retry(_op)


def get_stock_movements(
    branch_id: str,
    *,
    product_id: str | None = None,
    bill_id: int | None = None,
    limit: int = 100,
) -> list[StockMovement]:
    q = db.session.query(StockMovement).filter(StockMovement.branch_id == branch_id)
    if product_id:
        q = q.filter(StockMovement.product_id == product_id)
    if bill_id is not None:
        q = q.filter(StockMovement.bill_id == bill_id)
    limit = min(max(limit, 1), 500)
    return q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit).all()
