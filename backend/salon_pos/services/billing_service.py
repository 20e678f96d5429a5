"""
Transaction Ledger - bill creation saga, refunds, voids and bill queries.

Creating a bill is split at a durability boundary: the bill, its lines and
its create audit entry commit together first. Everything after that (stock
deduction, loyalty, client stats, referral code) runs as independent
best-effort steps that can degrade or fail without touching the bill.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Iterable

from flask import current_app

from ..extensions import db
from ..identity import Actor, Witness, resolve_actor
from ..models import (
    AuditOutcome,
    Bill,
    BillLine,
    BillStatus,
    DiscountType,
    LineType,
    SalesType,
    ServiceProductMapping,
    UsageType,
)
from ..time_utils import end_of_day, start_of_day, utcnow
from ..validation import BillInput, LineInput, ValidationError, parse_bill_input
from .audit_service import append_audit_entry, record_audit_entry
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .loyalty_service import (
    InsufficientPointsError,
    earn_loyalty_points,
    get_loyalty_points,
    record_client_visit,
    redeem_loyalty_points,
)
from .referral_service import get_referral_code
from .stock_service import REASON_SERVICE_USE, REASON_TRANSACTION_SALE, deduct_stock_fifo


class BillingError(Exception):
    """Raised for bill operation errors."""
    code = "BILLING_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class BillNotFoundError(BillingError):
    code = "BILL_NOT_FOUND"


class AlreadyFinalizedError(BillingError):
    code = "ALREADY_FINALIZED"


class WitnessRequiredError(BillingError):
    code = "WITNESS_REQUIRED"


@dataclass(frozen=True)
class BillTotals:
    subtotal_cents: int
    manual_discount_cents: int
    loyalty_discount_cents: int
    promotion_discount_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int


@dataclass
class StepResult:
    name: str
    outcome: AuditOutcome
    message: str
    data: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.outcome == AuditOutcome.OK

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "outcome": self.outcome.value,
            "message": self.message,
            "data": self.data,
        }


@dataclass
class CreateBillResult:
    bill: Bill
    steps: list[StepResult] = field(default_factory=list)

    @property
    def warnings(self) -> list[str]:
        return [s.message for s in self.steps if not s.ok]

    def to_dict(self) -> dict:
        return {
            "bill": self.bill.to_dict(),
            "steps": [s.to_dict() for s in self.steps],
            "warnings": self.warnings,
        }


# =============================================================================
# PRICING
# =============================================================================

def classify_sales_type(lines: Iterable[LineInput]) -> SalesType:
    types = {line.line_type for line in lines}
    if LineType.SERVICE in types and LineType.PRODUCT in types:
        return SalesType.MIXED
    if LineType.PRODUCT in types:
        return SalesType.PRODUCT
    return SalesType.SERVICE


def _round_half_up(numerator: int, denominator: int) -> int:
    return (numerator * 2 + denominator) // (denominator * 2)


def calculate_bill_totals(
    lines: Iterable[LineInput],
    discount_type: DiscountType = DiscountType.FIXED,
    discount_value: int = 0,
    loyalty_points_used: int = 0,
    promotion_discount_cents: int = 0,
    tax_rate_bps: int = 0,
    point_value_cents: int | None = None,
) -> BillTotals:
    """
    Server-side totals. All discounts together are capped at the subtotal;
    tax applies to the discounted amount.
    """
    if point_value_cents is None:
        point_value_cents = int(current_app.config["LOYALTY_POINT_VALUE_CENTS"])

    subtotal = sum(line.line_total_cents for line in lines)

    if discount_type == DiscountType.PERCENTAGE:
        manual = _round_half_up(subtotal * discount_value, 100)
    else:
        manual = discount_value
    loyalty = loyalty_points_used * point_value_cents

    discount = min(subtotal, manual + loyalty + promotion_discount_cents)
    taxable = subtotal - discount
    tax = _round_half_up(taxable * tax_rate_bps, 10_000)

    return BillTotals(
        subtotal_cents=subtotal,
        manual_discount_cents=manual,
        loyalty_discount_cents=loyalty,
        promotion_discount_cents=promotion_discount_cents,
        discount_cents=discount,
        tax_cents=tax,
        total_cents=taxable + tax,
    )


# =============================================================================
# CREATE
# =============================================================================

def _persist_bill(bill_input: BillInput, totals: BillTotals, actor: Actor) -> Bill:
    document_number = next_document_number(
        branch_id=bill_input.branch_id,
        document_type="BILL",
        prefix="B",
    )

    bill = Bill(
        document_number=document_number,
        branch_id=bill_input.branch_id,
        client_id=bill_input.client_id,
        client_name=bill_input.client_name,
        appointment_id=bill_input.appointment_id,
        sales_type=classify_sales_type(bill_input.lines),
        subtotal_cents=totals.subtotal_cents,
        discount_cents=totals.discount_cents,
        discount_type=bill_input.discount_type,
        discount_value=bill_input.discount_value,
        promotion_code=bill_input.promotion_code,
        promotion_id=bill_input.promotion_id,
        promotion_discount_cents=totals.promotion_discount_cents,
        loyalty_points_used=bill_input.loyalty_points_used,
        loyalty_discount_cents=totals.loyalty_discount_cents,
        tax_rate_bps=bill_input.tax_rate_bps,
        tax_cents=totals.tax_cents,
        total_cents=totals.total_cents,
        payment_method=bill_input.payment_method,
        payment_reference=bill_input.payment_reference,
        receipt_number=bill_input.receipt_number,
        notes=bill_input.notes,
        status=BillStatus.PAID,
        created_by=actor.id,
        created_by_name=actor.name,
        created_at=utcnow(),
    )
    db.session.add(bill)

    for number, line in enumerate(bill_input.lines, start=1):
        db.session.add(BillLine(
            bill=bill,
            line_number=number,
            line_type=line.line_type,
            item_id=line.item_id,
            name=line.name,
            unit_price_cents=line.unit_price_cents,
            quantity=line.quantity,
            line_total_cents=line.line_total_cents,
            staff_id=line.staff_id,
            staff_name=line.staff_name,
        ))

    db.session.flush()
    append_audit_entry(
        action="bill.create",
        entity_type="bill",
        entity_id=bill.id,
        actor=actor,
        branch_id=bill.branch_id,
        bill_id=bill.id,
        details=(
            f"Bill {document_number} created: {len(bill_input.lines)} line(s), "
            f"total {totals.total_cents} cents, paid by {bill_input.payment_method.value}"
        ),
    )
    db.session.commit()
    return bill


def _run_step(
    bill_id: int,
    branch_id: str,
    name: str,
    func: Callable[[], StepResult],
    actor: Actor,
) -> StepResult:
    """
    Run one post-commit side effect as its own unit of work.

    The step's writes and its audit entry commit together. Exceptions roll
    the step back and turn into a FAILED result; they never propagate.
    """
    def _op():
        step = func()
        append_audit_entry(
            action=name,
            entity_type="bill",
            entity_id=bill_id,
            actor=actor,
            branch_id=branch_id,
            bill_id=bill_id,
            outcome=step.outcome,
            details=step.message,
        )
        db.session.commit()
        return step

    try:
        step = run_with_retry(_op)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.warning("Bill %s: step %s failed: %s", bill_id, name, exc, exc_info=True)
        step = StepResult(name=name, outcome=AuditOutcome.FAILED, message=f"{name} failed: {exc}")
        record_audit_entry(
            action=name,
            entity_type="bill",
            entity_id=bill_id,
            actor=actor,
            branch_id=branch_id,
            bill_id=bill_id,
            outcome=AuditOutcome.FAILED,
            details=step.message,
        )
        return step

    if not step.ok:
        current_app.logger.warning("Bill %s: step %s %s: %s", bill_id, name, step.outcome.value, step.message)
    return step


def _stock_step(
    name: str,
    *,
    bill_id: int,
    branch_id: str,
    product_id: str,
    product_name: str | None,
    usage_type: UsageType,
    quantity: int,
    reason: str,
    actor: Actor,
    notes: str,
) -> Callable[[], StepResult]:
    def _step() -> StepResult:
        result = deduct_stock_fifo(
            branch_id,
            product_id,
            usage_type,
            quantity,
            reason=reason,
            bill_id=bill_id,
            actor=actor,
            notes=notes,
            product_name=product_name,
            audit=False,
            commit=False,
        )
        return StepResult(
            name=name,
            outcome=AuditOutcome.OK if result.success else AuditOutcome.DEGRADED,
            message=result.message,
            data=result.to_dict(),
        )
    return _step


def _side_effects(bill: Bill, bill_input: BillInput, actor: Actor) -> list[tuple[str, Callable[[], StepResult]]]:
    """Ordered saga steps for a freshly committed bill."""
    bill_id = bill.id
    branch_id = bill.branch_id
    client_id = bill.client_id
    total_cents = bill.total_cents
    document_number = bill.document_number
    steps: list[tuple[str, Callable[[], StepResult]]] = []

    for line in bill_input.lines:
        if line.line_type != LineType.PRODUCT:
            continue
        steps.append(("stock.otc", _stock_step(
            "stock.otc",
            bill_id=bill_id,
            branch_id=branch_id,
            product_id=line.item_id,
            product_name=line.name,
            usage_type=UsageType.OTC,
            quantity=line.quantity,
            reason=REASON_TRANSACTION_SALE,
            actor=actor,
            notes=f"Sold in bill {document_number}",
        )))

    for line in bill_input.lines:
        if line.line_type != LineType.SERVICE:
            continue
        mappings = (
            db.session.query(ServiceProductMapping)
            .filter_by(service_id=line.item_id)
            .order_by(ServiceProductMapping.id.asc())
            .all()
        )
        for mapping in mappings:
            steps.append(("stock.salon_use", _stock_step(
                "stock.salon_use",
                bill_id=bill_id,
                branch_id=branch_id,
                product_id=mapping.product_id,
                product_name=mapping.product_name,
                usage_type=UsageType.SALON_USE,
                quantity=mapping.quantity_per_service * line.quantity,
                reason=REASON_SERVICE_USE,
                actor=actor,
                notes=f"Used for service {line.name or line.item_id} in bill {document_number}",
            )))

    if not client_id:
        return steps

    points_used = bill_input.loyalty_points_used
    if points_used > 0:
        def _redeem() -> StepResult:
            discount = redeem_loyalty_points(
                client_id, branch_id, points_used, bill_id, actor=actor, audit=False, commit=False
            )
            return StepResult(
                name="loyalty.redeem",
                outcome=AuditOutcome.OK,
                message=f"Redeemed {points_used} points for {discount} cents",
                data={"points": points_used, "discount_cents": discount},
            )
        steps.append(("loyalty.redeem", _redeem))

    if total_cents > 0:
        def _earn() -> StepResult:
            points = earn_loyalty_points(
                client_id, branch_id, total_cents, bill_id, actor=actor, audit=False, commit=False
            )
            message = f"Earned {points} points" if points else "Bill total earns no points"
            return StepResult(
                name="loyalty.earn",
                outcome=AuditOutcome.OK,
                message=message,
                data={"points": points},
            )
        steps.append(("loyalty.earn", _earn))

    service_lines = [line for line in bill_input.lines if line.line_type == LineType.SERVICE]

    def _stats() -> StepResult:
        service_total = sum(line.line_total_cents for line in service_lines)
        profile = record_client_visit(
            client_id,
            service_count=len(service_lines),
            service_total_cents=service_total,
            name=bill_input.client_name,
            commit=False,
        )
        return StepResult(
            name="client.stats",
            outcome=AuditOutcome.OK,
            message=f"Client visits now {profile.visit_count}",
            data={"visit_count": profile.visit_count, "total_spent_cents": profile.total_spent_cents},
        )
    steps.append(("client.stats", _stats))

    def _referral() -> StepResult:
        code = get_referral_code(client_id, branch_id, actor=actor)
        if code is None:
            return StepResult(
                name="referral.code",
                outcome=AuditOutcome.DEGRADED,
                message="Referral code not available for this client",
            )
        return StepResult(
            name="referral.code",
            outcome=AuditOutcome.OK,
            message=f"Referral code {code}",
            data={"referral_code": code},
        )
    steps.append(("referral.code", _referral))

    return steps


def create_bill(payload: BillInput | dict, actor: Actor | None = None) -> CreateBillResult:
    """
    Validate, price and persist a PAID bill, then run its side effects.

    Raises ValidationError or InsufficientPointsError before anything is
    written. Once the bill is committed this never raises: side-effect
    problems come back as non-ok steps and warnings.
    """
    bill_input = payload if isinstance(payload, BillInput) else parse_bill_input(payload)
    actor = resolve_actor(actor)

    if bill_input.loyalty_points_used > 0:
        if bill_input.is_guest:
            raise ValidationError("Guest bills cannot redeem loyalty points")
        available = get_loyalty_points(bill_input.client_id, bill_input.branch_id)
        if available < bill_input.loyalty_points_used:
            raise InsufficientPointsError(
                f"Insufficient loyalty points. Available: {available}, "
                f"Required: {bill_input.loyalty_points_used}",
                {"available": available, "requested": bill_input.loyalty_points_used},
            )

    totals = calculate_bill_totals(
        bill_input.lines,
        discount_type=bill_input.discount_type,
        discount_value=bill_input.discount_value,
        loyalty_points_used=bill_input.loyalty_points_used,
        promotion_discount_cents=bill_input.promotion_discount_cents,
        tax_rate_bps=bill_input.tax_rate_bps,
    )

    bill = run_with_retry(lambda: _persist_bill(bill_input, totals, actor))
    current_app.logger.info("Bill %s (%s) created at branch %s", bill.id, bill.document_number, bill.branch_id)

    bill_id = bill.id
    branch_id = bill.branch_id
    results = [
        _run_step(bill_id, branch_id, name, func, actor)
        for name, func in _side_effects(bill, bill_input, actor)
    ]

    bill = db.session.get(Bill, bill_id)
    return CreateBillResult(bill=bill, steps=results)


# =============================================================================
# REFUND / VOID
# =============================================================================

def _locked_bill(bill_id: int) -> Bill:
    bill = lock_for_update(db.session.query(Bill).filter_by(id=bill_id)).first()
    if not bill:
        raise BillNotFoundError("Bill not found", {"bill_id": bill_id})
    return bill


def _require_paid(bill: Bill, action: str) -> None:
    if bill.status != BillStatus.PAID:
        raise AlreadyFinalizedError(
            f"Cannot {action} a bill that is already {bill.status.value}",
            {"bill_id": bill.id, "status": bill.status.value},
        )


def refund_bill(
    bill_id: int,
    amount_cents: int | None = None,
    reason: str | None = None,
    actor: Actor | None = None,
) -> Bill:
    """
    Mark a PAID bill as REFUNDED.

    Stock and loyalty are not reversed; the refund is a record of money
    returned to the client.
    """
    actor = resolve_actor(actor)

    def _op():
        bill = _locked_bill(bill_id)
        _require_paid(bill, "refund")

        amount = bill.total_cents if amount_cents is None else amount_cents
        if amount < 0 or amount > bill.total_cents or (amount == 0 and bill.total_cents > 0):
            raise ValidationError(f"refund amount must be between 1 and {bill.total_cents} cents")

        now = utcnow()
        bill.transition_to(BillStatus.REFUNDED)
        bill.refund_amount_cents = amount
        bill.refund_reason = (reason or "").strip()[:255] or None
        bill.refunded_at = now
        bill.approved_by = actor.id
        bill.approved_by_name = actor.name

        append_audit_entry(
            action="bill.refund",
            entity_type="bill",
            entity_id=bill.id,
            actor=actor,
            branch_id=bill.branch_id,
            bill_id=bill.id,
            details=f"Refunded {amount} of {bill.total_cents} cents. Reason: {bill.refund_reason or 'n/a'}",
        )
        db.session.commit()
        return bill

    return run_with_retry(_op)


def void_bill(
    bill_id: int,
    reason: str,
    actor: Actor | None,
    witness: Witness | dict | None,
) -> Bill:
    """
    Mark a PAID bill as VOIDED. Requires a witness other than the actor.

    The witness check comes first: a void without a witness always fails
    with WitnessRequiredError, whatever the bill's state.
    """
    actor = resolve_actor(actor)
    if isinstance(witness, dict):
        witness = Witness.from_dict(witness)
    if witness is None or not witness.id:
        raise WitnessRequiredError("A witness is required to void a bill", {"bill_id": bill_id})
    if witness.id == actor.id:
        raise WitnessRequiredError(
            "The witness must be a different person from the one voiding the bill",
            {"bill_id": bill_id, "witness_id": witness.id},
        )

    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required to void a bill")

    def _op():
        bill = _locked_bill(bill_id)
        _require_paid(bill, "void")

        bill.transition_to(BillStatus.VOIDED)
        bill.void_reason = reason[:255]
        bill.voided_at = utcnow()
        bill.approved_by = actor.id
        bill.approved_by_name = actor.name
        bill.witness_id = witness.id
        bill.witness_email = witness.email
        bill.witness_name = witness.name

        append_audit_entry(
            action="bill.void",
            entity_type="bill",
            entity_id=bill.id,
            actor=actor,
            branch_id=bill.branch_id,
            bill_id=bill.id,
            details=f"Voided. Reason: {bill.void_reason}. Witness: {witness.label}",
        )
        db.session.commit()
        return bill

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_bill_by_id(bill_id: int) -> Bill:
    bill = db.session.get(Bill, bill_id)
    if not bill:
        raise BillNotFoundError("Bill not found", {"bill_id": bill_id})
    return bill


def get_bills_by_branch(
    branch_id: str,
    status: BillStatus | str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[Bill]:
    """Bills at a branch, newest first. Date bounds are whole days, inclusive."""
    q = db.session.query(Bill).filter(Bill.branch_id == branch_id)
    if status is not None:
        q = q.filter(Bill.status == BillStatus(status))
    if start_date is not None:
        q = q.filter(Bill.created_at >= start_of_day(start_date))
    if end_date is not None:
        q = q.filter(Bill.created_at <= end_of_day(end_date))
    return q.order_by(Bill.created_at.desc(), Bill.id.desc()).all()


def get_bills_by_client(client_id: str) -> list[Bill]:
    return (
        db.session.query(Bill)
        .filter(Bill.client_id == client_id)
        .order_by(Bill.created_at.desc(), Bill.id.desc())
        .all()
    )


def get_daily_sales_summary(branch_id: str, day: date) -> dict[str, Any]:
    bills = get_bills_by_branch(branch_id, start_date=day, end_date=day)

    status_counts: dict[str, int] = defaultdict(int)
    payment_totals: dict[str, int] = defaultdict(int)
    gross = discounts = tax = refunds = transactions = 0

    for bill in bills:
        status_counts[bill.status.value] += 1
        if bill.status == BillStatus.VOIDED:
            continue
        transactions += 1
        gross += bill.total_cents
        discounts += bill.discount_cents
        tax += bill.tax_cents
        payment_totals[bill.payment_method.value] += bill.total_cents
        if bill.status == BillStatus.REFUNDED:
            refunds += bill.refund_amount_cents or 0

    return {
        "branch_id": branch_id,
        "date": day.isoformat(),
        "transaction_count": transactions,
        "gross_sales_cents": gross,
        "discount_cents": discounts,
        "tax_cents": tax,
        "refund_cents": refunds,
        "net_sales_cents": gross - refunds,
        "by_payment_method": dict(payment_totals),
        "by_status": dict(status_counts),
    }
