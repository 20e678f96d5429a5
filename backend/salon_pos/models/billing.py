from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .enums import (
    BILL_TRANSITIONS,
    BillStatus,
    DiscountType,
    LineType,
    PaymentMethod,
    SalesType,
    enum_column_type,
)


class InvalidBillTransition(Exception):
    """Raised when a status change is not in the bill transition table."""
    def __init__(self, current: BillStatus, target: BillStatus):
        super().__init__(f"Cannot move bill from {current.value} to {target.value}")
        self.current = current
        self.target = target


class Bill(db.Model):
    """
    Point-of-sale record (one completed sale).

    Created once with status PAID; only ever mutated by the two terminal
    transitions (refund, void). Never deleted. All amounts in cents.
    """
    __tablename__ = "bills"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "document_number", name="uq_bills_branch_docnum"),
        db.Index("ix_bills_branch_status_created", "branch_id", "status", "created_at"),
        db.Index("ix_bills_client_branch_status", "client_id", "branch_id", "status"),
        db.CheckConstraint("subtotal_cents >= 0", name="ck_bills_subtotal_nonneg"),
        db.CheckConstraint("discount_cents >= 0", name="ck_bills_discount_nonneg"),
        db.CheckConstraint("tax_cents >= 0", name="ck_bills_tax_nonneg"),
        db.CheckConstraint("total_cents >= 0", name="ck_bills_total_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False)

    branch_id = db.Column(db.String(64), nullable=False, index=True)
    # NULL for walk-in guests
    client_id = db.Column(db.String(64), nullable=True, index=True)
    client_name = db.Column(db.String(255), nullable=True)
    appointment_id = db.Column(db.String(64), nullable=True)

    sales_type = db.Column(enum_column_type(SalesType), nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_type = db.Column(enum_column_type(DiscountType), nullable=False, default=DiscountType.FIXED)
    # Cents for FIXED, whole percent for PERCENTAGE
    discount_value = db.Column(db.Integer, nullable=False, default=0)
    promotion_code = db.Column(db.String(64), nullable=True)
    promotion_id = db.Column(db.String(64), nullable=True)
    promotion_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_used = db.Column(db.Integer, nullable=False, default=0)
    loyalty_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(enum_column_type(PaymentMethod), nullable=False)
    payment_reference = db.Column(db.String(128), nullable=True)
    receipt_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(enum_column_type(BillStatus), nullable=False, default=BillStatus.PAID, index=True)

    created_by = db.Column(db.String(64), nullable=False)
    created_by_name = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    # Refund / void audit trail
    refund_amount_cents = db.Column(db.Integer, nullable=True)
    refund_reason = db.Column(db.String(255), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.String(64), nullable=True)
    approved_by_name = db.Column(db.String(255), nullable=True)
    witness_id = db.Column(db.String(64), nullable=True)
    witness_email = db.Column(db.String(255), nullable=True)
    witness_name = db.Column(db.String(255), nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "BillLine",
        backref=db.backref("bill", lazy=True),
        lazy=True,
        order_by="BillLine.line_number",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Bill id={self.id} doc={self.document_number!r} status={self.status.value}>"

    def can_transition_to(self, target: BillStatus) -> bool:
        return target in BILL_TRANSITIONS[self.status]

    def transition_to(self, target: BillStatus) -> None:
        if not self.can_transition_to(target):
            raise InvalidBillTransition(self.status, target)
        self.status = target

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "document_number": self.document_number,
            "branch_id": self.branch_id,
            "client_id": self.client_id,
            "client_name": self.client_name,
            "appointment_id": self.appointment_id,
            "sales_type": self.sales_type.value,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "discount_type": self.discount_type.value,
            "discount_value": self.discount_value,
            "promotion_code": self.promotion_code,
            "promotion_id": self.promotion_id,
            "promotion_discount_cents": self.promotion_discount_cents,
            "loyalty_points_used": self.loyalty_points_used,
            "loyalty_discount_cents": self.loyalty_discount_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method.value,
            "payment_reference": self.payment_reference,
            "receipt_number": self.receipt_number,
            "notes": self.notes,
            "status": self.status.value,
            "created_by": self.created_by,
            "created_by_name": self.created_by_name,
            "created_at": to_utc_z(self.created_at),
            "refund_amount_cents": self.refund_amount_cents,
            "refund_reason": self.refund_reason,
            "refunded_at": to_utc_z(self.refunded_at),
            "void_reason": self.void_reason,
            "voided_at": to_utc_z(self.voided_at),
            "approved_by": self.approved_by,
            "approved_by_name": self.approved_by_name,
            "witness_id": self.witness_id,
            "witness_email": self.witness_email,
            "witness_name": self.witness_name,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class BillLine(db.Model):
    """Line item on a bill. Immutable once the bill is persisted."""
    __tablename__ = "bill_lines"
    __table_args__ = (
        db.UniqueConstraint("bill_id", "line_number", name="uq_bill_lines_bill_line"),
        db.CheckConstraint("quantity > 0", name="ck_bill_lines_quantity_pos"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_bill_lines_price_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    line_type = db.Column(enum_column_type(LineType), nullable=False)
    # Catalog id of the service or product
    item_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=True)

    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    line_total_cents = db.Column(db.Integer, nullable=False)

    # Services only
    staff_id = db.Column(db.String(64), nullable=True, index=True)
    staff_name = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bill_id": self.bill_id,
            "line_number": self.line_number,
            "line_type": self.line_type.value,
            "item_id": self.item_id,
            "name": self.name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
            "staff_id": self.staff_id,
            "staff_name": self.staff_name,
        }
