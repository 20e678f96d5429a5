from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .enums import BATCH_TRANSITIONS, BatchStatus, UsageType, enum_column_type


class StockBatch(db.Model):
    """
    Costed lot of a product received at a branch.

    Batches are created by the external receiving process. The transaction
    core only reads them and decrements remaining_quantity, oldest first
    within a (branch, product, usage_type) pool.

    INVARIANT: 0 <= remaining_quantity <= received_quantity.
    """
    __tablename__ = "stock_batches"
    __table_args__ = (
        db.Index(
            "ix_stock_batches_fifo",
            "branch_id", "product_id", "usage_type", "status", "received_at",
        ),
        db.CheckConstraint("remaining_quantity >= 0", name="ck_stock_batches_remaining_nonneg"),
        db.CheckConstraint(
            "remaining_quantity <= received_quantity",
            name="ck_stock_batches_remaining_le_received",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=False, index=True)
    batch_number = db.Column(db.String(64), nullable=True)

    usage_type = db.Column(enum_column_type(UsageType), nullable=False, default=UsageType.OTC)

    received_quantity = db.Column(db.Integer, nullable=False)
    remaining_quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    # FIFO ordering key
    received_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(enum_column_type(BatchStatus), nullable=False, default=BatchStatus.ACTIVE, index=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<StockBatch id={self.id} product={self.product_id!r} "
            f"usage={self.usage_type.value} remaining={self.remaining_quantity}>"
        )

    def take(self, quantity: int) -> int:
        """Remove up to quantity units; returns how many were taken."""
        taken = min(self.remaining_quantity, quantity)
        if taken <= 0:
            return 0
        self.remaining_quantity -= taken
        if self.remaining_quantity == 0:
            self._transition_to(BatchStatus.DEPLETED)
        return taken

    def _transition_to(self, target: BatchStatus) -> None:
        if target not in BATCH_TRANSITIONS[self.status]:
            raise ValueError(f"Cannot move batch from {self.status.value} to {target.value}")
        self.status = target

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "batch_number": self.batch_number,
            "usage_type": self.usage_type.value,
            "received_quantity": self.received_quantity,
            "remaining_quantity": self.remaining_quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "received_at": to_utc_z(self.received_at),
            "expires_at": to_utc_z(self.expires_at),
            "status": self.status.value,
            "version_id": self.version_id,
        }


class StockMovement(db.Model):
    """
    Append-only note of one FIFO deduction call.

    Records what was asked for, what was actually taken (and from which
    batches), the triggering bill and the actor.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_branch_created", "branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=True)
    usage_type = db.Column(enum_column_type(UsageType), nullable=False)

    movement_type = db.Column(db.String(16), nullable=False, default="stock_out")
    requested_quantity = db.Column(db.Integer, nullable=False)
    deducted_quantity = db.Column(db.Integer, nullable=False)
    cost_cents = db.Column(db.Integer, nullable=True)

    reason = db.Column(db.String(64), nullable=False)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=True, index=True)
    notes = db.Column(db.String(255), nullable=True)
    performed_by = db.Column(db.String(64), nullable=False)

    # JSON list of {"batch_id", "quantity", "remaining_after", "unit_cost_cents"}
    allocations = db.Column(db.Text, nullable=False, default="[]")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def shortfall(self) -> int:
        return self.requested_quantity - self.deducted_quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "usage_type": self.usage_type.value,
            "movement_type": self.movement_type,
            "requested_quantity": self.requested_quantity,
            "deducted_quantity": self.deducted_quantity,
            "shortfall": self.shortfall,
            "cost_cents": self.cost_cents,
            "reason": self.reason,
            "bill_id": self.bill_id,
            "notes": self.notes,
            "performed_by": self.performed_by,
            "allocations": json.loads(self.allocations or "[]"),
            "created_at": to_utc_z(self.created_at),
        }


class ServiceProductMapping(db.Model):
    """
    Products consumed when a service is performed.

    Maintained by the catalog; read by bill creation to deduct salon-use stock.
    """
    __tablename__ = "service_product_mappings"
    __table_args__ = (
        db.UniqueConstraint("service_id", "product_id", name="uq_service_product_mappings"),
        db.CheckConstraint("quantity_per_service > 0", name="ck_service_product_mappings_qty_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    service_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=True)
    quantity_per_service = db.Column(db.Integer, nullable=False, default=1)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "service_id": self.service_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity_per_service": self.quantity_per_service,
        }
