from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .enums import AuditOutcome, enum_column_type


class AuditLogEntry(db.Model):
    """
    Append-only record of every mutating action.

    Written on behalf of all components; never read by business logic.
    """
    __tablename__ = "audit_log_entries"
    __table_args__ = (
        db.Index("ix_audit_log_branch_created", "branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    bill_id = db.Column(db.Integer, nullable=True, index=True)
    branch_id = db.Column(db.String(64), nullable=True, index=True)

    # What happened, e.g. bill.create, stock.otc, loyalty.earn, referral.process
    action = db.Column(db.String(64), nullable=False, index=True)
    outcome = db.Column(enum_column_type(AuditOutcome), nullable=False, default=AuditOutcome.OK)

    # What it refers to (generic pointer)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.String(64), nullable=True)

    performed_by = db.Column(db.String(64), nullable=False)
    performed_by_name = db.Column(db.String(255), nullable=True)

    details = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bill_id": self.bill_id,
            "branch_id": self.branch_id,
            "action": self.action,
            "outcome": self.outcome.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "performed_by": self.performed_by,
            "performed_by_name": self.performed_by_name,
            "details": self.details,
            "timestamp": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-branch document sequences.

    WHY: Prevent race conditions when generating bill document numbers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "document_type", name="uq_doc_sequences_branch_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.String(64), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
