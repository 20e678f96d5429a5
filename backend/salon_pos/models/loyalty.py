from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .enums import LoyaltyEntryType, enum_column_type


class ClientProfile(db.Model):
    """
    CRM profile for a client, created on first loyalty activity.

    Denormalized aggregates (visit_count, total_spent_cents, last_visit_at)
    are updated when bills are created.
    """
    __tablename__ = "client_profiles"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=True)

    visit_count = db.Column(db.Integer, nullable=False, default=0)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)
    last_visit_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "name": self.name,
            "visit_count": self.visit_count,
            "total_spent_cents": self.total_spent_cents,
            "last_visit_at": to_utc_z(self.last_visit_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LoyaltyAccount(db.Model):
    """
    Branch-scoped loyalty balance for a client.

    points_balance is a cached projection of the account's log entries and
    must always equal their running sum. Mutated only by the loyalty service.
    """
    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        db.UniqueConstraint("client_id", "branch_id", name="uq_loyalty_accounts_client_branch"),
        db.CheckConstraint("points_balance >= 0", name="ck_loyalty_accounts_balance_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.String(64), nullable=False, index=True)
    branch_id = db.Column(db.String(64), nullable=False, index=True)

    points_balance = db.Column(db.Integer, nullable=False, default=0)
    lifetime_points_earned = db.Column(db.Integer, nullable=False, default=0)
    lifetime_points_redeemed = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "branch_id": self.branch_id,
            "points_balance": self.points_balance,
            "lifetime_points_earned": self.lifetime_points_earned,
            "lifetime_points_redeemed": self.lifetime_points_redeemed,
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class LoyaltyLogEntry(db.Model):
    """
    Append-only ledger of loyalty point events.

    points is signed: positive for EARNED, negative for REDEEMED.
    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "loyalty_log_entries"
    __table_args__ = (
        db.Index("ix_loyalty_log_client_branch_created", "client_id", "branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("loyalty_accounts.id"), nullable=False, index=True)
    client_id = db.Column(db.String(64), nullable=False)
    branch_id = db.Column(db.String(64), nullable=False)

    entry_type = db.Column(enum_column_type(LoyaltyEntryType), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False)
    resulting_balance = db.Column(db.Integer, nullable=False)

    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=True, index=True)
    amount_cents = db.Column(db.Integer, nullable=True)
    discount_cents = db.Column(db.Integer, nullable=True)
    description = db.Column(db.String(255), nullable=True)

    performed_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    account = db.relationship("LoyaltyAccount", backref=db.backref("entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "client_id": self.client_id,
            "branch_id": self.branch_id,
            "type": self.entry_type.value,
            "points": self.points,
            "resulting_balance": self.resulting_balance,
            "bill_id": self.bill_id,
            "amount_cents": self.amount_cents,
            "discount_cents": self.discount_cents,
            "description": self.description,
            "performed_by": self.performed_by,
            "created_at": to_utc_z(self.created_at),
        }
