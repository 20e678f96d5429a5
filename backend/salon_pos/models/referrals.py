from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class ReferralCode(db.Model):
    """
    Branch-gated referral token.

    At most one code per (client, branch); codes are globally unique.
    Issued only once the client has a PAID bill at the branch.
    """
    __tablename__ = "referral_codes"
    __table_args__ = (
        db.UniqueConstraint("client_id", "branch_id", name="uq_referral_codes_client_branch"),
        db.UniqueConstraint("code", name="uq_referral_codes_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.String(64), nullable=False, index=True)
    branch_id = db.Column(db.String(64), nullable=False, index=True)
    code = db.Column(db.String(32), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "branch_id": self.branch_id,
            "referral_code": self.code,
            "created_at": to_utc_z(self.created_at),
        }


class ReferralRecord(db.Model):
    """
    A processed referral.

    FRAUD PREVENTION: a new client can be referred at most once per branch,
    no matter how many codes exist.
    """
    __tablename__ = "referral_records"
    __table_args__ = (
        db.UniqueConstraint("new_client_id", "branch_id", name="uq_referral_records_client_branch"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    new_client_id = db.Column(db.String(64), nullable=False, index=True)
    branch_id = db.Column(db.String(64), nullable=False, index=True)
    referrer_id = db.Column(db.String(64), nullable=False, index=True)
    code = db.Column(db.String(32), nullable=False)

    referrer_points = db.Column(db.Integer, nullable=False, default=0)
    referred_points = db.Column(db.Integer, nullable=False, default=0)

    processed_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "new_client_id": self.new_client_id,
            "branch_id": self.branch_id,
            "referrer_id": self.referrer_id,
            "referral_code": self.code,
            "referrer_points": self.referrer_points,
            "referred_points": self.referred_points,
            "processed_by": self.processed_by,
            "processed_at": to_utc_z(self.created_at),
        }
