# Overview: Branch-gated referral codes and one-time referral rewards.

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..identity import Actor, resolve_actor
from ..models import Bill, BillStatus, ReferralCode, ReferralRecord
from .audit_service import append_audit_entry
from .concurrency import run_with_retry
from .loyalty_service import grant_loyalty_points
"""
Referral Program Invariants (authoritative)

- A client gets a code for a branch only after a PAID bill at that branch.
- At most one code per (client, branch); codes are globally unique. Both are
  database constraints. A code collision regenerates the random suffix.
- A new client is referred at most once per branch (unique constraint on
  referral_records). The record and both point credits commit together.
- Rewards are loyalty points at the code's branch, never elsewhere.
"""

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


class ReferralError(Exception):
    """Raised for referral operation errors."""
    code = "REFERRAL_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InvalidCodeError(ReferralError):
    code = "INVALID_CODE"


class BranchMismatchError(ReferralError):
    code = "BRANCH_MISMATCH"


class SelfReferralError(ReferralError):
    code = "SELF_REFERRAL"


class AlreadyProcessedError(ReferralError):
    code = "ALREADY_PROCESSED"


@dataclass(frozen=True)
class ReferralResult:
    referrer_id: str
    new_client_id: str
    branch_id: str
    referral_code: str
    referrer_points: int
    referred_points: int
    record_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "success": True,
            "referrer_id": self.referrer_id,
            "new_client_id": self.new_client_id,
            "branch_id": self.branch_id,
            "referral_code": self.referral_code,
            "referrer_points": self.referrer_points,
            "referred_points": self.referred_points,
            "record_id": self.record_id,
        }


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def has_visited_branch(client_id: str, branch_id: str) -> bool:
    """True when the client has at least one PAID bill at the branch."""
    if not client_id or not branch_id:
        return False
    bill_id = (
        db.session.query(Bill.id)
        .filter(
            Bill.client_id == client_id,
            Bill.branch_id == branch_id,
            Bill.status == BillStatus.PAID,
        )
        .first()
    )
    return bill_id is not None


def generate_referral_code(client_id: str, branch_id: str, suffix_length: int | None = None) -> str:
    """Client prefix + branch prefix + random alphanumeric suffix, upper-cased."""
    if suffix_length is None:
        suffix_length = current_app.config["REFERRAL_CODE_SUFFIX_LENGTH"]
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(suffix_length))
    return f"{client_id[:4]}{branch_id[:4]}".upper() + suffix


def _find_code(client_id: str, branch_id: str) -> ReferralCode | None:
    return db.session.query(ReferralCode).filter_by(client_id=client_id, branch_id=branch_id).first()


def get_referral_code(client_id: str, branch_id: str, *, actor: Actor | None = None) -> str | None:
    """
    The client's code for a branch, generated on first request.

    Returns None when the client is not eligible (no PAID bill at the branch).
    An already-issued code is returned regardless of eligibility.
    """
    if not client_id or not branch_id:
        return None

    existing = _find_code(client_id, branch_id)
    if existing:
        return existing.code

    if not has_visited_branch(client_id, branch_id):
        current_app.logger.info(
            "Client %s has not visited branch %s; no referral code issued", client_id, branch_id
        )
        return None

    max_attempts = max(1, current_app.config["REFERRAL_CODE_MAX_ATTEMPTS"])
    for _ in range(max_attempts):
        candidate = generate_referral_code(client_id, branch_id)
        row = ReferralCode(client_id=client_id, branch_id=branch_id, code=candidate)
        try:
            with db.session.begin_nested():
                db.session.add(row)
        except IntegrityError:
            # Either the code collided or a concurrent request issued one for this pair
            existing = _find_code(client_id, branch_id)
            if existing:
                return existing.code
            continue

        append_audit_entry(
            action="referral.code_issued",
            entity_type="referral_code",
            entity_id=row.id,
            actor=actor,
            branch_id=branch_id,
            details=f"Referral code {candidate} issued to client {client_id}",
        )
        db.session.commit()
        return candidate

    raise ReferralError(
        "Could not generate a unique referral code",
        {"client_id": client_id, "branch_id": branch_id, "attempts": max_attempts},
    )


def get_all_referral_codes(client_id: str) -> list[ReferralCode]:
    return (
        db.session.query(ReferralCode)
        .filter_by(client_id=client_id)
        .order_by(ReferralCode.branch_id.asc())
        .all()
    )


def validate_referral_code(code: str | None) -> ReferralCode | None:
    """Look up a code (case and whitespace insensitive). None if unknown."""
    normalized = normalize_code(code)
    if not normalized:
        return None
    return db.session.query(ReferralCode).filter_by(code=normalized).first()


def process_referral(
    new_client_id: str,
    code: str,
    branch_id: str | None = None,
    *,
    actor: Actor | None = None,
) -> ReferralResult:
    """
    Apply a referral code for a new client.

    Checks, in order: the code exists, it belongs to branch_id (when given),
    it is not the new client's own code, and the new client has not already
    been referred at that branch. Any failure raises and nothing is written.
    """
    actor = resolve_actor(actor)
    if not new_client_id:
        raise ReferralError("new_client_id is required")

    normalized = normalize_code(code)
    referral = validate_referral_code(normalized)
    if referral is None:
        raise InvalidCodeError("Invalid referral code", {"referral_code": normalized})

    if branch_id and referral.branch_id != branch_id:
        raise BranchMismatchError(
            "Referral code is not valid for this branch",
            {"code_branch_id": referral.branch_id, "branch_id": branch_id},
        )

    if referral.client_id == new_client_id:
        raise SelfReferralError("Cannot use your own referral code", {"client_id": new_client_id})

    target_branch = referral.branch_id
    referrer_id = referral.client_id
    already = (
        db.session.query(ReferralRecord.id)
        .filter_by(new_client_id=new_client_id, branch_id=target_branch)
        .first()
    )
    if already is not None:
        raise AlreadyProcessedError(
            "Client has already been referred at this branch",
            {"new_client_id": new_client_id, "branch_id": target_branch},
        )

    referrer_points = int(current_app.config["REFERRER_REWARD_POINTS"])
    referred_points = int(current_app.config["REFERRED_REWARD_POINTS"])

    def _op():
        # Plain flush, not a savepoint: the record must stay uncommitted until
        # both credits are in, so a failed grant or a retry leaves no record.
        record = ReferralRecord(
            new_client_id=new_client_id,
            branch_id=target_branch,
            referrer_id=referrer_id,
            code=normalized,
            referrer_points=referrer_points,
            referred_points=referred_points,
            processed_by=actor.id,
        )
        db.session.add(record)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise AlreadyProcessedError(
                "Client has already been referred at this branch",
                {"new_client_id": new_client_id, "branch_id": target_branch},
            )

        if referrer_points > 0:
            grant_loyalty_points(
                referrer_id,
                target_branch,
                referrer_points,
                f"Referral reward for referring client {new_client_id}",
                actor=actor,
                audit=False,
                commit=False,
            )
        if referred_points > 0:
            grant_loyalty_points(
                new_client_id,
                target_branch,
                referred_points,
                f"Welcome reward for joining with referral code {normalized}",
                actor=actor,
                audit=False,
                commit=False,
            )

        append_audit_entry(
            action="referral.process",
            entity_type="referral_record",
            entity_id=record.id,
            actor=actor,
            branch_id=target_branch,
            details=(
                f"Client {new_client_id} referred by {referrer_id} with code {normalized}: "
                f"{referrer_points}/{referred_points} points"
            ),
        )
        db.session.commit()
        return ReferralResult(
            referrer_id=referrer_id,
            new_client_id=new_client_id,
            branch_id=target_branch,
            referral_code=normalized,
            referrer_points=referrer_points,
            referred_points=referred_points,
            record_id=record.id,
        )

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def get_referral_stats(client_id: str, branch_id: str | None = None) -> dict:
    """Referrals made by client_id, optionally limited to one branch."""
    q = db.session.query(ReferralRecord).filter(ReferralRecord.referrer_id == client_id)
    if branch_id:
        q = q.filter(ReferralRecord.branch_id == branch_id)
    records = q.order_by(ReferralRecord.created_at.desc(), ReferralRecord.id.desc()).all()
    return {
        "client_id": client_id,
        "branch_id": branch_id,
        "total_referrals": len(records),
        "points_earned": sum(r.referrer_points for r in records),
        "referrals": [r.to_dict() for r in records],
    }
