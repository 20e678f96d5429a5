# Overview: Branch-scoped loyalty point ledger and client CRM aggregates.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..identity import Actor, resolve_actor
from ..models import ClientProfile, LoyaltyAccount, LoyaltyEntryType, LoyaltyLogEntry
from ..time_utils import utcnow
from .audit_service import append_audit_entry
from .concurrency import lock_for_update, run_with_retry
"""
Loyalty Ledger Invariants (authoritative)

- Balances are per (client_id, branch_id); points earned at one branch are
  never spendable at another.
- LoyaltyLogEntry is append-only. Every balance change writes exactly one
  entry whose resulting_balance is the new balance.
- points_balance == SUM(entry.points) for the account at all times, and is
  never negative.
- Redemption is read-before-write on a versioned row: a concurrent change to
  the same account raises StaleDataError and the redemption re-runs against
  the fresh balance, so two redemptions cannot both spend the same points.
"""


class LoyaltyError(Exception):
    """Raised for loyalty operation errors."""
    code = "LOYALTY_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientPointsError(LoyaltyError):
    code = "INSUFFICIENT_POINTS"


@dataclass(frozen=True)
class BalanceCheck:
    client_id: str
    branch_id: str
    balance: int
    log_sum: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.log_sum


def _require_ids(client_id: str, branch_id: str) -> None:
    if not client_id:
        raise LoyaltyError("client_id is required")
    if not branch_id:
        raise LoyaltyError("branch_id is required for loyalty operations")


def _earn_rate(rate) -> Decimal:
    if rate is None:
        rate = current_app.config["LOYALTY_POINTS_PER_CURRENCY_UNIT"]
    return Decimal(str(rate))


def _point_value_cents(point_value_cents) -> int:
    if point_value_cents is None:
        point_value_cents = current_app.config["LOYALTY_POINT_VALUE_CENTS"]
    return int(point_value_cents)


def points_for_amount(amount_cents: int, rate=None) -> int:
    """floor(amount x rate), amount in currency units."""
    amount = Decimal(int(amount_cents)) / Decimal(100)
    points = (amount * _earn_rate(rate)).to_integral_value(rounding=ROUND_FLOOR)
    return int(points)


# =============================================================================
# CLIENT PROFILE
# =============================================================================

def ensure_client_profile(client_id: str, name: str | None = None) -> ClientProfile:
    """Return the client's CRM profile, creating it on first use."""
    profile = db.session.query(ClientProfile).filter_by(client_id=client_id).first()
    if profile:
        if name and not profile.name:
            profile.name = name
        return profile

    profile = ClientProfile(client_id=client_id, name=name, visit_count=0, total_spent_cents=0)
    try:
        with db.session.begin_nested():
            db.session.add(profile)
    except IntegrityError:
        profile = db.session.query(ClientProfile).filter_by(client_id=client_id).one()
    return profile


def record_client_visit(
    client_id: str,
    *,
    service_count: int,
    service_total_cents: int,
    name: str | None = None,
    commit: bool = True,
) -> ClientProfile:
    """Bump visit aggregates after a sale (one visit per service performed)."""
    def _op():
        profile = ensure_client_profile(client_id, name=name)
        profile.visit_count = (profile.visit_count or 0) + service_count
        profile.total_spent_cents = (profile.total_spent_cents or 0) + service_total_cents
        profile.last_visit_at = utcnow()
        db.session.flush()
        if commit:
            db.session.commit()
        return profile

    if not commit:
        return _op()
    return run_with_retry(_op)


# =============================================================================
# ACCOUNTS
# =============================================================================

def _find_account(client_id: str, branch_id: str, *, lock: bool = False) -> LoyaltyAccount | None:
    q = db.session.query(LoyaltyAccount).filter_by(client_id=client_id, branch_id=branch_id)
    if lock:
        q = lock_for_update(q)
    return q.first()


def _get_or_create_account(client_id: str, branch_id: str) -> LoyaltyAccount:
    account = _find_account(client_id, branch_id, lock=True)
    if account:
        return account

    account = LoyaltyAccount(
        client_id=client_id,
        branch_id=branch_id,
        points_balance=0,
        lifetime_points_earned=0,
        lifetime_points_redeemed=0,
    )
    try:
        with db.session.begin_nested():
            db.session.add(account)
    except IntegrityError:
        # Created concurrently; use the winner's row
        account = _find_account(client_id, branch_id, lock=True)
    return account


def _append_entry(
    account: LoyaltyAccount,
    *,
    entry_type: LoyaltyEntryType,
    points: int,
    actor: Actor,
    bill_id: int | None = None,
    amount_cents: int | None = None,
    discount_cents: int | None = None,
    description: str | None = None,
) -> LoyaltyLogEntry:
    new_balance = account.points_balance + points
    if new_balance < 0:
        raise InsufficientPointsError(
            "Insufficient loyalty points",
            {"available": account.points_balance, "requested": -points},
        )

    account.points_balance = new_balance
    if points > 0:
        account.lifetime_points_earned += points
    else:
        account.lifetime_points_redeemed += -points

    entry = LoyaltyLogEntry(
        account=account,
        client_id=account.client_id,
        branch_id=account.branch_id,
        entry_type=entry_type,
        points=points,
        resulting_balance=new_balance,
        bill_id=bill_id,
        amount_cents=amount_cents,
        discount_cents=discount_cents,
        description=description,
        performed_by=actor.id,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


# =============================================================================
# READS
# =============================================================================

def get_loyalty_points(client_id: str, branch_id: str) -> int:
    """Current branch balance; 0 when the client has no account there."""
    if not client_id or not branch_id:
        return 0
    balance = (
        db.session.query(LoyaltyAccount.points_balance)
        .filter_by(client_id=client_id, branch_id=branch_id)
        .scalar()
    )
    return int(balance or 0)


def get_all_branch_loyalty_points(client_id: str) -> list[LoyaltyAccount]:
    return (
        db.session.query(LoyaltyAccount)
        .filter_by(client_id=client_id)
        .order_by(LoyaltyAccount.branch_id.asc())
        .all()
    )


def get_loyalty_history(
    client_id: str,
    branch_id: str | None = None,
    limit: int = 50,
) -> list[LoyaltyLogEntry]:
    q = db.session.query(LoyaltyLogEntry).filter(LoyaltyLogEntry.client_id == client_id)
    if branch_id:
        q = q.filter(LoyaltyLogEntry.branch_id == branch_id)
    limit = min(max(limit, 1), 500)
    return q.order_by(LoyaltyLogEntry.created_at.desc(), LoyaltyLogEntry.id.desc()).limit(limit).all()


def verify_loyalty_balance(client_id: str, branch_id: str) -> BalanceCheck:
    """Compare the cached balance with the running sum of its log."""
    balance = get_loyalty_points(client_id, branch_id)
    log_sum = (
        db.session.query(func.coalesce(func.sum(LoyaltyLogEntry.points), 0))
        .filter(
            LoyaltyLogEntry.client_id == client_id,
            LoyaltyLogEntry.branch_id == branch_id,
        )
        .scalar()
    )
    return BalanceCheck(client_id=client_id, branch_id=branch_id, balance=balance, log_sum=int(log_sum or 0))


# =============================================================================
# EARN / REDEEM / GRANT
# =============================================================================

def earn_loyalty_points(
    client_id: str,
    branch_id: str,
    amount_cents: int,
    bill_id: int | None = None,
    rate=None,
    *,
    actor: Actor | None = None,
    audit: bool = True,
    commit: bool = True,
) -> int:
    """
    Earn floor(amount x rate) points at a branch.

    Returns the points credited; 0 (and nothing written) when the amount
    earns less than one point.
    """
    _require_ids(client_id, branch_id)
    actor = resolve_actor(actor)
    points = points_for_amount(amount_cents, rate)
    if points <= 0:
        return 0

    def _op():
        ensure_client_profile(client_id)
        account = _get_or_create_account(client_id, branch_id)
        entry = _append_entry(
            account,
            entry_type=LoyaltyEntryType.EARNED,
            points=points,
            actor=actor,
            bill_id=bill_id,
            amount_cents=amount_cents,
            description=f"Earned {points} points from transaction at branch",
        )
        if audit:
            append_audit_entry(
                action="loyalty.earn",
                entity_type="loyalty_account",
                entity_id=account.id,
                actor=actor,
                branch_id=branch_id,
                bill_id=bill_id,
                details=f"Client {client_id} earned {points} points (balance {entry.resulting_balance})",
            )
        if commit:
            db.session.commit()
        return points

    if not commit:
        return _op()
    return run_with_retry(_op)


def redeem_loyalty_points(
    client_id: str,
    branch_id: str,
    points: int,
    bill_id: int | None = None,
    point_value_cents: int | None = None,
    *,
    actor: Actor | None = None,
    audit: bool = True,
    commit: bool = True,
) -> int:
    """
    Spend points at a branch. Returns the discount in cents.

    Raises InsufficientPointsError (nothing written) if the branch balance
    is lower than points.
    """
    _require_ids(client_id, branch_id)
    actor = resolve_actor(actor)
    if points <= 0:
        return 0
    discount_cents = points * _point_value_cents(point_value_cents)

    def _op():
        account = _find_account(client_id, branch_id, lock=True)
        available = account.points_balance if account else 0
        if account is None or available < points:
            raise InsufficientPointsError(
                f"Insufficient loyalty points. Available: {available}, Required: {points}",
                {"available": available, "requested": points},
            )
        entry = _append_entry(
            account,
            entry_type=LoyaltyEntryType.REDEEMED,
            points=-points,
            actor=actor,
            bill_id=bill_id,
            discount_cents=discount_cents,
            description=f"Redeemed {points} points for {discount_cents / 100:.2f} discount at branch",
        )
        if audit:
            append_audit_entry(
                action="loyalty.redeem",
                entity_type="loyalty_account",
                entity_id=account.id,
                actor=actor,
                branch_id=branch_id,
                bill_id=bill_id,
                details=f"Client {client_id} redeemed {points} points (balance {entry.resulting_balance})",
            )
        if commit:
            db.session.commit()
        return discount_cents

    if not commit:
        return _op()
    return run_with_retry(_op)


def grant_loyalty_points(
    client_id: str,
    branch_id: str,
    points: int,
    description: str,
    *,
    actor: Actor | None = None,
    audit: bool = True,
    commit: bool = True,
) -> LoyaltyLogEntry:
    """Credit a fixed number of points (referral rewards, promotional grants)."""
    _require_ids(client_id, branch_id)
    if points <= 0:
        raise LoyaltyError("points must be positive", {"points": points})
    actor = resolve_actor(actor)

    def _op():
        ensure_client_profile(client_id)
        account = _get_or_create_account(client_id, branch_id)
        entry = _append_entry(
            account,
            entry_type=LoyaltyEntryType.EARNED,
            points=points,
            actor=actor,
            description=description,
        )
        if audit:
            append_audit_entry(
                action="loyalty.grant",
                entity_type="loyalty_account",
                entity_id=account.id,
                actor=actor,
                branch_id=branch_id,
                details=f"Granted {points} points to client {client_id}: {description}",
            )
        if commit:
            db.session.commit()
        return entry

    if not commit:
        return _op()
    return run_with_retry(_op)
