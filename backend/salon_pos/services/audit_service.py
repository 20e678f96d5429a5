# Overview: Append-only audit log for every mutating action in the core.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..identity import Actor, resolve_actor
from ..models import AuditLogEntry, AuditOutcome
"""
Audit Log Invariants (authoritative)

- Append-only: entries are never updated or deleted.
- Never read by business logic; exists for compliance and forensics.
- Writing an entry must never block or fail the operation it describes:
  the insert runs in a SAVEPOINT and any error is logged and swallowed.
- The entry joins the caller's transaction; it is committed (or rolled back)
  together with the work it describes.
"""


def append_audit_entry(
    *,
    action: str,
    entity_type: str,
    entity_id=None,
    actor: Actor | None = None,
    branch_id: str | None = None,
    bill_id: int | None = None,
    outcome: AuditOutcome = AuditOutcome.OK,
    details: str | None = None,
) -> AuditLogEntry | None:
    """Append one audit entry; returns None if the write failed."""
    actor = resolve_actor(actor)
    try:
        with db.session.begin_nested():
            entry = AuditLogEntry(
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id is not None else None,
                performed_by=actor.id,
                performed_by_name=actor.name,
                branch_id=branch_id,
                bill_id=bill_id,
                outcome=outcome,
                details=(details or "")[:2000] or None,
            )
            db.session.add(entry)
            db.session.flush()
        return entry
    except Exception:
        current_app.logger.exception("Failed to write audit entry for %s", action)
        return None


def record_audit_entry(**kwargs) -> AuditLogEntry | None:
    """Append an audit entry in its own transaction (after a rollback)."""
    entry = append_audit_entry(**kwargs)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to commit audit entry for %s", kwargs.get("action"))
        return None
    return entry


def get_bill_audit_log(bill_id: int) -> list[AuditLogEntry]:
    return (
        db.session.query(AuditLogEntry)
        .filter(AuditLogEntry.bill_id == bill_id)
        .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .all()
    )


def get_branch_audit_log(branch_id: str, limit: int = 100) -> list[AuditLogEntry]:
    limit = min(max(limit, 1), 500)
    return (
        db.session.query(AuditLogEntry)
        .filter(AuditLogEntry.branch_id == branch_id)
        .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .limit(limit)
        .all()
    )
