# Overview: Per-branch document numbering for bills.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _current_number(branch_id: str, document_type: str) -> int:
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(branch_id=branch_id, document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    branch_id: str,
    document_type: str,
    prefix: str,
    pad: int = 4,
) -> str:
    """
    Allocate the next document number for a branch/type.

    Runs inside the caller's transaction: the counter bump commits (or rolls
    back) together with the document that uses it. The UPDATE takes a row
    lock on (branch_id, document_type) so concurrent callers serialize.
    """
    if not branch_id:
        raise DocumentSequenceError("branch_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.branch_id == branch_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        next_num = _current_number(branch_id, document_type)
    else:
        seq = DocumentSequence(branch_id=branch_id, document_type=document_type, next_number=2)
        try:
            with db.session.begin_nested():
                db.session.add(seq)
            next_num = 1
        except IntegrityError:
            # Another writer created the sequence first
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            db.session.flush()
            next_num = _current_number(branch_id, document_type)

    return f"{prefix}-{branch_id.upper()[:12]}-{next_num:0{pad}d}"
