# Overview: Service-layer operations for human-readable document numbers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


def _bump(document_type: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(*, document_type: str, prefix: str, pad: int = 6, is_taken=None) -> str:
    """
    Allocate the next number for document_type, e.g. "ORD-000042".

    Runs inside the caller's transaction and does not commit: the number is
    only consumed if the document that uses it commits too. Call it before
    any other write in the transaction; a lost race on the first allocation
    rolls the transaction back and re-reads the sequence.

    is_taken(candidate) -> bool lets the caller skip numbers that already
    exist outside the sequence (for example supplied by hand); the skipped
    values are consumed together with the returned one.
    """
    next_num = _bump(document_type)
    if next_num is None:
        seq = DocumentSequence(document_type=document_type, next_number=2)
        db.session.add(seq)
        try:
            db.session.flush()
            next_num = 1
        except IntegrityError:
            db.session.rollback()
            next_num = _bump(document_type)
            if next_num is None:
                raise

    candidate = f"{prefix}-{next_num:0{pad}d}"
    while is_taken is not None and is_taken(candidate):
        candidate = f"{prefix}-{_bump(document_type):0{pad}d}"
    return candidate
