# Overview: Service-layer operations for document numbering; allocates invoice and refund numbers.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


def _allocate(scope: str) -> int:
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.scope == scope)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        seq = DocumentSequence(scope=scope, next_number=2)
        try:
            # Savepoint: losing the insert race must not undo the caller's work
            with db.session.begin_nested():
                db.session.add(seq)
            return 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(scope=scope)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    prefix: str,
    on: datetime | None = None,
    pad: int = 3,
) -> str:
    """
    Atomically allocate the next number for a prefix and day,
    e.g. INV-20261019-001.

    Must run inside the caller's transaction so the number is only
    consumed when the document itself commits. The unique constraint on
    the document table is the final guard.
    """
    day = (on or utcnow()).strftime("%Y%m%d")
    scope = f"{prefix}-{day}"
    number = _allocate(scope)
    return f"{scope}-{number:0{pad}d}"
