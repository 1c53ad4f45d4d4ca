# Overview: Atomic per-day document number allocation.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import period_key


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    period_format: str = "%Y%m%d",
    pad: int = 4,
    separator: str = "-",
) -> str:
    """
    Allocate the next number for a document type within today's period.

    The counter row is bumped with a single UPDATE ... SET next_number =
    next_number + 1, so two concurrent allocations never observe the same
    value. The first allocation of a period inserts the row inside a
    SAVEPOINT; losing that insert race falls back to the UPDATE path.

    Runs inside the caller's unit of work (flush only). A rollback of the
    caller releases nothing: gaps in numbering are acceptable, duplicates
    are not.

    Examples:
        TRF-20261019-0001  (prefix="TRF")
        S261019-0001       (prefix="S", period_format="%y%m%d", separator="")
        RET-261019-001     (prefix="RET", period_format="%y%m%d", pad=3)
    """
    if not document_type:
        raise ValidationError("document_type is required")

    period = period_key(fmt=period_format)

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    def _allocated() -> int:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type, period=period)
            .scalar()
        )
        return current - 1

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _allocated()
    else:
        try:
            with db.session.begin_nested():
                db.session.add(
                    DocumentSequence(document_type=document_type, period=period, next_number=2)
                )
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _allocated()

    return f"{prefix}{separator}{period}-{next_num:0{pad}d}"
