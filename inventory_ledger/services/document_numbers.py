from __future__ import annotations

from datetime import date

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_ledger.models import DocumentCounter


def _bump(db: Session, *, prefix: str, on: date) -> bool:
    result = db.execute(
        update(DocumentCounter)
        .where(DocumentCounter.prefix == prefix, DocumentCounter.day == on)
        .values(last_value=DocumentCounter.last_value + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def next_document_number(db: Session, *, prefix: str, on: date) -> str:
    """``{PREFIX}-{YYYYMMDD}-{NNNN}``, numbered per day from a locked counter row."""
    if not _bump(db, prefix=prefix, on=on):
        try:
            with db.begin_nested():
                db.add(DocumentCounter(prefix=prefix, day=on, last_value=1))
                db.flush()
        except IntegrityError:
            # A concurrent writer created today's row first; its lock is released by now.
            if not _bump(db, prefix=prefix, on=on):
                raise
    # The counter row stays locked until the caller's transaction ends.
    seq = db.execute(
        select(DocumentCounter.last_value).where(DocumentCounter.prefix == prefix, DocumentCounter.day == on)
    ).scalar_one()
    return f'{prefix}-{on.strftime("%Y%m%d")}-{seq:04d}'
