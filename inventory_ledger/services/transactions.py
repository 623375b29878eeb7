from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from inventory_ledger.errors import LockTimeout

logger = logging.getLogger(__name__)

# PostgreSQL lock_not_available and deadlock_detected.
LOCK_SQLSTATES = frozenset({'55P03', '40P01'})


def is_lock_timeout(exc: OperationalError) -> bool:
    if getattr(exc.orig, 'sqlstate', None) in LOCK_SQLSTATES:
        return True
    return 'database is locked' in str(exc.orig).lower()


@contextmanager
def write_unit(db: Session, *, entity: str, entity_id: int | None = None) -> Iterator[None]:
    # One savepoint per write operation; a lock wait that runs out surfaces as LockTimeout.
    try:
        with db.begin_nested():
            yield
    except OperationalError as exc:
        if not is_lock_timeout(exc):
            raise
        logger.warning('Lock wait expired for %s %s: %s', entity, entity_id, exc.orig)
        raise LockTimeout(entity=entity, entity_id=entity_id) from exc
