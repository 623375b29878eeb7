from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from inventory_ledger.config import settings
from inventory_ledger.db import get_db
from inventory_ledger.errors import (
    InsufficientStock,
    InvalidStateTransition,
    LedgerError,
    LockTimeout,
    NotFound,
    ValidationError,
)
from inventory_ledger.services.pricing_service import MarginTable, load_margin_table

STATUS_BY_ERROR: tuple[tuple[type[LedgerError], int], ...] = (
    (NotFound, 404),
    (InsufficientStock, 409),
    (InvalidStateTransition, 409),
    (LockTimeout, 503),
    (ValidationError, 400),
)


def http_error(exc: LedgerError) -> HTTPException:
    status_code = next((code for error_cls, code in STATUS_BY_ERROR if isinstance(exc, error_cls)), 400)
    detail = {'error': type(exc).__name__, 'message': exc.message}
    detail.update(exc.context())
    return HTTPException(status_code=status_code, detail=detail)


def get_margin_table(db: Session = Depends(get_db)) -> MarginTable:
    try:
        return load_margin_table(db, fallback_default=settings.default_profit_margin)
    except LedgerError as exc:
        raise http_error(exc) from exc
