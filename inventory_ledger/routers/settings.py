from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from inventory_ledger.config import settings
from inventory_ledger.db import get_db
from inventory_ledger.dependencies import get_margin_table, http_error
from inventory_ledger.errors import LedgerError
from inventory_ledger.services.currency_service import (
    list_exchange_rates,
    record_exchange_rate,
    resolve_exchange_rate,
)
from inventory_ledger.services.pricing_service import DEFAULT_MARGIN_KEY, MarginTable, save_margin_table

router = APIRouter(prefix='/settings', tags=['settings'])


class ExchangeRatePayload(BaseModel):
    rate: Decimal
    effective_date: date
    notes: str | None = None


def _margin_view(table: MarginTable) -> dict:
    view = {DEFAULT_MARGIN_KEY: table.default}
    view.update({str(category_id): margin for category_id, margin in table.by_category.items()})
    return view


@router.get('/exchange-rates')
def exchange_rates_page(db: Session = Depends(get_db)):
    return list_exchange_rates(db)


@router.post('/exchange-rates', status_code=201)
def add_exchange_rate(payload: ExchangeRatePayload, db: Session = Depends(get_db)):
    try:
        row = record_exchange_rate(db, rate=payload.rate, effective_date=payload.effective_date, notes=payload.notes)
    except LedgerError as exc:
        raise http_error(exc) from exc
    db.commit()
    return {'id': row.id, 'rate': row.rate, 'effective_date': row.effective_date, 'notes': row.notes}


@router.get('/exchange-rates/current')
def current_exchange_rate(on: date | None = None, db: Session = Depends(get_db)):
    reference_date = on or date.today()
    try:
        rate = resolve_exchange_rate(db, reference_date=reference_date)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return {'rate': rate, 'reference_date': reference_date}


@router.get('/profit-margins')
def profit_margins_page(margins: MarginTable = Depends(get_margin_table)):
    return _margin_view(margins)


@router.put('/profit-margins')
def update_profit_margins(payload: dict[str, Decimal | None], db: Session = Depends(get_db)):
    try:
        table = save_margin_table(db, margins=payload, fallback_default=settings.default_profit_margin)
    except LedgerError as exc:
        raise http_error(exc) from exc
    db.commit()
    return _margin_view(table)
