from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_ledger.errors import ValidationError
from inventory_ledger.models import ExchangeRate
from inventory_ledger.services.transactions import write_unit

NGN_QUANT = Decimal('0.01')


@dataclass(frozen=True)
class RatePoint:
    rate: Decimal
    effective_date: date


def _as_decimal(value, *, field: str) -> Decimal:
    try:
        parsed = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f'Invalid {field}', field=field) from exc
    if not parsed.is_finite():
        raise ValidationError(f'Invalid {field}', field=field)
    return parsed


def validate_rate(rate) -> Decimal:
    parsed = _as_decimal(rate, field='exchange_rate')
    if parsed <= 0:
        raise ValidationError('Exchange rate must be greater than zero', field='exchange_rate')
    return parsed


def to_ngn(usd, rate) -> Decimal:
    amount = _as_decimal(usd, field='amount_usd')
    return (amount * validate_rate(rate)).quantize(NGN_QUANT, rounding=ROUND_HALF_UP)


def select_rate(points: Iterable[RatePoint], reference_date: date) -> Decimal | None:
    # Later entries win ties on the same effective date.
    chosen: RatePoint | None = None
    for point in points:
        if point.effective_date > reference_date:
            continue
        if chosen is None or point.effective_date >= chosen.effective_date:
            chosen = point
    return chosen.rate if chosen else None


def resolve_exchange_rate(db: Session, *, reference_date: date, explicit_rate=None) -> Decimal:
    if explicit_rate is not None:
        return validate_rate(explicit_rate)

    rows = db.execute(
        select(ExchangeRate.rate, ExchangeRate.effective_date)
        .where(ExchangeRate.effective_date <= reference_date)
        .order_by(ExchangeRate.effective_date.asc(), ExchangeRate.id.asc())
    ).all()
    rate = select_rate(
        (RatePoint(rate=Decimal(row.rate), effective_date=row.effective_date) for row in rows), reference_date
    )
    if rate is None:
        raise ValidationError(
            f'No exchange rate is effective on {reference_date.isoformat()}; supply a rate explicitly',
            field='exchange_rate',
        )
    return rate


def record_exchange_rate(db: Session, *, rate, effective_date: date, notes: str | None = None) -> ExchangeRate:
    row = ExchangeRate(
        rate=validate_rate(rate),
        effective_date=effective_date,
        notes=(notes or '').strip() or None,
    )
    with write_unit(db, entity='exchange_rate'):
        db.add(row)
        db.flush()
    return row


def list_exchange_rates(db: Session, *, limit: int = 50) -> list[dict]:
    rows = db.execute(
        select(ExchangeRate).order_by(ExchangeRate.effective_date.desc(), ExchangeRate.id.desc()).limit(limit)
    ).scalars().all()
    return [
        {
            'id': row.id,
            'rate': row.rate,
            'effective_date': row.effective_date,
            'notes': row.notes,
        }
        for row in rows
    ]
