from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_ledger.errors import ValidationError
from inventory_ledger.models import Setting
from inventory_ledger.services.transactions import write_unit

PROFIT_MARGINS_KEY = 'profit_margins'
DEFAULT_MARGIN_KEY = 'default'
PRICE_QUANT = Decimal('0.01')


@dataclass(frozen=True)
class MarginTable:
    default: Decimal
    by_category: dict[int, Decimal] = field(default_factory=dict)

    def resolve(self, category_id: int | None) -> Decimal:
        if category_id is not None and category_id in self.by_category:
            return self.by_category[category_id]
        return self.default


def _margin(value, *, key: str) -> Decimal:
    try:
        parsed = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f'Invalid margin for {key}', field='profit_margins') from exc
    if not parsed.is_finite():
        raise ValidationError(f'Invalid margin for {key}', field='profit_margins')
    if parsed < 0:
        raise ValidationError(f'Margin for {key} cannot be negative', field='profit_margins')
    return parsed


def recommend(production_cost, margin_percent) -> Decimal:
    cost = production_cost if isinstance(production_cost, Decimal) else Decimal(str(production_cost))
    if cost < 0:
        raise ValidationError('Production cost cannot be negative', field='total_production_cost')
    margin = _margin(margin_percent, key='recommendation')
    price = cost * (Decimal('1') + margin / Decimal('100'))
    return price.quantize(PRICE_QUANT, rounding=ROUND_HALF_UP)


def margin_table_from_mapping(raw: dict | None, *, fallback_default) -> MarginTable:
    # Keys are category ids as strings, or ``default``. Blank values fall back to the default.
    raw = raw or {}
    default = _margin(raw.get(DEFAULT_MARGIN_KEY, fallback_default), key=DEFAULT_MARGIN_KEY)
    by_category: dict[int, Decimal] = {}
    for key, value in raw.items():
        if key == DEFAULT_MARGIN_KEY or value is None or value == '':
            continue
        try:
            category_id = int(str(key).strip())
        except ValueError as exc:
            raise ValidationError(f'Invalid margin key {key!r}', field='profit_margins') from exc
        by_category[category_id] = _margin(value, key=f'category {category_id}')
    return MarginTable(default=default, by_category=by_category)


def load_margin_table(db: Session, *, fallback_default) -> MarginTable:
    row = db.execute(select(Setting).where(Setting.key == PROFIT_MARGINS_KEY)).scalar_one_or_none()
    return margin_table_from_mapping(row.value if row else None, fallback_default=fallback_default)


def save_margin_table(db: Session, *, margins: dict, fallback_default) -> MarginTable:
    table = margin_table_from_mapping(margins, fallback_default=fallback_default)
    value = {DEFAULT_MARGIN_KEY: str(table.default)}
    value.update({str(category_id): str(margin) for category_id, margin in sorted(table.by_category.items())})

    with write_unit(db, entity='setting'):
        row = db.execute(select(Setting).where(Setting.key == PROFIT_MARGINS_KEY)).scalar_one_or_none()
        if row is None:
            db.add(
                Setting(
                    key=PROFIT_MARGINS_KEY,
                    value=value,
                    description='Per-category profit margins as percentages. Key is category id or "default".',
                )
            )
        else:
            row.value = value
            row.updated_at = datetime.now(tz=timezone.utc)
        db.flush()
    return table
