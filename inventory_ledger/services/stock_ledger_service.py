from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from inventory_ledger.errors import InsufficientStock, NotFound, ValidationError
from inventory_ledger.models import Product

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def lock_products(db: Session, product_ids: Iterable[int]) -> dict[int, Product]:
    # Id order keeps two workflows over the same products from deadlocking.
    ids = sorted({int(product_id) for product_id in product_ids})
    if not ids:
        return {}
    rows = db.execute(
        select(Product)
        .where(Product.id.in_(ids))
        .order_by(Product.id.asc())
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().all()
    by_id = {row.id: row for row in rows}
    for product_id in ids:
        if product_id not in by_id:
            raise NotFound(f'Product {product_id} not found', entity='product', entity_id=product_id)
    return by_id


def adjust(db: Session, *, product_id: int, delta: int) -> int:
    """Apply ``quantity_in_stock += delta`` as one conditional UPDATE and return the new quantity."""
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError('Stock adjustment must be a whole number', entity='product', entity_id=product_id)

    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.quantity_in_stock + delta >= 0)
        .values(quantity_in_stock=Product.quantity_in_stock + delta, updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = db.execute(
            select(Product.name, Product.quantity_in_stock).where(Product.id == product_id)
        ).one_or_none()
        if current is None:
            raise NotFound(f'Product {product_id} not found', entity='product', entity_id=product_id)
        logger.warning(
            'Rejected stock adjustment product_id=%s delta=%s available=%s',
            product_id,
            delta,
            current.quantity_in_stock,
        )
        raise InsufficientStock(
            product_id=product_id,
            requested=-delta,
            available=int(current.quantity_in_stock),
            product_name=current.name,
        )

    product = db.get(Product, product_id, populate_existing=True)
    return int(product.quantity_in_stock)
