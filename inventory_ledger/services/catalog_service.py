from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_ledger.errors import NotFound, ValidationError
from inventory_ledger.models import Category, Product
from inventory_ledger.services.transactions import write_unit


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def set_selling_price(db: Session, *, product_id: int, price) -> Product:
    """Manual price edit. Marks the price as overridden so completed production keeps it."""
    try:
        parsed = price if isinstance(price, Decimal) else Decimal(str(price))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError('Invalid selling price', entity='product', entity_id=product_id, field='selling_price') from exc
    if not parsed.is_finite() or parsed < 0:
        raise ValidationError(
            'Selling price cannot be negative', entity='product', entity_id=product_id, field='selling_price'
        )

    with write_unit(db, entity='product', entity_id=product_id):
        product = db.get(Product, product_id)
        if product is None:
            raise NotFound(f'Product {product_id} not found', entity='product', entity_id=product_id)
        product.selling_price = parsed
        product.selling_price_overridden = True
        product.updated_at = _now()
        db.flush()
    return product


def clear_selling_price_override(db: Session, *, product_id: int) -> Product:
    with write_unit(db, entity='product', entity_id=product_id):
        product = db.get(Product, product_id)
        if product is None:
            raise NotFound(f'Product {product_id} not found', entity='product', entity_id=product_id)
        product.selling_price_overridden = False
        product.updated_at = _now()
        db.flush()
    return product


def list_low_stock(db: Session, *, limit: int = 50) -> list[dict]:
    rows = db.execute(
        select(Product, Category.name)
        .outerjoin(Category, Category.id == Product.category_id)
        .where(
            Product.active.is_(True),
            Product.quantity_in_stock <= Product.reorder_level,
        )
        .order_by(Product.quantity_in_stock.asc(), Product.name.asc())
        .limit(limit)
    ).all()
    return [
        {
            'id': product.id,
            'name': product.name,
            'sku': product.sku,
            'category_name': category_name,
            'product_type': product.product_type.value,
            'quantity_in_stock': product.quantity_in_stock,
            'reorder_level': product.reorder_level,
        }
        for product, category_name in rows
    ]
