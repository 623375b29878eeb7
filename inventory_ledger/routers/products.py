from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from inventory_ledger.db import get_db
from inventory_ledger.dependencies import http_error
from inventory_ledger.errors import LedgerError
from inventory_ledger.services.catalog_service import clear_selling_price_override, list_low_stock, set_selling_price

router = APIRouter(prefix='/products', tags=['products'])


class SellingPricePayload(BaseModel):
    selling_price: Decimal


def _price_view(product) -> dict:
    return {
        'id': product.id,
        'selling_price': product.selling_price,
        'selling_price_overridden': product.selling_price_overridden,
    }


@router.get('/low-stock')
def low_stock_page(db: Session = Depends(get_db)):
    return list_low_stock(db)


@router.put('/{product_id}/selling-price')
def update_selling_price(product_id: int, payload: SellingPricePayload, db: Session = Depends(get_db)):
    try:
        product = set_selling_price(db, product_id=product_id, price=payload.selling_price)
    except LedgerError as exc:
        raise http_error(exc) from exc
    db.commit()
    return _price_view(product)


@router.delete('/{product_id}/selling-price-override')
def reset_selling_price_override(product_id: int, db: Session = Depends(get_db)):
    try:
        product = clear_selling_price_override(db, product_id=product_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    db.commit()
    return _price_view(product)
