from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from inventory_ledger.db import get_db
from inventory_ledger.dependencies import http_error
from inventory_ledger.errors import LedgerError
from inventory_ledger.models import PaymentMethod, SalesChannel
from inventory_ledger.services.sale_service import SaleLineInput, create_sale, get_sale_detail, list_sales

router = APIRouter(prefix='/sales', tags=['sales'])


class SaleLinePayload(BaseModel):
    product_id: int
    quantity: int
    unit_price: Decimal | None = None


class CreateSalePayload(BaseModel):
    customer_id: int | None = None
    items: list[SaleLinePayload]
    payment_method: PaymentMethod = PaymentMethod.CASH
    sales_channel: SalesChannel = SalesChannel.IN_STORE
    discount: Decimal = Decimal('0')
    notes: str | None = None


@router.get('')
def sales_page(customer_id: int | None = None, db: Session = Depends(get_db)):
    return list_sales(db, customer_id=customer_id)


@router.post('', status_code=201)
def record_sale(payload: CreateSalePayload, db: Session = Depends(get_db)):
    try:
        sale = create_sale(
            db,
            customer_id=payload.customer_id,
            items=[
                SaleLineInput(product_id=row.product_id, quantity=row.quantity, unit_price=row.unit_price)
                for row in payload.items
            ],
            payment_method=payload.payment_method,
            channel=payload.sales_channel,
            discount=payload.discount,
            notes=payload.notes,
        )
    except LedgerError as exc:
        raise http_error(exc) from exc
    db.commit()
    return get_sale_detail(db, sale_id=sale.id)


@router.get('/{sale_id}')
def sale_detail(sale_id: int, db: Session = Depends(get_db)):
    try:
        return get_sale_detail(db, sale_id=sale_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
