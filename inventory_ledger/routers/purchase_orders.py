from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from inventory_ledger.db import get_db
from inventory_ledger.dependencies import http_error
from inventory_ledger.errors import InvalidStateTransition, LedgerError
from inventory_ledger.models import BatchStatus
from inventory_ledger.services.currency_service import resolve_exchange_rate
from inventory_ledger.services.purchase_order_service import (
    BatchItemInput,
    create_draft,
    delete_draft,
    get_batch_detail,
    list_batches,
    receive,
    update_draft,
)

router = APIRouter(prefix='/purchase-orders', tags=['purchase-orders'])


class BatchItemPayload(BaseModel):
    product_id: int
    quantity: int
    unit_cost_usd: Decimal = Field(default=Decimal('0'))


class CreateBatchPayload(BaseModel):
    supplier_id: int | None = None
    purchase_date: date
    items: list[BatchItemPayload]
    notes: str | None = None


class UpdateBatchPayload(BaseModel):
    items: list[BatchItemPayload]
    notes: str | None = None


class ReceiveBatchPayload(BaseModel):
    # Omitted: the rate effective on the purchase date is used.
    exchange_rate: Decimal | None = None


def _items(payload: list[BatchItemPayload]) -> list[BatchItemInput]:
    return [
        BatchItemInput(product_id=item.product_id, quantity=item.quantity, unit_cost_usd=item.unit_cost_usd)
        for item in payload
    ]


@router.get('')
def purchase_orders_page(status: BatchStatus | None = None, db: Session = Depends(get_db)):
    return list_batches(db, status=status)


@router.post('', status_code=201)
def create_purchase_order(payload: CreateBatchPayload, db: Session = Depends(get_db)):
    try:
        batch = create_draft(
            db,
            supplier_id=payload.supplier_id,
            purchase_date=payload.purchase_date,
            items=_items(payload.items),
            notes=payload.notes,
        )
    except LedgerError as exc:
        raise http_error(exc) from exc
    db.commit()
    return get_batch_detail(db, batch_id=batch.id)


@router.get('/{batch_id}')
def purchase_order_detail(batch_id: int, db: Session = Depends(get_db)):
    try:
        return get_batch_detail(db, batch_id=batch_id)
    except LedgerError as exc:
        raise http_error(exc) from exc


@router.put('/{batch_id}')
def update_purchase_order(batch_id: int, payload: UpdateBatchPayload, db: Session = Depends(get_db)):
    try:
        update_draft(db, batch_id=batch_id, items=_items(payload.items), notes=payload.notes)
    except LedgerError as exc:
        raise http_error(exc) from exc
    db.commit()
    return get_batch_detail(db, batch_id=batch_id)


@router.post('/{batch_id}/receive')
def receive_purchase_order(batch_id: int, payload: ReceiveBatchPayload, db: Session = Depends(get_db)):
    try:
        detail = get_batch_detail(db, batch_id=batch_id)
        if detail['status'] != BatchStatus.DRAFT.value:
            raise InvalidStateTransition(
                entity='batch',
                entity_id=batch_id,
                current=detail['status'],
                target=BatchStatus.RECEIVED.value,
                message=f"Only draft purchase orders can be received; {detail['batch_number']} is {detail['status']}",
            )
        rate = resolve_exchange_rate(
            db,
            reference_date=detail['purchase_date'],
            explicit_rate=payload.exchange_rate,
        )
        receive(db, batch_id=batch_id, exchange_rate=rate)
    except LedgerError as exc:
        raise http_error(exc) from exc
    db.commit()
    return get_batch_detail(db, batch_id=batch_id)


@router.delete('/{batch_id}', status_code=204)
def delete_purchase_order(batch_id: int, db: Session = Depends(get_db)):
    try:
        delete_draft(db, batch_id=batch_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    db.commit()
    return Response(status_code=204)
