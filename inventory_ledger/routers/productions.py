from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from inventory_ledger.db import get_db
from inventory_ledger.dependencies import get_margin_table, http_error
from inventory_ledger.errors import LedgerError
from inventory_ledger.models import ProductionStatus
from inventory_ledger.services.pricing_service import MarginTable
from inventory_ledger.services.production_service import (
    MaterialInput,
    create_production,
    get_production_detail,
    list_productions,
    transition_production,
    update_production_details,
)

router = APIRouter(prefix='/productions', tags=['productions'])


class MaterialPayload(BaseModel):
    product_id: int
    quantity: int
    unit_cost_ngn: Decimal | None = None


class CreateProductionPayload(BaseModel):
    product_id: int
    maker_id: int | None = None
    materials: list[MaterialPayload]
    labor_cost: Decimal = Decimal('0')
    expected_completion: date | None = None
    notes: str | None = None


class TransitionPayload(BaseModel):
    status: ProductionStatus


class ProductionDetailsPayload(BaseModel):
    maker_id: int | None = None
    expected_completion: date | None = None
    notes: str | None = None


@router.get('')
def productions_page(status: ProductionStatus | None = None, db: Session = Depends(get_db)):
    return list_productions(db, status=status)


@router.post('', status_code=201)
def create_production_order(
    payload: CreateProductionPayload,
    db: Session = Depends(get_db),
    margins: MarginTable = Depends(get_margin_table),
):
    try:
        production = create_production(
            db,
            product_id=payload.product_id,
            maker_id=payload.maker_id,
            materials=[
                MaterialInput(product_id=row.product_id, quantity=row.quantity, unit_cost_ngn=row.unit_cost_ngn)
                for row in payload.materials
            ],
            labor_cost=payload.labor_cost,
            margins=margins,
            expected_completion=payload.expected_completion,
            notes=payload.notes,
        )
    except LedgerError as exc:
        raise http_error(exc) from exc
    db.commit()
    return get_production_detail(db, production_id=production.id)


@router.get('/{production_id}')
def production_detail(production_id: int, db: Session = Depends(get_db)):
    try:
        return get_production_detail(db, production_id=production_id)
    except LedgerError as exc:
        raise http_error(exc) from exc


@router.post('/{production_id}/status')
def change_production_status(production_id: int, payload: TransitionPayload, db: Session = Depends(get_db)):
    try:
        transition_production(db, production_id=production_id, new_status=payload.status)
    except LedgerError as exc:
        raise http_error(exc) from exc
    db.commit()
    return get_production_detail(db, production_id=production_id)


@router.patch('/{production_id}')
def update_production_order(production_id: int, payload: ProductionDetailsPayload, db: Session = Depends(get_db)):
    try:
        update_production_details(
            db,
            production_id=production_id,
            maker_id=payload.maker_id,
            expected_completion=payload.expected_completion,
            notes=payload.notes,
        )
    except LedgerError as exc:
        raise http_error(exc) from exc
    db.commit()
    return get_production_detail(db, production_id=production_id)
