from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_ledger.errors import InsufficientStock, InvalidStateTransition, NotFound, ValidationError
from inventory_ledger.models import Maker, Product, Production, ProductionMaterial, ProductionStatus, ProductType
from inventory_ledger.services import stock_ledger_service
from inventory_ledger.services.document_numbers import next_document_number
from inventory_ledger.services.pricing_service import MarginTable, recommend
from inventory_ledger.services.transactions import write_unit

logger = logging.getLogger(__name__)

NGN_QUANT = Decimal('0.01')

ALLOWED_TRANSITIONS: dict[ProductionStatus, frozenset[ProductionStatus]] = {
    ProductionStatus.PENDING: frozenset(
        {ProductionStatus.IN_PROGRESS, ProductionStatus.COMPLETED, ProductionStatus.CANCELLED}
    ),
    ProductionStatus.IN_PROGRESS: frozenset(
        {ProductionStatus.PENDING, ProductionStatus.COMPLETED, ProductionStatus.CANCELLED}
    ),
    ProductionStatus.COMPLETED: frozenset(),
    ProductionStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class MaterialInput:
    product_id: int
    quantity: int
    # Falls back to the material's recorded cost_price_ngn.
    unit_cost_ngn: Decimal | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _money(value, *, field: str) -> Decimal:
    try:
        parsed = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f'Invalid {field}', field=field) from exc
    if not parsed.is_finite() or parsed < 0:
        raise ValidationError(f'{field} cannot be negative', field=field)
    return parsed


def _validate_materials(materials: list[MaterialInput], *, target_product_id: int) -> list[MaterialInput]:
    if not materials:
        raise ValidationError('Select at least one material', entity='production', field='materials')

    seen: set[int] = set()
    for material in materials:
        product_id = int(material.product_id)
        if product_id == target_product_id:
            raise ValidationError(
                'A product cannot be consumed to make itself', entity='product', entity_id=product_id, field='materials'
            )
        if product_id in seen:
            raise ValidationError(
                f'Material {product_id} appears more than once', entity='product', entity_id=product_id, field='materials'
            )
        seen.add(product_id)
        quantity = material.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(
                f'Quantity must be positive for material {product_id}',
                entity='product',
                entity_id=product_id,
                field='quantity',
            )
    return list(materials)


def _get_production(db: Session, production_id: int, *, lock: bool = False) -> Production:
    query = select(Production).where(Production.id == production_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    production = db.execute(query).scalar_one_or_none()
    if production is None:
        raise NotFound(f'Production order {production_id} not found', entity='production', entity_id=production_id)
    return production


def _get_target_product(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if product is None:
        raise NotFound(f'Product {product_id} not found', entity='product', entity_id=product_id)
    if product.product_type != ProductType.FINISHED_PRODUCT:
        raise ValidationError(
            f'{product.name} is not a finished product', entity='product', entity_id=product_id, field='product_id'
        )
    return product


def create_production(
    db: Session,
    *,
    product_id: int,
    maker_id: int | None,
    materials: list[MaterialInput],
    labor_cost,
    margins: MarginTable,
    expected_completion: date | None = None,
    notes: str | None = None,
    on: date | None = None,
) -> Production:
    labor = _money(labor_cost, field='labor_cost')
    cleaned = _validate_materials(materials, target_product_id=product_id)
    created_on = on or date.today()

    with write_unit(db, entity='production'):
        target = _get_target_product(db, product_id)
        if maker_id is not None and db.get(Maker, maker_id) is None:
            raise NotFound(f'Maker {maker_id} not found', entity='maker', entity_id=maker_id)

        stock = stock_ledger_service.lock_products(db, [material.product_id for material in cleaned])
        unit_costs: dict[int, Decimal] = {}
        for material in cleaned:
            product = stock[material.product_id]
            if product.product_type != ProductType.RAW_MATERIAL:
                raise ValidationError(
                    f'{product.name} is not a raw material', entity='product', entity_id=product.id, field='materials'
                )
            if material.unit_cost_ngn is not None:
                unit_costs[product.id] = _money(material.unit_cost_ngn, field='unit_cost_ngn')
            elif product.cost_price_ngn is not None:
                unit_costs[product.id] = Decimal(product.cost_price_ngn)
            else:
                raise ValidationError(
                    f'No NGN cost recorded for {product.name}; enter a unit cost',
                    entity='product',
                    entity_id=product.id,
                    field='unit_cost_ngn',
                )
        for material in cleaned:
            product = stock[material.product_id]
            if material.quantity > product.quantity_in_stock:
                raise InsufficientStock(
                    product_id=product.id,
                    requested=material.quantity,
                    available=product.quantity_in_stock,
                    product_name=product.name,
                )

        total_material_cost = sum(
            (Decimal(material.quantity) * unit_costs[material.product_id] for material in cleaned), Decimal('0')
        ).quantize(NGN_QUANT, rounding=ROUND_HALF_UP)
        total_production_cost = (total_material_cost + labor).quantize(NGN_QUANT, rounding=ROUND_HALF_UP)
        margin_percent = margins.resolve(target.category_id)
        recommended = recommend(total_production_cost, margin_percent)

        for material in cleaned:
            stock_ledger_service.adjust(db, product_id=material.product_id, delta=-material.quantity)

        production = Production(
            production_number=next_document_number(db, prefix='PRD', on=created_on),
            product_id=target.id,
            maker_id=maker_id,
            status=ProductionStatus.PENDING,
            labor_cost=labor,
            total_material_cost=total_material_cost,
            total_production_cost=total_production_cost,
            margin_percent=margin_percent,
            recommended_selling_price=recommended,
            expected_completion=expected_completion,
            notes=(notes or '').strip() or None,
            materials=[
                ProductionMaterial(
                    product_id=material.product_id,
                    position=position,
                    quantity=material.quantity,
                    unit_cost_ngn=unit_costs[material.product_id],
                )
                for position, material in enumerate(cleaned)
            ],
        )
        db.add(production)
        db.flush()

    logger.info(
        'Created production %s for product %s: %d material(s), cost=%s, recommended=%s',
        production.production_number,
        target.id,
        len(cleaned),
        total_production_cost,
        recommended,
    )
    return production


def transition_production(
    db: Session,
    *,
    production_id: int,
    new_status: ProductionStatus,
    on: date | None = None,
) -> Production:
    try:
        new_status = ProductionStatus(new_status)
    except ValueError as exc:
        raise ValidationError(
            f'Unknown production status {new_status!r}', entity='production', entity_id=production_id, field='status'
        ) from exc
    today = on or date.today()

    with write_unit(db, entity='production', entity_id=production_id):
        production = _get_production(db, production_id, lock=True)
        current = production.status
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStateTransition(
                entity='production',
                entity_id=production.id,
                current=current.value,
                target=new_status.value,
                message=f'Production {production.production_number} cannot move from {current.value} to {new_status.value}',
            )

        if new_status == ProductionStatus.COMPLETED:
            stock_ledger_service.adjust(db, product_id=production.product_id, delta=1)
            target = db.get(Product, production.product_id)
            if not target.selling_price_overridden:
                target.selling_price = production.recommended_selling_price
                target.updated_at = _now()
            production.actual_completion = today
        elif new_status == ProductionStatus.CANCELLED:
            stock_ledger_service.lock_products(db, [material.product_id for material in production.materials])
            for material in production.materials:
                stock_ledger_service.adjust(db, product_id=material.product_id, delta=material.quantity)
        elif new_status == ProductionStatus.IN_PROGRESS and production.start_date is None:
            production.start_date = today

        production.status = new_status
        production.updated_at = _now()
        db.flush()

    logger.info(
        'Production %s moved from %s to %s', production.production_number, current.value, new_status.value
    )
    return production


def update_production_details(
    db: Session,
    *,
    production_id: int,
    maker_id: int | None = None,
    expected_completion: date | None = None,
    notes: str | None = None,
) -> Production:
    # Materials are fixed at creation; only scheduling metadata can change here.
    with write_unit(db, entity='production', entity_id=production_id):
        production = _get_production(db, production_id, lock=True)
        if not ALLOWED_TRANSITIONS[production.status]:
            raise InvalidStateTransition(
                entity='production',
                entity_id=production.id,
                current=production.status.value,
                target=production.status.value,
                message=f'Production {production.production_number} is {production.status.value} and cannot be edited',
            )
        if maker_id is not None:
            if db.get(Maker, maker_id) is None:
                raise NotFound(f'Maker {maker_id} not found', entity='maker', entity_id=maker_id)
            production.maker_id = maker_id
        if expected_completion is not None:
            production.expected_completion = expected_completion
        if notes is not None:
            production.notes = notes.strip() or None
        production.updated_at = _now()
        db.flush()
    return production


def get_production_detail(db: Session, *, production_id: int) -> dict:
    production = _get_production(db, production_id)
    ids = [production.product_id] + [material.product_id for material in production.materials]
    names = dict(db.execute(select(Product.id, Product.name).where(Product.id.in_(ids))).all())
    maker = db.get(Maker, production.maker_id) if production.maker_id else None
    return {
        'id': production.id,
        'production_number': production.production_number,
        'status': production.status.value,
        'product_id': production.product_id,
        'product_name': names.get(production.product_id),
        'maker_id': production.maker_id,
        'maker_name': maker.name if maker else None,
        'labor_cost': production.labor_cost,
        'total_material_cost': production.total_material_cost,
        'total_production_cost': production.total_production_cost,
        'margin_percent': production.margin_percent,
        'recommended_selling_price': production.recommended_selling_price,
        'start_date': production.start_date,
        'expected_completion': production.expected_completion,
        'actual_completion': production.actual_completion,
        'notes': production.notes,
        'allowed_transitions': sorted(status.value for status in ALLOWED_TRANSITIONS[production.status]),
        'materials': [
            {
                'product_id': material.product_id,
                'product_name': names.get(material.product_id),
                'quantity': material.quantity,
                'unit_cost_ngn': material.unit_cost_ngn,
                'line_total_ngn': (Decimal(material.quantity) * material.unit_cost_ngn).quantize(NGN_QUANT),
            }
            for material in production.materials
        ],
    }


def list_productions(db: Session, *, status: ProductionStatus | None = None, limit: int = 100) -> list[dict]:
    query = (
        select(Production, Product.name)
        .join(Product, Product.id == Production.product_id)
        .order_by(Production.created_at.desc(), Production.id.desc())
        .limit(limit)
    )
    if status is not None:
        query = query.where(Production.status == status)
    rows = db.execute(query).all()
    return [
        {
            'id': production.id,
            'production_number': production.production_number,
            'product_name': product_name,
            'status': production.status.value,
            'total_production_cost': production.total_production_cost,
            'recommended_selling_price': production.recommended_selling_price,
        }
        for production, product_name in rows
    ]
