from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_ledger.errors import InvalidStateTransition, NotFound, ValidationError
from inventory_ledger.models import Batch, BatchItem, BatchStatus, Product, Supplier
from inventory_ledger.services import stock_ledger_service
from inventory_ledger.services.currency_service import to_ngn, validate_rate
from inventory_ledger.services.document_numbers import next_document_number
from inventory_ledger.services.transactions import write_unit

logger = logging.getLogger(__name__)

USD_QUANT = Decimal('0.0001')


@dataclass(frozen=True)
class BatchItemInput:
    product_id: int
    quantity: int
    unit_cost_usd: Decimal


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _validate_items(items: list[BatchItemInput]) -> list[BatchItemInput]:
    if not items:
        raise ValidationError('Add at least one line item', entity='batch', field='items')

    cleaned: list[BatchItemInput] = []
    seen: set[int] = set()
    for item in items:
        product_id = int(item.product_id)
        if product_id in seen:
            raise ValidationError(
                f'Product {product_id} appears more than once', entity='product', entity_id=product_id, field='items'
            )
        seen.add(product_id)

        quantity = item.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(
                f'Quantity must be positive for product {product_id}',
                entity='product',
                entity_id=product_id,
                field='quantity',
            )
        try:
            unit_cost = Decimal(str(item.unit_cost_usd))
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(
                f'Invalid unit cost for product {product_id}', entity='product', entity_id=product_id, field='unit_cost_usd'
            ) from exc
        if not unit_cost.is_finite() or unit_cost < 0:
            raise ValidationError(
                f'Unit cost cannot be negative for product {product_id}',
                entity='product',
                entity_id=product_id,
                field='unit_cost_usd',
            )
        cleaned.append(BatchItemInput(product_id=product_id, quantity=quantity, unit_cost_usd=unit_cost))
    return cleaned


def _total_usd(items: list[BatchItemInput]) -> Decimal:
    total = sum((Decimal(item.quantity) * item.unit_cost_usd for item in items), Decimal('0'))
    return total.quantize(USD_QUANT)


def _ensure_products_exist(db: Session, product_ids: list[int]) -> None:
    found = set(db.execute(select(Product.id).where(Product.id.in_(product_ids))).scalars().all())
    for product_id in product_ids:
        if product_id not in found:
            raise NotFound(f'Product {product_id} not found', entity='product', entity_id=product_id)


def _ensure_supplier_exists(db: Session, supplier_id: int | None) -> None:
    if supplier_id is None:
        return
    if db.get(Supplier, supplier_id) is None:
        raise NotFound(f'Supplier {supplier_id} not found', entity='supplier', entity_id=supplier_id)


def _get_batch(db: Session, batch_id: int, *, lock: bool = False) -> Batch:
    query = select(Batch).where(Batch.id == batch_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    batch = db.execute(query).scalar_one_or_none()
    if batch is None:
        raise NotFound(f'Purchase order {batch_id} not found', entity='batch', entity_id=batch_id)
    return batch


def _require_draft(batch: Batch, *, target: str, action: str) -> None:
    if batch.status != BatchStatus.DRAFT:
        raise InvalidStateTransition(
            entity='batch',
            entity_id=batch.id,
            current=batch.status.value,
            target=target,
            message=f'Only draft purchase orders can be {action}; {batch.batch_number} is {batch.status.value}',
        )


def _replace_items(batch: Batch, items: list[BatchItemInput]) -> None:
    for position, item in enumerate(items):
        batch.items.append(
            BatchItem(
                product_id=item.product_id,
                position=position,
                quantity=item.quantity,
                unit_cost_usd=item.unit_cost_usd,
            )
        )
    batch.total_cost_usd = _total_usd(items)


def create_draft(
    db: Session,
    *,
    supplier_id: int | None,
    purchase_date: date,
    items: list[BatchItemInput],
    notes: str | None = None,
) -> Batch:
    cleaned = _validate_items(items)

    with write_unit(db, entity='batch'):
        _ensure_supplier_exists(db, supplier_id)
        _ensure_products_exist(db, [item.product_id for item in cleaned])
        batch = Batch(
            batch_number=next_document_number(db, prefix='PO', on=purchase_date),
            supplier_id=supplier_id,
            purchase_date=purchase_date,
            status=BatchStatus.DRAFT,
            notes=(notes or '').strip() or None,
        )
        _replace_items(batch, cleaned)
        db.add(batch)
        db.flush()
    logger.info('Created purchase order %s with %d item(s)', batch.batch_number, len(cleaned))
    return batch


def update_draft(
    db: Session,
    *,
    batch_id: int,
    items: list[BatchItemInput],
    notes: str | None = None,
) -> Batch:
    cleaned = _validate_items(items)

    with write_unit(db, entity='batch', entity_id=batch_id):
        batch = _get_batch(db, batch_id, lock=True)
        _require_draft(batch, target=BatchStatus.DRAFT.value, action='edited')
        _ensure_products_exist(db, [item.product_id for item in cleaned])

        batch.items.clear()
        # Old rows must be gone before the replacements hit the (batch, product) unique key.
        db.flush()
        _replace_items(batch, cleaned)
        if notes is not None:
            batch.notes = notes.strip() or None
        batch.updated_at = _now()
        db.flush()
    return batch


def receive(db: Session, *, batch_id: int, exchange_rate) -> Batch:
    """Receive a draft into stock; all items land together or none do."""
    rate = validate_rate(exchange_rate)

    with write_unit(db, entity='batch', entity_id=batch_id):
        batch = _get_batch(db, batch_id, lock=True)
        _require_draft(batch, target=BatchStatus.RECEIVED.value, action='received')
        if not batch.items:
            raise ValidationError('Cannot receive an empty purchase order', entity='batch', entity_id=batch.id, field='items')

        products = stock_ledger_service.lock_products(db, [item.product_id for item in batch.items])
        for item in batch.items:
            stock_ledger_service.adjust(db, product_id=item.product_id, delta=item.quantity)
            product = products[item.product_id]
            product.cost_price_usd = item.unit_cost_usd
            product.cost_price_ngn = to_ngn(item.unit_cost_usd, rate)
            product.updated_at = _now()

        batch.exchange_rate = rate
        batch.total_cost_ngn = to_ngn(batch.total_cost_usd, rate)
        batch.status = BatchStatus.RECEIVED
        batch.received_at = _now()
        batch.updated_at = _now()
        db.flush()

    logger.info(
        'Received purchase order %s: %d item(s), total_ngn=%s at rate %s',
        batch.batch_number,
        len(batch.items),
        batch.total_cost_ngn,
        rate,
    )
    return batch


def delete_draft(db: Session, *, batch_id: int) -> None:
    with write_unit(db, entity='batch', entity_id=batch_id):
        batch = _get_batch(db, batch_id, lock=True)
        _require_draft(batch, target='deleted', action='deleted')
        batch_number = batch.batch_number
        db.delete(batch)
        db.flush()
    logger.info('Deleted draft purchase order %s', batch_number)


def get_batch_detail(db: Session, *, batch_id: int) -> dict:
    batch = _get_batch(db, batch_id)
    product_names = dict(
        db.execute(
            select(Product.id, Product.name).where(Product.id.in_([item.product_id for item in batch.items]))
        ).all()
    )
    supplier = db.get(Supplier, batch.supplier_id) if batch.supplier_id else None
    return {
        'id': batch.id,
        'batch_number': batch.batch_number,
        'status': batch.status.value,
        'supplier_id': batch.supplier_id,
        'supplier_name': supplier.name if supplier else None,
        'purchase_date': batch.purchase_date,
        'total_cost_usd': batch.total_cost_usd,
        'exchange_rate': batch.exchange_rate,
        'total_cost_ngn': batch.total_cost_ngn,
        'notes': batch.notes,
        'received_at': batch.received_at,
        'items': [
            {
                'product_id': item.product_id,
                'product_name': product_names.get(item.product_id),
                'quantity': item.quantity,
                'unit_cost_usd': item.unit_cost_usd,
                'line_total_usd': (Decimal(item.quantity) * item.unit_cost_usd).quantize(USD_QUANT),
            }
            for item in batch.items
        ],
    }


def list_batches(db: Session, *, status: BatchStatus | None = None, limit: int = 100) -> list[dict]:
    query = (
        select(Batch, Supplier.name)
        .outerjoin(Supplier, Supplier.id == Batch.supplier_id)
        .order_by(Batch.purchase_date.desc(), Batch.id.desc())
        .limit(limit)
    )
    if status is not None:
        query = query.where(Batch.status == status)
    rows = db.execute(query).all()
    return [
        {
            'id': batch.id,
            'batch_number': batch.batch_number,
            'supplier_name': supplier_name,
            'purchase_date': batch.purchase_date,
            'status': batch.status.value,
            'total_cost_usd': batch.total_cost_usd,
            'total_cost_ngn': batch.total_cost_ngn,
        }
        for batch, supplier_name in rows
    ]
