from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from inventory_ledger.errors import InsufficientStock, NotFound, ValidationError
from inventory_ledger.models import Customer, PaymentMethod, Product, Sale, SaleItem, SalesChannel
from inventory_ledger.services import stock_ledger_service
from inventory_ledger.services.document_numbers import next_document_number
from inventory_ledger.services.transactions import write_unit

logger = logging.getLogger(__name__)

NGN_QUANT = Decimal('0.01')


@dataclass(frozen=True)
class SaleLineInput:
    product_id: int
    quantity: int
    # Falls back to the product's selling_price.
    unit_price: Decimal | None = None


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    quantity: int
    unit_price: Decimal
    total_price: Decimal


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _amount(value, *, field: str, entity_id: int | None = None) -> Decimal:
    try:
        parsed = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f'Invalid {field}', entity_id=entity_id, field=field) from exc
    if not parsed.is_finite() or parsed < 0:
        raise ValidationError(f'{field} cannot be negative', entity_id=entity_id, field=field)
    return parsed


def _validate_lines(items: list[SaleLineInput]) -> list[SaleLineInput]:
    if not items:
        raise ValidationError('Cart is empty', entity='sale', field='items')
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
    return list(items)


def price_lines(items: list[SaleLineInput], products: dict[int, Product]) -> list[PricedLine]:
    priced: list[PricedLine] = []
    for item in items:
        product = products[item.product_id]
        if item.unit_price is not None:
            unit_price = _amount(item.unit_price, field='unit_price', entity_id=product.id)
        elif product.selling_price is not None:
            unit_price = Decimal(product.selling_price)
        else:
            raise ValidationError(
                f'{product.name} has no selling price; enter a unit price',
                entity='product',
                entity_id=product.id,
                field='unit_price',
            )
        priced.append(
            PricedLine(
                product_id=product.id,
                quantity=item.quantity,
                unit_price=unit_price,
                total_price=(Decimal(item.quantity) * unit_price).quantize(NGN_QUANT),
            )
        )
    return priced


def create_sale(
    db: Session,
    *,
    customer_id: int | None,
    items: list[SaleLineInput],
    payment_method: PaymentMethod,
    channel: SalesChannel,
    discount=Decimal('0'),
    notes: str | None = None,
) -> Sale:
    cleaned = _validate_lines(items)
    discount_amount = _amount(discount, field='discount')
    try:
        payment_method = PaymentMethod(payment_method)
    except ValueError as exc:
        raise ValidationError('Invalid payment method', entity='sale', field='payment_method') from exc
    try:
        channel = SalesChannel(channel)
    except ValueError as exc:
        raise ValidationError('Invalid sales channel', entity='sale', field='sales_channel') from exc
    sold_at = _now()

    with write_unit(db, entity='sale'):
        if customer_id is not None and db.get(Customer, customer_id) is None:
            raise NotFound(f'Customer {customer_id} not found', entity='customer', entity_id=customer_id)

        products = stock_ledger_service.lock_products(db, [item.product_id for item in cleaned])
        for item in cleaned:
            product = products[item.product_id]
            if item.quantity > product.quantity_in_stock:
                raise InsufficientStock(
                    product_id=product.id,
                    requested=item.quantity,
                    available=product.quantity_in_stock,
                    product_name=product.name,
                )

        priced = price_lines(cleaned, products)
        subtotal = sum((line.total_price for line in priced), Decimal('0')).quantize(NGN_QUANT)
        total = (subtotal - discount_amount).quantize(NGN_QUANT)
        if total < 0:
            raise ValidationError('Total cannot be negative', entity='sale', field='discount')

        sale = Sale(
            sale_number=next_document_number(db, prefix='SALE', on=sold_at.date()),
            customer_id=customer_id,
            sale_date=sold_at,
            subtotal=subtotal,
            discount=discount_amount,
            total=total,
            payment_method=payment_method,
            sales_channel=channel,
            notes=(notes or '').strip() or None,
            items=[
                SaleItem(
                    product_id=line.product_id,
                    position=position,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    total_price=line.total_price,
                )
                for position, line in enumerate(priced)
            ],
        )
        db.add(sale)
        db.flush()

        for line in priced:
            stock_ledger_service.adjust(db, product_id=line.product_id, delta=-line.quantity)

        if customer_id is not None:
            db.execute(
                update(Customer)
                .where(Customer.id == customer_id)
                .values(total_purchases=Customer.total_purchases + total)
                .execution_options(synchronize_session=False)
            )
            db.get(Customer, customer_id, populate_existing=True)

    logger.info('Recorded sale %s: %d line(s), total=%s', sale.sale_number, len(priced), total)
    return sale


def get_sale_detail(db: Session, *, sale_id: int) -> dict:
    sale = db.get(Sale, sale_id)
    if sale is None:
        raise NotFound(f'Sale {sale_id} not found', entity='sale', entity_id=sale_id)
    names = dict(
        db.execute(select(Product.id, Product.name).where(Product.id.in_([item.product_id for item in sale.items]))).all()
    )
    customer = db.get(Customer, sale.customer_id) if sale.customer_id else None
    return {
        'id': sale.id,
        'sale_number': sale.sale_number,
        'sale_date': sale.sale_date,
        'customer_id': sale.customer_id,
        'customer_name': customer.name if customer else None,
        'subtotal': sale.subtotal,
        'discount': sale.discount,
        'total': sale.total,
        'payment_method': sale.payment_method.value,
        'sales_channel': sale.sales_channel.value,
        'notes': sale.notes,
        'items': [
            {
                'product_id': item.product_id,
                'product_name': names.get(item.product_id),
                'quantity': item.quantity,
                'unit_price': item.unit_price,
                'total_price': item.total_price,
            }
            for item in sale.items
        ],
    }


def list_sales(db: Session, *, customer_id: int | None = None, limit: int = 100) -> list[dict]:
    query = (
        select(Sale, Customer.name)
        .outerjoin(Customer, Customer.id == Sale.customer_id)
        .order_by(Sale.sale_date.desc(), Sale.id.desc())
        .limit(limit)
    )
    if customer_id is not None:
        query = query.where(Sale.customer_id == customer_id)
    rows = db.execute(query).all()
    return [
        {
            'id': sale.id,
            'sale_number': sale.sale_number,
            'sale_date': sale.sale_date,
            'customer_name': customer_name,
            'total': sale.total,
            'payment_method': sale.payment_method.value,
            'sales_channel': sale.sales_channel.value,
        }
        for sale, customer_name in rows
    ]
