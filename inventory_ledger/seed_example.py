from datetime import date
from decimal import Decimal

from sqlalchemy import select

from inventory_ledger.config import settings
from inventory_ledger.db import SessionLocal, engine
from inventory_ledger.models import Base, Category, Customer, ExchangeRate, Maker, Product, ProductType, Supplier
from inventory_ledger.services.pricing_service import save_margin_table


def _category(db, name: str, product_type: ProductType) -> Category:
    category = db.execute(select(Category).where(Category.name == name)).scalar_one_or_none()
    if not category:
        category = Category(name=name, product_type=product_type)
        db.add(category)
        db.flush()
    return category


def _product(db, *, sku: str, name: str, product_type: ProductType, category: Category, **values) -> Product:
    product = db.execute(select(Product).where(Product.sku == sku)).scalar_one_or_none()
    if not product:
        product = Product(sku=sku, name=name, product_type=product_type, category_id=category.id, **values)
        db.add(product)
        db.flush()
    return product


def seed() -> None:
    Base.metadata.create_all(bind=engine)

    with SessionLocal() as db:
        bundles = _category(db, 'Bundles', ProductType.RAW_MATERIAL)
        closures = _category(db, 'Closures', ProductType.RAW_MATERIAL)
        wigs = _category(db, 'Wigs', ProductType.FINISHED_PRODUCT)

        _product(
            db,
            sku='RAW-BRZ-STR-20',
            name='Brazilian Straight Bundle 20"',
            product_type=ProductType.RAW_MATERIAL,
            category=bundles,
            cost_price_usd=Decimal('25.00'),
            cost_price_ngn=Decimal('37500.00'),
            quantity_in_stock=12,
            reorder_level=4,
        )
        _product(
            db,
            sku='RAW-CLS-4X4',
            name='4x4 Lace Closure',
            product_type=ProductType.RAW_MATERIAL,
            category=closures,
            cost_price_usd=Decimal('18.00'),
            cost_price_ngn=Decimal('27000.00'),
            quantity_in_stock=6,
            reorder_level=2,
        )
        _product(
            db,
            sku='WIG-BRZ-STR-20',
            name='Brazilian Straight Closure Wig 20"',
            product_type=ProductType.FINISHED_PRODUCT,
            category=wigs,
            quantity_in_stock=0,
            reorder_level=1,
        )

        if not db.execute(select(Supplier).where(Supplier.name == 'Guangzhou Hair Co.')).scalar_one_or_none():
            db.add(Supplier(name='Guangzhou Hair Co.', contact_person='Ms. Lin'))
        if not db.execute(select(Maker).where(Maker.name == 'Adaeze')).scalar_one_or_none():
            db.add(Maker(name='Adaeze', specialization='Closure wigs', rate_per_unit=Decimal('15000.00'), active=True))
        if not db.execute(select(Customer).where(Customer.name == 'Walk-in Customer')).scalar_one_or_none():
            db.add(Customer(name='Walk-in Customer'))

        if not db.execute(select(ExchangeRate.id).limit(1)).first():
            db.add(ExchangeRate(rate=Decimal('1500.0000'), effective_date=date.today(), notes='Seed rate'))

        save_margin_table(
            db,
            margins={'default': Decimal('50'), str(wigs.id): Decimal('60')},
            fallback_default=settings.default_profit_margin,
        )

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
