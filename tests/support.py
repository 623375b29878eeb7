from __future__ import annotations

import tempfile
import unittest
from decimal import Decimal
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from inventory_ledger.db import build_engine
from inventory_ledger.models import Base, Category, Customer, Maker, Product, ProductType


class LedgerTestCase(unittest.TestCase):
    """Runs each test against a fresh SQLite file.

    Writers take the database lock on BEGIN, so a test must not hold ``self.db`` open
    while another session writes.
    """

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        path = Path(self._tmp.name) / 'ledger.db'
        self.db_url = f'sqlite+pysqlite:///{path}'
        self.engine = build_engine(self.db_url, lock_timeout_seconds=5)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, autoflush=True, expire_on_commit=False)
        self.db = self.Session()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()
        self._tmp.cleanup()

    def make_category(self, name: str, product_type: ProductType = ProductType.FINISHED_PRODUCT) -> Category:
        category = Category(name=name, product_type=product_type)
        self.db.add(category)
        self.db.commit()
        return category

    def make_product(
        self,
        name: str,
        *,
        quantity: int = 0,
        product_type: ProductType = ProductType.RAW_MATERIAL,
        category: Category | None = None,
        **values,
    ) -> Product:
        product = Product(
            name=name,
            sku=name.upper().replace(' ', '-'),
            product_type=product_type,
            category_id=category.id if category else None,
            quantity_in_stock=quantity,
            **values,
        )
        self.db.add(product)
        self.db.commit()
        return product

    def make_customer(self, name: str = 'Walk-in') -> Customer:
        customer = Customer(name=name, total_purchases=Decimal('0'))
        self.db.add(customer)
        self.db.commit()
        return customer

    def make_maker(self, name: str = 'Adaeze') -> Maker:
        maker = Maker(name=name)
        self.db.add(maker)
        self.db.commit()
        return maker

    def impatient_sessions(self) -> sessionmaker:
        # Sessions on the same file that give up on the writer lock after one second.
        engine = build_engine(self.db_url, lock_timeout_seconds=1)
        self.addCleanup(engine.dispose)
        return sessionmaker(bind=engine, autoflush=True, expire_on_commit=False)

    def hold_writer_lock(self) -> None:
        # Any statement begins the transaction with BEGIN IMMEDIATE.
        self.db.execute(select(Product.id).limit(1))

    def stock_of(self, product_id: int) -> int:
        return self.db.execute(select(Product.quantity_in_stock).where(Product.id == product_id)).scalar_one()

    def count(self, model) -> int:
        return self.db.execute(select(func.count()).select_from(model)).scalar_one()
