from __future__ import annotations

import threading
import unittest
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import select

from inventory_ledger.errors import InsufficientStock, NotFound, ValidationError
from inventory_ledger.models import Customer, PaymentMethod, ProductType, Sale, SaleItem, SalesChannel
from inventory_ledger.services import stock_ledger_service
from inventory_ledger.services.sale_service import SaleLineInput, create_sale, get_sale_detail, list_sales
from support import LedgerTestCase


class SaleServiceTests(LedgerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.wig = self.make_product(
            'Straight Wig 20', quantity=3, product_type=ProductType.FINISHED_PRODUCT, selling_price=Decimal('2250')
        )
        self.closure = self.make_product('Closure 4x4', quantity=5, selling_price=Decimal('500'))
        self.customer = self.make_customer('Chioma')

    def _sell(self, items: list[SaleLineInput], **kwargs) -> Sale:
        values = {
            'customer_id': self.customer.id,
            'payment_method': PaymentMethod.TRANSFER,
            'channel': SalesChannel.ONLINE,
        }
        values.update(kwargs)
        return create_sale(self.db, items=items, **values)

    def _customer_total(self) -> Decimal:
        return self.db.execute(select(Customer.total_purchases).where(Customer.id == self.customer.id)).scalar_one()

    def test_sale_deducts_stock_and_updates_customer(self) -> None:
        sale = self._sell(
            [
                SaleLineInput(product_id=self.wig.id, quantity=2),
                SaleLineInput(product_id=self.closure.id, quantity=1, unit_price=Decimal('450')),
            ],
            discount=Decimal('200'),
        )
        self.db.commit()

        self.assertTrue(sale.sale_number.startswith('SALE-'))
        self.assertEqual(sale.subtotal, Decimal('4950.00'))
        self.assertEqual(sale.total, Decimal('4750.00'))
        self.assertEqual(self.stock_of(self.wig.id), 1)
        self.assertEqual(self.stock_of(self.closure.id), 4)
        self.assertEqual(self._customer_total(), Decimal('4750'))

        detail = get_sale_detail(self.db, sale_id=sale.id)
        self.assertEqual(detail['customer_name'], 'Chioma')
        self.assertEqual([item['total_price'] for item in detail['items']], [Decimal('4500.00'), Decimal('450.00')])

    def test_customer_total_accumulates(self) -> None:
        self._sell([SaleLineInput(product_id=self.closure.id, quantity=1)])
        self._sell([SaleLineInput(product_id=self.closure.id, quantity=2)])
        self.db.commit()

        self.assertEqual(self._customer_total(), Decimal('1500'))
        self.assertEqual(len(list_sales(self.db, customer_id=self.customer.id)), 2)

    def test_walk_in_sale_without_customer(self) -> None:
        sale = self._sell([SaleLineInput(product_id=self.closure.id, quantity=1)], customer_id=None)
        self.db.commit()

        self.assertIsNone(sale.customer_id)
        self.assertEqual(self._customer_total(), Decimal('0'))
        self.assertEqual(self.stock_of(self.closure.id), 4)

    def test_over_quantity_line_rejects_whole_sale(self) -> None:
        with self.assertRaises(InsufficientStock) as ctx:
            self._sell(
                [
                    SaleLineInput(product_id=self.closure.id, quantity=1),
                    SaleLineInput(product_id=self.wig.id, quantity=4),
                ]
            )

        self.assertEqual(ctx.exception.product_id, self.wig.id)
        self.assertEqual(ctx.exception.available, 3)
        self.assertEqual(self.stock_of(self.wig.id), 3)
        self.assertEqual(self.stock_of(self.closure.id), 5)
        self.assertEqual(self.count(Sale), 0)
        self.assertEqual(self._customer_total(), Decimal('0'))

    def test_failure_midway_rolls_back_sale(self) -> None:
        real_adjust = stock_ledger_service.adjust
        calls = []

        def flaky_adjust(db, *, product_id, delta):
            calls.append(product_id)
            if len(calls) == 2:
                raise InsufficientStock(product_id=product_id, requested=-delta, available=0)
            return real_adjust(db, product_id=product_id, delta=delta)

        with patch('inventory_ledger.services.stock_ledger_service.adjust', side_effect=flaky_adjust):
            with self.assertRaises(InsufficientStock):
                self._sell(
                    [
                        SaleLineInput(product_id=self.wig.id, quantity=1),
                        SaleLineInput(product_id=self.closure.id, quantity=1),
                    ]
                )

        self.assertEqual(len(calls), 2)
        self.assertEqual(self.stock_of(self.wig.id), 3)
        self.assertEqual(self.stock_of(self.closure.id), 5)
        self.assertEqual(self.count(Sale), 0)
        self.assertEqual(self.count(SaleItem), 0)
        self.assertEqual(self._customer_total(), Decimal('0'))

    def test_negative_total_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self._sell([SaleLineInput(product_id=self.closure.id, quantity=1)], discount=Decimal('501'))
        self.assertEqual(self.stock_of(self.closure.id), 5)
        self.assertEqual(self.count(Sale), 0)

    def test_line_validation(self) -> None:
        unpriced = self.make_product('Lace Glue', quantity=10)
        cases = {
            'empty cart': [],
            'zero quantity': [SaleLineInput(product_id=self.wig.id, quantity=0)],
            'duplicate line': [
                SaleLineInput(product_id=self.wig.id, quantity=1),
                SaleLineInput(product_id=self.wig.id, quantity=1),
            ],
            'no price': [SaleLineInput(product_id=unpriced.id, quantity=1)],
        }
        for label, items in cases.items():
            with self.subTest(label):
                with self.assertRaises(ValidationError):
                    self._sell(items)
        self.assertEqual(self.count(Sale), 0)
        self.assertEqual(self.stock_of(unpriced.id), 10)

    def test_invalid_payment_method(self) -> None:
        with self.assertRaises(ValidationError):
            self._sell([SaleLineInput(product_id=self.wig.id, quantity=1)], payment_method='barter')

    def test_unknown_customer(self) -> None:
        with self.assertRaises(NotFound):
            self._sell([SaleLineInput(product_id=self.wig.id, quantity=1)], customer_id=999)
        self.assertEqual(self.stock_of(self.wig.id), 3)


class ConcurrentSaleTests(LedgerTestCase):
    def test_two_sales_for_last_unit(self) -> None:
        product = self.make_product('Last Wig', quantity=1, selling_price=Decimal('3000'))
        self.db.close()

        barrier = threading.Barrier(2)
        outcomes: list[object] = []
        lock = threading.Lock()

        def sell() -> None:
            with self.Session() as db:
                barrier.wait()
                try:
                    create_sale(
                        db,
                        customer_id=None,
                        items=[SaleLineInput(product_id=product.id, quantity=1)],
                        payment_method=PaymentMethod.CASH,
                        channel=SalesChannel.IN_STORE,
                    )
                    db.commit()
                    result: object = 'sold'
                except Exception as exc:
                    db.rollback()
                    result = exc
                with lock:
                    outcomes.append(result)

        threads = [threading.Thread(target=sell) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(len(outcomes), 2)
        self.assertEqual(outcomes.count('sold'), 1)
        failures = [outcome for outcome in outcomes if outcome != 'sold']
        self.assertIsInstance(failures[0], InsufficientStock)
        self.assertEqual(self.stock_of(product.id), 0)
        self.assertEqual(self.count(Sale), 1)


if __name__ == '__main__':
    unittest.main()
