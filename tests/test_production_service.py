from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from inventory_ledger.errors import InsufficientStock, InvalidStateTransition, NotFound, ValidationError
from inventory_ledger.models import Production, ProductionStatus, ProductType
from inventory_ledger.services.catalog_service import set_selling_price
from inventory_ledger.services.pricing_service import MarginTable
from inventory_ledger.services.production_service import (
    MaterialInput,
    create_production,
    get_production_detail,
    list_productions,
    transition_production,
    update_production_details,
)
from support import LedgerTestCase


class ProductionServiceTests(LedgerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.wigs = self.make_category('Wigs')
        self.bundle = self.make_product('Bundle 20', quantity=6, cost_price_ngn=Decimal('400'))
        self.closure = self.make_product('Closure 4x4', quantity=2, cost_price_ngn=Decimal('300'))
        self.wig = self.make_product(
            'Straight Wig 20', quantity=0, product_type=ProductType.FINISHED_PRODUCT, category=self.wigs
        )
        self.margins = MarginTable(default=Decimal('50'))

    def _create(self, **kwargs) -> Production:
        values = {
            'product_id': self.wig.id,
            'maker_id': None,
            'materials': [
                MaterialInput(product_id=self.bundle.id, quantity=3),
                MaterialInput(product_id=self.closure.id, quantity=1),
            ],
            'labor_cost': Decimal('0'),
            'margins': self.margins,
            'on': date(2024, 5, 2),
        }
        values.update(kwargs)
        production = create_production(self.db, **values)
        self.db.commit()
        return production

    def _selling_price(self) -> Decimal | None:
        self.db.refresh(self.wig)
        return self.wig.selling_price

    def test_create_consumes_materials_and_prices(self) -> None:
        production = self._create(labor_cost=Decimal('0'))

        self.assertEqual(production.status, ProductionStatus.PENDING)
        self.assertEqual(production.production_number, 'PRD-20240502-0001')
        self.assertEqual(production.total_material_cost, Decimal('1500.00'))
        self.assertEqual(production.total_production_cost, Decimal('1500.00'))
        self.assertEqual(production.recommended_selling_price, Decimal('2250.00'))
        self.assertEqual(self.stock_of(self.bundle.id), 3)
        self.assertEqual(self.stock_of(self.closure.id), 1)
        self.assertEqual(self.stock_of(self.wig.id), 0)

    def test_labor_and_explicit_unit_cost(self) -> None:
        production = self._create(
            materials=[MaterialInput(product_id=self.bundle.id, quantity=2, unit_cost_ngn=Decimal('450'))],
            labor_cost=Decimal('100'),
        )
        self.assertEqual(production.total_material_cost, Decimal('900.00'))
        self.assertEqual(production.total_production_cost, Decimal('1000.00'))
        self.assertEqual(production.recommended_selling_price, Decimal('1500.00'))

    def test_category_margin_is_used(self) -> None:
        margins = MarginTable(default=Decimal('50'), by_category={self.wigs.id: Decimal('60')})
        production = self._create(margins=margins)
        self.assertEqual(production.margin_percent, Decimal('60'))
        self.assertEqual(production.recommended_selling_price, Decimal('2400.00'))

    def test_insufficient_material_aborts_everything(self) -> None:
        with self.assertRaises(InsufficientStock) as ctx:
            create_production(
                self.db,
                product_id=self.wig.id,
                maker_id=None,
                materials=[
                    MaterialInput(product_id=self.bundle.id, quantity=3),
                    MaterialInput(product_id=self.closure.id, quantity=5),
                ],
                labor_cost=Decimal('0'),
                margins=self.margins,
            )

        self.assertEqual(ctx.exception.product_id, self.closure.id)
        self.assertEqual(self.stock_of(self.bundle.id), 6)
        self.assertEqual(self.stock_of(self.closure.id), 2)
        self.assertEqual(self.count(Production), 0)

    def test_create_validation(self) -> None:
        body_wave = self.make_product(
            'Body Wave Wig', quantity=2, product_type=ProductType.FINISHED_PRODUCT, cost_price_ngn=Decimal('900')
        )
        cases = {
            'no materials': {'materials': []},
            'zero quantity': {'materials': [MaterialInput(product_id=self.bundle.id, quantity=0)]},
            'negative labor': {'labor_cost': Decimal('-1')},
            'consumes itself': {'materials': [MaterialInput(product_id=self.wig.id, quantity=1)]},
            'finished product as material': {'materials': [MaterialInput(product_id=body_wave.id, quantity=1)]},
            'raw material as target': {
                'product_id': self.closure.id,
                'materials': [MaterialInput(product_id=self.bundle.id, quantity=1)],
            },
        }
        for label, overrides in cases.items():
            with self.subTest(label):
                with self.assertRaises(ValidationError):
                    self._create(**overrides)
        self.assertEqual(self.stock_of(self.bundle.id), 6)
        self.assertEqual(self.stock_of(body_wave.id), 2)
        self.assertEqual(self.count(Production), 0)

    def test_material_without_cost_needs_unit_cost(self) -> None:
        lace = self.make_product('Lace', quantity=4)
        with self.assertRaises(ValidationError):
            self._create(materials=[MaterialInput(product_id=lace.id, quantity=1)])
        self.assertEqual(self.stock_of(lace.id), 4)

    def test_unknown_maker(self) -> None:
        with self.assertRaises(NotFound):
            self._create(maker_id=404)

    def test_create_then_cancel_restores_stock(self) -> None:
        production = self._create()

        transition_production(self.db, production_id=production.id, new_status=ProductionStatus.CANCELLED)
        self.db.commit()

        self.assertEqual(self.stock_of(self.bundle.id), 6)
        self.assertEqual(self.stock_of(self.closure.id), 2)
        self.assertEqual(self.stock_of(self.wig.id), 0)
        self.assertEqual(production.status, ProductionStatus.CANCELLED)

    def test_complete_credits_one_unit_and_sets_price(self) -> None:
        production = self._create()

        transition_production(
            self.db, production_id=production.id, new_status=ProductionStatus.COMPLETED, on=date(2024, 5, 9)
        )
        self.db.commit()

        self.assertEqual(self.stock_of(self.wig.id), 1)
        self.assertEqual(self._selling_price(), Decimal('2250'))
        self.assertEqual(production.actual_completion, date(2024, 5, 9))

    def test_complete_twice_is_rejected(self) -> None:
        production = self._create()
        transition_production(self.db, production_id=production.id, new_status=ProductionStatus.COMPLETED)
        self.db.commit()

        with self.assertRaises(InvalidStateTransition):
            transition_production(self.db, production_id=production.id, new_status=ProductionStatus.COMPLETED)

        self.assertEqual(self.stock_of(self.wig.id), 1)

    def test_terminal_orders_cannot_move(self) -> None:
        production = self._create()
        transition_production(self.db, production_id=production.id, new_status=ProductionStatus.COMPLETED)
        self.db.commit()

        for status in ProductionStatus:
            with self.subTest(status=status.value):
                with self.assertRaises(InvalidStateTransition):
                    transition_production(self.db, production_id=production.id, new_status=status)
        self.assertEqual(self.stock_of(self.bundle.id), 3)
        self.assertEqual(self.stock_of(self.wig.id), 1)

    def test_cancelled_orders_cannot_move(self) -> None:
        production = self._create()
        transition_production(self.db, production_id=production.id, new_status=ProductionStatus.CANCELLED)
        self.db.commit()

        for status in ProductionStatus:
            with self.subTest(status=status.value):
                with self.assertRaises(InvalidStateTransition) as ctx:
                    transition_production(self.db, production_id=production.id, new_status=status)
                self.assertEqual(ctx.exception.current, ProductionStatus.CANCELLED.value)
        self.db.rollback()

        self.assertEqual(self.stock_of(self.bundle.id), 6)
        self.assertEqual(self.stock_of(self.closure.id), 2)
        self.assertEqual(self.stock_of(self.wig.id), 0)
        self.assertIsNone(self._selling_price())

    def test_manual_price_survives_completion(self) -> None:
        set_selling_price(self.db, product_id=self.wig.id, price=Decimal('5000'))
        self.db.commit()
        production = self._create()

        transition_production(self.db, production_id=production.id, new_status=ProductionStatus.COMPLETED)
        self.db.commit()

        self.assertEqual(self._selling_price(), Decimal('5000'))
        self.assertEqual(self.stock_of(self.wig.id), 1)

    def test_pending_and_in_progress_have_no_stock_effect(self) -> None:
        production = self._create()

        transition_production(
            self.db, production_id=production.id, new_status=ProductionStatus.IN_PROGRESS, on=date(2024, 5, 3)
        )
        transition_production(self.db, production_id=production.id, new_status=ProductionStatus.PENDING)
        self.db.commit()

        self.assertEqual(production.start_date, date(2024, 5, 3))
        self.assertEqual(self.stock_of(self.bundle.id), 3)
        self.assertEqual(self.stock_of(self.wig.id), 0)

    def test_same_status_is_rejected(self) -> None:
        production = self._create()
        with self.assertRaises(InvalidStateTransition):
            transition_production(self.db, production_id=production.id, new_status=ProductionStatus.PENDING)

    def test_unknown_status_is_validation_error(self) -> None:
        production = self._create()
        with self.assertRaises(ValidationError):
            transition_production(self.db, production_id=production.id, new_status='shipped')

    def test_update_details_only_while_open(self) -> None:
        maker = self.make_maker()
        production = self._create()

        update_production_details(
            self.db, production_id=production.id, maker_id=maker.id, expected_completion=date(2024, 5, 20), notes=' rush '
        )
        self.db.commit()
        detail = get_production_detail(self.db, production_id=production.id)
        self.assertEqual(detail['maker_name'], 'Adaeze')
        self.assertEqual(detail['notes'], 'rush')
        self.assertEqual(detail['allowed_transitions'], ['cancelled', 'completed', 'in_progress'])

        transition_production(self.db, production_id=production.id, new_status=ProductionStatus.CANCELLED)
        self.db.commit()
        with self.assertRaises(InvalidStateTransition):
            update_production_details(self.db, production_id=production.id, notes='too late')

    def test_detail_and_list(self) -> None:
        production = self._create()

        detail = get_production_detail(self.db, production_id=production.id)
        self.assertEqual(detail['product_name'], 'Straight Wig 20')
        self.assertEqual(
            [(row['product_id'], row['quantity'], row['line_total_ngn']) for row in detail['materials']],
            [(self.bundle.id, 3, Decimal('1200.00')), (self.closure.id, 1, Decimal('300.00'))],
        )
        rows = list_productions(self.db, status=ProductionStatus.PENDING)
        self.assertEqual([row['id'] for row in rows], [production.id])
        self.assertEqual(list_productions(self.db, status=ProductionStatus.COMPLETED), [])


if __name__ == '__main__':
    unittest.main()
