from __future__ import annotations

import unittest
from decimal import Decimal

from inventory_ledger.errors import NotFound, ValidationError
from inventory_ledger.services.catalog_service import clear_selling_price_override, list_low_stock, set_selling_price
from support import LedgerTestCase


class CatalogServiceTests(LedgerTestCase):
    def test_manual_price_marks_override(self) -> None:
        product = self.make_product('Closure 4x4', quantity=3)

        set_selling_price(self.db, product_id=product.id, price=Decimal('650'))
        self.db.commit()
        self.assertEqual(product.selling_price, Decimal('650'))
        self.assertTrue(product.selling_price_overridden)

        clear_selling_price_override(self.db, product_id=product.id)
        self.db.commit()
        self.assertFalse(product.selling_price_overridden)
        self.assertEqual(product.selling_price, Decimal('650'))

    def test_manual_price_validation(self) -> None:
        product = self.make_product('Closure 4x4', quantity=3)
        with self.assertRaises(ValidationError):
            set_selling_price(self.db, product_id=product.id, price=Decimal('-1'))
        with self.assertRaises(NotFound):
            set_selling_price(self.db, product_id=999, price=Decimal('10'))

    def test_low_stock_lists_products_at_or_below_reorder_level(self) -> None:
        self.make_product('Empty', quantity=0)
        self.make_product('At Level', quantity=5)
        self.make_product('Plenty', quantity=20)
        self.make_product('Retired', quantity=0, active=False)

        rows = list_low_stock(self.db)

        self.assertEqual([row['name'] for row in rows], ['Empty', 'At Level'])
        self.assertEqual(rows[0]['reorder_level'], 5)


if __name__ == '__main__':
    unittest.main()
