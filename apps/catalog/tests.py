# apps/catalog/tests.py
import concurrent.futures
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import connection
from django.test import TestCase, TransactionTestCase

from apps.utils.exceptions import InsufficientStock, NotFound
from apps.orders.models import Order
from apps.orders.services import OrderService
from .models import Medicine
from .services import InventoryService

User = get_user_model()


class InventoryServiceTests(TestCase):
    def setUp(self):
        self.paracetamol = Medicine.objects.create(
            product_name="Paracetamol 500mg", price=Decimal("10.00"), stock_quantity=5
        )
        self.ibuprofen = Medicine.objects.create(
            product_name="Ibuprofen 400mg", price=Decimal("25.50"), stock_quantity=0
        )

    def test_reserve_decrements_every_line(self):
        InventoryService.reserve_stock(
            [{"medicine_id": self.paracetamol.id, "quantity": 2}], reference="T-1"
        )
        self.paracetamol.refresh_from_db()
        self.assertEqual(self.paracetamol.stock_quantity, 3)

    def test_short_line_leaves_all_stock_untouched(self):
        with self.assertRaises(InsufficientStock) as ctx:
            InventoryService.reserve_stock(
                [
                    {"medicine_id": self.paracetamol.id, "quantity": 2},
                    {"medicine_id": self.ibuprofen.id, "quantity": 1},
                ],
                reference="T-2",
            )

        self.assertIn("Ibuprofen 400mg", ctx.exception.message)
        self.paracetamol.refresh_from_db()
        self.assertEqual(self.paracetamol.stock_quantity, 5)

    def test_unknown_medicine_is_not_found(self):
        with self.assertRaises(NotFound):
            InventoryService.reserve_stock(
                [
                    {"medicine_id": self.paracetamol.id, "quantity": 1},
                    {"medicine_id": "00000000-0000-0000-0000-000000000000", "quantity": 1},
                ],
                reference="T-3",
            )

        self.paracetamol.refresh_from_db()
        self.assertEqual(self.paracetamol.stock_quantity, 5)

    def test_repeated_lines_are_checked_together(self):
        # 3 + 3 > 5 even though each line alone fits
        with self.assertRaises(InsufficientStock):
            InventoryService.reserve_stock(
                [
                    {"medicine_id": self.paracetamol.id, "quantity": 3},
                    {"medicine_id": self.paracetamol.id, "quantity": 3},
                ],
                reference="T-4",
            )

        self.paracetamol.refresh_from_db()
        self.assertEqual(self.paracetamol.stock_quantity, 5)

    def test_stock_taken_after_validation_rolls_back_earlier_lines(self):
        self.ibuprofen.stock_quantity = 1
        self.ibuprofen.save()
        original = InventoryService.bulk_lock_and_validate

        def validate_then_lose_race(items):
            medicines = original(items)
            Medicine.objects.filter(id=self.ibuprofen.id).update(stock_quantity=0)
            return medicines

        with patch.object(InventoryService, "bulk_lock_and_validate", side_effect=validate_then_lose_race):
            with self.assertRaises(InsufficientStock):
                InventoryService.reserve_stock(
                    [
                        {"medicine_id": self.paracetamol.id, "quantity": 2},
                        {"medicine_id": self.ibuprofen.id, "quantity": 1},
                    ],
                    reference="T-5",
                )

        self.paracetamol.refresh_from_db()
        self.assertEqual(self.paracetamol.stock_quantity, 5)

    def test_uppercase_or_unhyphenated_ids_match_the_medicine(self):
        InventoryService.reserve_stock(
            [
                {"medicine_id": str(self.paracetamol.id).upper(), "quantity": 1},
                {"medicine_id": self.paracetamol.id.hex, "quantity": 1},
            ],
            reference="T-6",
        )
        self.paracetamol.refresh_from_db()
        self.assertEqual(self.paracetamol.stock_quantity, 3)

    def test_malformed_id_is_not_found(self):
        with self.assertRaises(NotFound):
            InventoryService.reserve_stock(
                [{"medicine_id": "not-a-uuid", "quantity": 1}], reference="T-7"
            )

    def test_release_adds_quantities_back(self):
        InventoryService.release_stock(
            [
                {"medicine_id": self.paracetamol.id, "quantity": 2},
                {"medicine_id": self.paracetamol.id, "quantity": 1},
                {"medicine_id": self.ibuprofen.id, "quantity": 4},
            ],
            reference="CANCEL-1",
        )
        self.paracetamol.refresh_from_db()
        self.ibuprofen.refresh_from_db()
        self.assertEqual(self.paracetamol.stock_quantity, 8)
        self.assertEqual(self.ibuprofen.stock_quantity, 4)


class ConcurrencyTests(TransactionTestCase):
    # Use TransactionTestCase to allow real DB transactions for concurrency testing

    def setUp(self):
        # Only 1 item in stock
        self.medicine = Medicine.objects.create(
            product_name="Insulin Pen", price=Decimal("450.00"), stock_quantity=1
        )
        self.users = [
            User.objects.create_user(username=f"patient{i}", password="testpass123")
            for i in range(4)
        ]

    def test_concurrent_ordering_never_oversells(self):
        """Several patients racing for the last unit: one wins, the rest are told it is out of stock"""
        def place_order(user_id):
            try:
                OrderService.place_order_by_user_id(
                    user_id,
                    address="Ward 4, City Hospital",
                    contact="+911111111111",
                    cart_items=[{"medicine_id": self.medicine.id, "quantity": 1}],
                )
                return "SUCCESS"
            except Exception as e:
                return type(e).__name__
            finally:
                connection.close()

        with concurrent.futures.ThreadPoolExecutor(max_workers=4) as executor:
            results = list(executor.map(place_order, [u.id for u in self.users]))

        successes = results.count("SUCCESS")
        self.medicine.refresh_from_db()

        self.assertEqual(successes, 1, results)
        self.assertEqual(results.count("InsufficientStock"), 3, results)
        self.assertEqual(self.medicine.stock_quantity, 1 - successes)
        self.assertEqual(Order.objects.count(), successes)
        self.assertGreaterEqual(self.medicine.stock_quantity, 0)
