from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase

from apps.catalog.models import Medicine
from apps.utils.exceptions import (
    InsufficientStock,
    InvalidTransition,
    NotFound,
    ValidationFailure,
)
from apps.orders.models import Cart, CartItem, Order
from apps.orders.services import OrderService

User = get_user_model()


class OrderFlowTestBase(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="patient", password="testpass123")
        self.other = User.objects.create_user(username="other", password="testpass123")

        # Item A: stock 5 @ 10.00, item B: out of stock
        self.med_a = Medicine.objects.create(
            product_name="Amoxicillin 250mg", price=Decimal("10.00"), stock_quantity=5
        )
        self.med_b = Medicine.objects.create(
            product_name="Budesonide Inhaler", price=Decimal("300.00"), stock_quantity=0
        )

    def make_cart(self, user, lines, total_price=Decimal("0.00")):
        cart = Cart.objects.create(user=user, total_price=total_price)
        for medicine, qty in lines:
            CartItem.objects.create(cart=cart, medicine=medicine, quantity=qty)
        return cart

    def assert_stock(self, medicine, expected):
        medicine.refresh_from_db()
        self.assertEqual(medicine.stock_quantity, expected)


class PlaceFromCartTests(OrderFlowTestBase):

    def test_cart_checkout_creates_order_and_clears_cart(self):
        cart = self.make_cart(self.user, [(self.med_a, 2)], total_price=Decimal("999.00"))

        order = OrderService.place_order_from_cart(self.user, "12 MG Road", "+919876543210")

        self.assertEqual(order.total_amount, Decimal("20.00"))
        self.assertEqual(order.status, Order.Status.PENDING)
        self.assertEqual(order.payment_status, Order.PaymentStatus.PENDING)
        self.assertEqual(order.user, self.user)
        self.assert_stock(self.med_a, 3)
        self.assertFalse(Cart.objects.filter(id=cart.id).exists())

        item = order.items.get()
        self.assertEqual(item.price, Decimal("10.00"))
        self.assertEqual(item.quantity, 2)
        self.assertEqual(item.medicine_name, "Amoxicillin 250mg")

    def test_short_item_fails_whole_checkout(self):
        cart = self.make_cart(self.user, [(self.med_a, 2), (self.med_b, 1)])

        with self.assertRaises(InsufficientStock) as ctx:
            OrderService.place_order_from_cart(self.user, "12 MG Road", "+919876543210")

        self.assertIn("Budesonide Inhaler", ctx.exception.message)
        self.assert_stock(self.med_a, 5)
        self.assertEqual(Order.objects.count(), 0)
        self.assertTrue(Cart.objects.filter(id=cart.id).exists())

    def test_missing_cart_fails(self):
        with self.assertRaises(ValidationFailure):
            OrderService.place_order_from_cart(self.user, "12 MG Road", "+919876543210")
        self.assertEqual(Order.objects.count(), 0)

    def test_empty_cart_fails(self):
        self.make_cart(self.user, [])
        with self.assertRaises(ValidationFailure) as ctx:
            OrderService.place_order_from_cart(self.user, "12 MG Road", "+919876543210")

        self.assertEqual(ctx.exception.message, "Cart is empty")
        self.assertEqual(Order.objects.count(), 0)

    def test_blank_address_is_rejected_before_stock_moves(self):
        self.make_cart(self.user, [(self.med_a, 2)])
        with self.assertRaises(ValidationFailure):
            OrderService.place_order_from_cart(self.user, "   ", "+919876543210")
        self.assert_stock(self.med_a, 5)

    def test_price_snapshot_survives_catalog_change(self):
        self.make_cart(self.user, [(self.med_a, 2)])
        order = OrderService.place_order_from_cart(self.user, "12 MG Road", "+919876543210")

        self.med_a.price = Decimal("99.00")
        self.med_a.save()

        order.refresh_from_db()
        item = order.items.get()
        self.assertEqual(item.price, Decimal("10.00"))
        self.assertEqual(order.total_amount, sum(i.subtotal for i in order.items.all()))


class PlaceByUserIdTests(OrderFlowTestBase):

    def test_total_is_sum_of_snapshots(self):
        self.med_b.stock_quantity = 3
        self.med_b.save()

        order = OrderService.place_order_by_user_id(
            self.user.id, "12 MG Road", "+919876543210",
            [
                {"medicine_id": self.med_a.id, "quantity": 2},
                {"medicine_id": self.med_b.id, "quantity": 1},
            ],
        )

        self.assertEqual(order.total_amount, Decimal("320.00"))
        self.assertEqual(order.total_amount, sum(i.subtotal for i in order.items.all()))
        self.assert_stock(self.med_a, 3)
        self.assert_stock(self.med_b, 2)

    def test_uppercase_medicine_id_is_priced(self):
        order = OrderService.place_order_by_user_id(
            self.user.id, "12 MG Road", "+919876543210",
            [{"medicine_id": str(self.med_a.id).upper(), "quantity": 2}],
        )

        self.assertEqual(order.total_amount, Decimal("20.00"))
        self.assert_stock(self.med_a, 3)

    def test_later_short_item_does_not_decrement_earlier_ones(self):
        with self.assertRaises(InsufficientStock):
            OrderService.place_order_by_user_id(
                self.user.id, "12 MG Road", "+919876543210",
                [
                    {"medicine_id": self.med_a.id, "quantity": 2},
                    {"medicine_id": self.med_b.id, "quantity": 1},
                ],
            )

        self.assert_stock(self.med_a, 5)
        self.assertEqual(Order.objects.count(), 0)

    def test_unknown_medicine_is_not_found(self):
        with self.assertRaises(NotFound):
            OrderService.place_order_by_user_id(
                self.user.id, "12 MG Road", "+919876543210",
                [
                    {"medicine_id": self.med_a.id, "quantity": 1},
                    {"medicine_id": "5f0c6a3e-1b7e-4f3e-9c55-3d1c1c3f0a11", "quantity": 1},
                ],
            )
        self.assert_stock(self.med_a, 5)

    def test_unknown_user_is_not_found(self):
        with self.assertRaises(NotFound):
            OrderService.place_order_by_user_id(
                987654, "12 MG Road", "+919876543210",
                [{"medicine_id": self.med_a.id, "quantity": 1}],
            )

    def test_empty_items_and_bad_quantity_are_validation_failures(self):
        with self.assertRaises(ValidationFailure):
            OrderService.place_order_by_user_id(self.user.id, "12 MG Road", "+919876543210", [])

        with self.assertRaises(ValidationFailure):
            OrderService.place_order_by_user_id(
                self.user.id, "12 MG Road", "+919876543210",
                [{"medicine_id": self.med_a.id, "quantity": 0}],
            )
        self.assert_stock(self.med_a, 5)

    def test_stored_cart_is_left_alone(self):
        cart = self.make_cart(self.user, [(self.med_a, 1)])

        OrderService.place_order_by_user_id(
            self.user.id, "12 MG Road", "+919876543210",
            [{"medicine_id": self.med_a.id, "quantity": 1}],
        )

        self.assertTrue(Cart.objects.filter(id=cart.id).exists())


class PlaceByCartIdTests(OrderFlowTestBase):

    def test_total_is_recomputed_and_cart_deleted(self):
        cart = self.make_cart(self.user, [(self.med_a, 2)], total_price=Decimal("1.00"))

        order = OrderService.place_order_using_cart_id(cart.id, "12 MG Road", "+919876543210")

        self.assertEqual(order.total_amount, Decimal("20.00"))
        self.assertEqual(order.user, self.user)
        self.assert_stock(self.med_a, 3)
        self.assertFalse(Cart.objects.filter(id=cart.id).exists())

    def test_missing_or_empty_cart_is_not_found(self):
        with self.assertRaises(NotFound):
            OrderService.place_order_using_cart_id(
                "5f0c6a3e-1b7e-4f3e-9c55-3d1c1c3f0a11", "12 MG Road", "+919876543210"
            )

        empty = self.make_cart(self.user, [])
        with self.assertRaises(NotFound):
            OrderService.place_order_using_cart_id(empty.id, "12 MG Road", "+919876543210")

    def test_anonymous_cart_is_owned_by_caller(self):
        cart = self.make_cart(None, [(self.med_a, 1)])

        order = OrderService.place_order_using_cart_id(
            cart.id, "12 MG Road", "+919876543210", requested_by=self.other
        )

        self.assertEqual(order.user, self.other)

    def test_someone_elses_cart_is_not_found(self):
        cart = self.make_cart(self.user, [(self.med_a, 1)])

        with self.assertRaises(NotFound):
            OrderService.place_order_using_cart_id(
                cart.id, "12 MG Road", "+919876543210", requested_by=self.other
            )
        self.assert_stock(self.med_a, 5)

    def test_short_item_keeps_cart_and_stock(self):
        cart = self.make_cart(self.user, [(self.med_a, 2), (self.med_b, 1)])

        with self.assertRaises(InsufficientStock):
            OrderService.place_order_using_cart_id(cart.id, "12 MG Road", "+919876543210")

        self.assert_stock(self.med_a, 5)
        self.assertTrue(Cart.objects.filter(id=cart.id).exists())


class CancelOrderServiceTests(OrderFlowTestBase):
    def setUp(self):
        super().setUp()
        self.order = OrderService.place_order_by_user_id(
            self.user.id, "12 MG Road", "+919876543210",
            [{"medicine_id": self.med_a.id, "quantity": 2}],
        )

    def test_cancel_pending_order_restores_stock(self):
        self.assert_stock(self.med_a, 3)

        order = OrderService.cancel_order(self.order.id)

        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CANCELLED)
        self.assertTrue(self.order.stock_released)
        self.assert_stock(self.med_a, 5)

    def test_repeat_cancel_is_idempotent(self):
        OrderService.cancel_order(self.order.id)
        order = OrderService.cancel_order(self.order.id)

        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assert_stock(self.med_a, 5)

    def test_cannot_cancel_shipped_or_delivered_order(self):
        for status in (Order.Status.SHIPPED, Order.Status.DELIVERED):
            Order.objects.filter(id=self.order.id).update(status=status)

            with self.assertRaises(InvalidTransition):
                OrderService.cancel_order(self.order.id)

            self.order.refresh_from_db()
            self.assertEqual(self.order.status, status)
            self.assert_stock(self.med_a, 3)

    def test_processing_order_can_be_cancelled(self):
        Order.objects.filter(id=self.order.id).update(status=Order.Status.PROCESSING)
        order = OrderService.cancel_order(self.order.id)
        self.assertEqual(order.status, Order.Status.CANCELLED)

    def test_unknown_order_is_not_found(self):
        with self.assertRaises(NotFound):
            OrderService.cancel_order("5f0c6a3e-1b7e-4f3e-9c55-3d1c1c3f0a11")
        with self.assertRaises(NotFound):
            OrderService.cancel_order("not-a-uuid")

    def test_other_customer_cannot_cancel(self):
        with self.assertRaises(NotFound):
            OrderService.cancel_order(self.order.id, requested_by=self.other)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)


class UpdateStatusServiceTests(OrderFlowTestBase):
    def setUp(self):
        super().setUp()
        self.order = OrderService.place_order_by_user_id(
            self.user.id, "12 MG Road", "+919876543210",
            [{"medicine_id": self.med_a.id, "quantity": 2}],
        )

    def test_overwrites_without_transition_rules(self):
        OrderService.update_status(self.order.id, "Delivered")
        OrderService.update_status(self.order.id, "Pending")

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)

    def test_cancelled_via_status_has_no_stock_side_effect(self):
        OrderService.update_status(self.order.id, "Cancelled")

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CANCELLED)
        self.assert_stock(self.med_a, 3)

        # An explicit cancel afterwards still hands the stock back, once
        OrderService.cancel_order(self.order.id)
        OrderService.cancel_order(self.order.id)
        self.assert_stock(self.med_a, 5)

    def test_unknown_status_is_rejected(self):
        with self.assertRaises(ValidationFailure):
            OrderService.update_status(self.order.id, "Lost")

    def test_unknown_order_is_not_found(self):
        with self.assertRaises(NotFound):
            OrderService.update_status("5f0c6a3e-1b7e-4f3e-9c55-3d1c1c3f0a11", "Shipped")


class ListOrdersServiceTests(OrderFlowTestBase):

    def test_user_without_orders_gets_empty_result(self):
        self.assertEqual(list(OrderService.orders_for_user(self.user)), [])

    def test_patient_without_orders_gets_empty_result(self):
        self.assertEqual(list(OrderService.orders_for_patient(self.user.id)), [])

    def test_unknown_patient_is_not_found(self):
        with self.assertRaises(NotFound):
            OrderService.orders_for_patient(987654)
        with self.assertRaises(NotFound):
            OrderService.orders_for_patient("abc")

    def test_lists_only_own_orders_oldest_first(self):
        first = OrderService.place_order_by_user_id(
            self.user.id, "12 MG Road", "+919876543210",
            [{"medicine_id": self.med_a.id, "quantity": 1}],
        )
        second = OrderService.place_order_by_user_id(
            self.user.id, "12 MG Road", "+919876543210",
            [{"medicine_id": self.med_a.id, "quantity": 1}],
        )
        OrderService.place_order_by_user_id(
            self.other.id, "7 Park Street", "+918888888888",
            [{"medicine_id": self.med_a.id, "quantity": 1}],
        )

        ids = [o.id for o in OrderService.orders_for_patient(self.user.id)]
        self.assertEqual(ids, [first.id, second.id])
