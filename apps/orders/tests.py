# apps/orders/tests.py
import uuid
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.urls import reverse

from rest_framework.test import APITestCase, APIClient
from rest_framework import status

from apps.catalog.models import Medicine
from apps.orders.models import Order, Cart, CartItem
from apps.orders.services import OrderService


User = get_user_model()


class OrderAPITestBase(APITestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(username="patient", password="testpass123")
        self.other = User.objects.create_user(username="other", password="testpass123")
        self.staff = User.objects.create_user(username="pharmacist", password="testpass123", is_staff=True)

        self.med_a = Medicine.objects.create(
            product_name="Cetirizine 10mg", price=Decimal("10.00"), stock_quantity=5
        )
        self.med_b = Medicine.objects.create(
            product_name="Salbutamol Syrup", price=Decimal("85.00"), stock_quantity=0
        )
        self.payload = {"address": "12 MG Road, Bengaluru", "contact": "+919876543210"}

    def make_cart(self, user, lines):
        cart = Cart.objects.create(user=user)
        for medicine, qty in lines:
            CartItem.objects.create(cart=cart, medicine=medicine, quantity=qty)
        return cart

    def place_for(self, user, qty=2):
        return OrderService.place_order_by_user_id(
            user.id, "12 MG Road", "+919876543210",
            [{"medicine_id": self.med_a.id, "quantity": qty}],
        )


class PlaceOrderAPITests(OrderAPITestBase):

    def test_place_from_cart(self):
        self.client.force_authenticate(self.user)
        cart = self.make_cart(self.user, [(self.med_a, 2)])

        resp = self.client.post(reverse("order-place"), self.payload, format="json")

        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.data["message"], "Order placed successfully")
        order = resp.data["order"]
        self.assertEqual(order["totalAmount"], "20.00")
        self.assertEqual(order["status"], "Pending")
        self.assertEqual(order["paymentStatus"], "Pending")
        self.assertEqual(order["userId"], self.user.id)
        self.assertEqual(order["items"][0]["price"], "10.00")
        self.assertEqual(order["items"][0]["medicine"]["productName"], "Cetirizine 10mg")
        self.assertFalse(Cart.objects.filter(id=cart.id).exists())

    def test_empty_cart_is_bad_request(self):
        self.client.force_authenticate(self.user)

        resp = self.client.post(reverse("order-place"), self.payload, format="json")

        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data, {"message": "Cart is empty", "code": "validation_failure"})

    def test_missing_fields_are_bad_request(self):
        self.client.force_authenticate(self.user)
        self.make_cart(self.user, [(self.med_a, 2)])

        resp = self.client.post(reverse("order-place"), {"contact": "+919876543210"}, format="json")

        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["code"], "validation_failure")
        self.assertIn("address", resp.data["errors"])
        self.assertEqual(Order.objects.count(), 0)

    def test_insufficient_stock_is_bad_request(self):
        self.client.force_authenticate(self.user)
        self.make_cart(self.user, [(self.med_a, 2), (self.med_b, 1)])

        resp = self.client.post(reverse("order-place"), self.payload, format="json")

        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["code"], "insufficient_stock")
        self.med_a.refresh_from_db()
        self.assertEqual(self.med_a.stock_quantity, 5)

    def test_anonymous_request_is_rejected(self):
        resp = self.client.post(reverse("order-place"), self.payload, format="json")
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_place_by_user_id(self):
        self.client.force_authenticate(self.user)
        body = {
            **self.payload,
            "userId": self.user.id,
            "cartItems": [{"medicineId": str(self.med_a.id), "quantity": 3}],
        }

        resp = self.client.post(reverse("order-place-by-user"), body, format="json")

        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.data["order"]["totalAmount"], "30.00")
        self.med_a.refresh_from_db()
        self.assertEqual(self.med_a.stock_quantity, 2)

    def test_place_by_user_id_for_someone_else(self):
        body = {
            **self.payload,
            "userId": self.other.id,
            "cartItems": [{"medicineId": str(self.med_a.id), "quantity": 1}],
        }

        self.client.force_authenticate(self.user)
        resp = self.client.post(reverse("order-place-by-user"), body, format="json")
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.staff)
        resp = self.client.post(reverse("order-place-by-user"), body, format="json")
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.data["order"]["userId"], self.other.id)

    def test_place_by_user_id_with_empty_items(self):
        self.client.force_authenticate(self.user)
        body = {**self.payload, "userId": self.user.id, "cartItems": []}

        resp = self.client.post(reverse("order-place-by-user"), body, format="json")

        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("cartItems", resp.data["errors"])

    def test_place_by_cart_id(self):
        self.client.force_authenticate(self.user)
        cart = self.make_cart(self.user, [(self.med_a, 2)])

        resp = self.client.post(
            reverse("order-place-by-cart"), {**self.payload, "cartId": str(cart.id)}, format="json"
        )

        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.data["order"]["totalAmount"], "20.00")
        self.assertFalse(Cart.objects.filter(id=cart.id).exists())

    def test_place_by_missing_cart_id(self):
        self.client.force_authenticate(self.user)

        resp = self.client.post(
            reverse("order-place-by-cart"), {**self.payload, "cartId": str(uuid.uuid4())}, format="json"
        )

        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(resp.data["message"], "Cart not found or empty")

    def test_idempotency_key_blocks_replay(self):
        self.client.force_authenticate(self.user)
        key = str(uuid.uuid4())
        self.make_cart(self.user, [(self.med_a, 1)])

        first = self.client.post(reverse("order-place"), self.payload, format="json", HTTP_IDEMPOTENCY_KEY=key)
        self.make_cart(self.user, [(self.med_a, 1)])
        replay = self.client.post(reverse("order-place"), self.payload, format="json", HTTP_IDEMPOTENCY_KEY=key)

        self.assertEqual(first.status_code, status.HTTP_201_CREATED)
        self.assertEqual(replay.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(Order.objects.count(), 1)

    def test_failed_attempt_releases_idempotency_key(self):
        self.client.force_authenticate(self.user)
        key = str(uuid.uuid4())

        failed = self.client.post(reverse("order-place"), self.payload, format="json", HTTP_IDEMPOTENCY_KEY=key)
        self.make_cart(self.user, [(self.med_a, 1)])
        retry = self.client.post(reverse("order-place"), self.payload, format="json", HTTP_IDEMPOTENCY_KEY=key)

        self.assertEqual(failed.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(retry.status_code, status.HTTP_201_CREATED)

    def test_store_failure_does_not_leak_error(self):
        self.client.force_authenticate(self.user)
        self.make_cart(self.user, [(self.med_a, 1)])

        with patch.object(OrderService, "place_order_from_cart", side_effect=DatabaseError("disk I/O error at /var/db")):
            resp = self.client.post(reverse("order-place"), self.payload, format="json")

        self.assertEqual(resp.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(resp.data, {"message": "Server error", "code": "store_error"})


class ListOrdersAPITests(OrderAPITestBase):

    def test_no_orders_is_empty_list(self):
        self.client.force_authenticate(self.user)

        resp = self.client.get(reverse("order-list"))

        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data, [])

    def test_lists_own_orders_with_medicine_details(self):
        mine = self.place_for(self.user)
        self.place_for(self.other, qty=1)
        self.client.force_authenticate(self.user)

        resp = self.client.get(reverse("order-list"))

        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual([o["id"] for o in resp.data], [str(mine.id)])
        medicine = resp.data[0]["items"][0]["medicine"]
        self.assertEqual(medicine["id"], str(self.med_a.id))
        self.assertEqual(medicine["productName"], "Cetirizine 10mg")

    def test_filter_by_status(self):
        self.place_for(self.user, qty=1)
        cancelled = self.place_for(self.user, qty=1)
        OrderService.cancel_order(cancelled.id)
        self.client.force_authenticate(self.user)

        resp = self.client.get(reverse("order-list"), {"status": "Cancelled"})

        self.assertEqual([o["id"] for o in resp.data], [str(cancelled.id)])

    def test_patient_orders_require_staff(self):
        self.client.force_authenticate(self.user)
        resp = self.client.get(reverse("order-patient-list", kwargs={"patient_id": self.user.id}))
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)

    def test_patient_orders(self):
        order = self.place_for(self.user)
        self.client.force_authenticate(self.staff)

        resp = self.client.get(reverse("order-patient-list", kwargs={"patient_id": self.user.id}))

        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual([o["id"] for o in resp.data], [str(order.id)])

    def test_patient_without_orders_is_empty_list(self):
        self.client.force_authenticate(self.staff)

        resp = self.client.get(reverse("order-patient-list", kwargs={"patient_id": self.other.id}))

        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data, [])

    def test_unknown_patient_is_not_found(self):
        self.client.force_authenticate(self.staff)

        resp = self.client.get(reverse("order-patient-list", kwargs={"patient_id": "999999"}))

        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(resp.data["code"], "not_found")


class OrderStatusAPITests(OrderAPITestBase):
    def setUp(self):
        super().setUp()
        self.order = self.place_for(self.user)

    def _url(self, order_id):
        return reverse("order-status", kwargs={"order_id": str(order_id)})

    def test_staff_can_update_status(self):
        self.client.force_authenticate(self.staff)

        resp = self.client.patch(self._url(self.order.id), {"status": "Shipped"}, format="json")

        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data, {"message": "Order status updated"})
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.SHIPPED)

    def test_invalid_status_is_bad_request(self):
        self.client.force_authenticate(self.staff)

        resp = self.client.patch(self._url(self.order.id), {"status": "Teleported"}, format="json")

        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)

    def test_unknown_order_is_not_found(self):
        self.client.force_authenticate(self.staff)
        resp = self.client.patch(self._url(uuid.uuid4()), {"status": "Shipped"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)

    def test_customer_cannot_update_status(self):
        self.client.force_authenticate(self.user)
        resp = self.client.patch(self._url(self.order.id), {"status": "Delivered"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)


class CancelOrderAPITests(OrderAPITestBase):
    def setUp(self):
        super().setUp()
        self.order = self.place_for(self.user)

    def _url(self, order_id):
        return reverse("order-cancel", kwargs={"order_id": str(order_id)})

    def test_customer_can_cancel_pending_order(self):
        self.client.force_authenticate(self.user)

        resp = self.client.post(self._url(self.order.id), format="json")

        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["message"], "Order cancelled successfully")
        self.assertEqual(resp.data["order"]["status"], "Cancelled")
        self.med_a.refresh_from_db()
        self.assertEqual(self.med_a.stock_quantity, 5)

    def test_cancel_twice_succeeds(self):
        self.client.force_authenticate(self.user)

        self.client.post(self._url(self.order.id), format="json")
        resp = self.client.post(self._url(self.order.id), format="json")

        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["order"]["status"], "Cancelled")
        self.med_a.refresh_from_db()
        self.assertEqual(self.med_a.stock_quantity, 5)

    def test_cannot_cancel_delivered_order(self):
        Order.objects.filter(id=self.order.id).update(status=Order.Status.DELIVERED)
        self.client.force_authenticate(self.user)

        resp = self.client.post(self._url(self.order.id), format="json")

        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["code"], "invalid_transition")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.DELIVERED)

    def test_other_user_cannot_cancel_someone_elses_order(self):
        self.client.force_authenticate(self.other)

        resp = self.client.post(self._url(self.order.id), format="json")

        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)

    def test_staff_can_cancel_any_order(self):
        self.client.force_authenticate(self.staff)
        resp = self.client.post(self._url(self.order.id), format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)

    def test_unknown_order_is_not_found(self):
        self.client.force_authenticate(self.user)
        resp = self.client.post(self._url("does-not-exist"), format="json")
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
