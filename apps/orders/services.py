import uuid
import logging
from decimal import Decimal
from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from apps.utils.exceptions import InvalidTransition, NotFound, ValidationFailure
from apps.catalog.services import InventoryService
from .models import Cart, Order, OrderItem

logger = logging.getLogger(__name__)


def _parse_uuid(value, label):
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise NotFound(f"{label} not found")


class CartService:
    """
    Cart lookups for order placement. Both lookups lock the cart row so
    two checkouts of the same cart cannot both go through.
    """

    @staticmethod
    def get_cart_for_user(user) -> Cart:
        try:
            cart = Cart.objects.select_for_update().get(user=user)
        except Cart.DoesNotExist:
            raise ValidationFailure("Cart is empty")

        if not cart.items.exists():
            raise ValidationFailure("Cart is empty")
        return cart

    @staticmethod
    def get_cart_by_id(cart_id, requested_by=None) -> Cart:
        cart_id = _parse_uuid(cart_id, "Cart")
        try:
            cart = Cart.objects.select_for_update().get(id=cart_id)
        except Cart.DoesNotExist:
            raise NotFound("Cart not found or empty")

        # Someone else's cart looks exactly like a missing one
        if (
            requested_by is not None
            and not requested_by.is_staff
            and cart.user_id is not None
            and cart.user_id != requested_by.pk
        ):
            raise NotFound("Cart not found or empty")

        if not cart.items.exists():
            raise NotFound("Cart not found or empty")
        return cart


class OrderService:

    @staticmethod
    def _validate_request(address, contact, items):
        if not address or not str(address).strip():
            raise ValidationFailure("Address is required")
        if not contact or not str(contact).strip():
            raise ValidationFailure("Contact is required")
        if not items:
            raise ValidationFailure("Cart is empty")

        for item in items:
            qty = item.get("quantity")
            if item.get("medicine_id") is None:
                raise ValidationFailure("Every item needs a medicine id")
            if isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
                raise ValidationFailure(f"Invalid quantity for medicine {item['medicine_id']}")

    @staticmethod
    @transaction.atomic
    def _place(user, items: list, address: str, contact: str, cart: Cart = None) -> Order:
        """
        Shared placement flow:
        1. Validate input
        2. Lock, check and decrement stock for every line (all-or-nothing)
        3. Price every line from the catalog (server-side, snapshot)
        4. Create Order + Items, drop the cart
        """
        OrderService._validate_request(address, contact, items)

        order_id = uuid.uuid4()
        medicines = InventoryService.reserve_stock(items, reference=f"ORDER-{order_id}")

        total_amount = Decimal("0.00")
        order_items = []
        for item in items:
            medicine = medicines[InventoryService.medicine_key(item["medicine_id"])]
            qty = item["quantity"]

            total_amount += medicine.price * qty
            order_items.append(OrderItem(
                medicine=medicine,
                medicine_name=medicine.product_name,
                price=medicine.price,
                quantity=qty,
            ))

        order = Order.objects.create(
            id=order_id,
            user=user,
            total_amount=total_amount,
            status=Order.Status.PENDING,
            payment_status=Order.PaymentStatus.PENDING,
            address=address.strip(),
            contact=contact.strip(),
        )
        for order_item in order_items:
            order_item.order = order
        OrderItem.objects.bulk_create(order_items)

        if cart is not None:
            cart.delete()

        logger.info(
            f"Order {order.id} placed: {len(order_items)} item(s), total {total_amount}",
            extra={"order_id": order.id, "user_id": user.pk},
        )
        return order

    @staticmethod
    @transaction.atomic
    def place_order_from_cart(user, address: str, contact: str) -> Order:
        """
        Checkout of the caller's own cart.
        The cart's stored total is ignored; prices come from the catalog.
        """
        cart = CartService.get_cart_for_user(user)
        return OrderService._place(user, cart.line_items(), address, contact, cart=cart)

    @staticmethod
    def place_order_by_user_id(user_id, address: str, contact: str, cart_items: list) -> Order:
        """
        Items are supplied directly; no stored cart is read or touched.
        """
        User = get_user_model()
        try:
            user = User.objects.get(pk=user_id)
        except (User.DoesNotExist, ValueError, TypeError):
            raise NotFound("User not found")

        return OrderService._place(user, cart_items, address, contact)

    @staticmethod
    @transaction.atomic
    def place_order_using_cart_id(cart_id, address: str, contact: str, requested_by=None) -> Order:
        cart = CartService.get_cart_by_id(cart_id, requested_by=requested_by)

        # Anonymous carts belong to whoever checks them out
        user = cart.user if cart.user_id is not None else requested_by
        if user is None:
            raise ValidationFailure("Cart has no owner")

        return OrderService._place(user, cart.line_items(), address, contact, cart=cart)

    @staticmethod
    def orders_for_user(user):
        return (
            Order.objects
            .filter(user=user)
            .prefetch_related("items__medicine")
        )

    @staticmethod
    def orders_for_patient(patient_id):
        """
        No orders is an empty result, an unknown patient is NotFound.
        """
        User = get_user_model()
        try:
            patient = User.objects.get(pk=patient_id)
        except (User.DoesNotExist, ValueError, TypeError):
            raise NotFound("Patient not found")

        return OrderService.orders_for_user(patient)

    @staticmethod
    def update_status(order_id, status: str):
        """
        Plain overwrite: no transition rules and no stock side effects.
        """
        if status not in Order.Status.values:
            raise ValidationFailure(f"Invalid status '{status}'")

        order_id = _parse_uuid(order_id, "Order")
        updated = Order.objects.filter(id=order_id).update(status=status, updated_at=timezone.now())
        if not updated:
            raise NotFound("Order not found")

        logger.info(f"Order {order_id} status set to {status}", extra={"order_id": order_id})

    @staticmethod
    @transaction.atomic
    def cancel_order(order_id, requested_by=None) -> Order:
        """
        Handles Cancellation & Stock Release.
        Cancelling an already cancelled order succeeds without touching stock again.
        """
        order_id = _parse_uuid(order_id, "Order")
        try:
            order = Order.objects.select_for_update().get(id=order_id)
        except Order.DoesNotExist:
            raise NotFound("Order not found")

        if (
            requested_by is not None
            and not requested_by.is_staff
            and order.user_id != requested_by.pk
        ):
            raise NotFound("Order not found")

        if not order.can_cancel:
            raise InvalidTransition("Cannot cancel a shipped or delivered order")

        # 1. Release Stock (once per order)
        if not order.stock_released:
            InventoryService.release_stock(
                items=[
                    {"medicine_id": i.medicine_id, "quantity": i.quantity}
                    for i in order.items.all()
                ],
                reference=f"CANCEL-{order.id}",
            )
            order.stock_released = True

        # 2. Update Status
        order.status = Order.Status.CANCELLED
        order.save(update_fields=["status", "stock_released", "updated_at"])

        logger.info(f"Order {order.id} cancelled", extra={"order_id": order.id})
        return order
