import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models


class Cart(models.Model):
    """
    Shopping cart.
    At most one cart per user; anonymous carts have no user and are
    looked up by id.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        related_name="cart",
        null=True,
        blank=True,
        on_delete=models.CASCADE,
    )

    # Maintained by the cart side; order placement never trusts it
    total_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "carts"

    def __str__(self):
        return f"Cart {self.id} for {self.user_id or 'guest'}"

    def line_items(self):
        return [
            {"medicine_id": item.medicine_id, "quantity": item.quantity}
            for item in self.items.all()
        ]


class CartItem(models.Model):
    """
    Cart ke andar ek item (medicine + quantity).
    """

    cart = models.ForeignKey(
        Cart,
        related_name="items",
        on_delete=models.CASCADE,
    )
    medicine = models.ForeignKey(
        "catalog.Medicine",
        related_name="cart_items",
        on_delete=models.CASCADE,
    )

    quantity = models.PositiveIntegerField(default=1)
    added_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "cart_items"
        ordering = ["added_at", "id"]
        constraints = [
            models.UniqueConstraint(fields=["cart", "medicine"], name="uniq_cart_medicine"),
        ]

    def __str__(self):
        return f"{self.cart_id} -> {self.medicine_id} x {self.quantity}"
