# apps/catalog/models.py
from django.core.validators import MinValueValidator
from django.db import models

from apps.utils.models import TimestampedModel


class Medicine(TimestampedModel):
    """
    Sellable catalog item.

    NOTE:
    - `stock_quantity` is the live available count. Orders decrement it,
      cancellations put it back. Only InventoryService should write it.
    """
    product_name = models.CharField(max_length=255)
    manufacturer = models.CharField(max_length=255, blank=True)

    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(0)],
        help_text="Current unit price",
    )
    stock_quantity = models.IntegerField(default=0)

    class Meta:
        ordering = ["product_name"]
        indexes = [
            models.Index(fields=["product_name"], name="medicine_name_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(stock_quantity__gte=0),
                name="medicine_stock_non_negative",
            ),
        ]

    def __str__(self):
        return f"{self.product_name} (stock: {self.stock_quantity})"
