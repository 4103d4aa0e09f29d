import logging
import uuid
from collections import defaultdict
from typing import List, Dict
from django.db import transaction
from django.db.models import F
from django.utils import timezone
from apps.utils.exceptions import InsufficientStock, NotFound

from .models import Medicine

logger = logging.getLogger(__name__)


class InventoryService:
    """
    Core Logic for Medicine Stock.
    ALL stock changes must pass through here.

    `items` everywhere is a list of {"medicine_id": ..., "quantity": int}.
    The same medicine may appear on several lines.
    """

    @staticmethod
    def medicine_key(medicine_id) -> str:
        """Canonical string form of a medicine id (hyphenated, lowercase)."""
        try:
            return str(uuid.UUID(str(medicine_id)))
        except (TypeError, ValueError):
            raise NotFound(f"Medicine {medicine_id} not found.")

    @staticmethod
    def _required_quantities(items: List[Dict]) -> Dict[str, int]:
        required = defaultdict(int)
        for item in items:
            required[InventoryService.medicine_key(item["medicine_id"])] += item["quantity"]
        return required

    @staticmethod
    @transaction.atomic
    def bulk_lock_and_validate(items: List[Dict]) -> Dict[str, Medicine]:
        """
        Locks medicine rows in deterministic order to prevent deadlocks,
        then checks every line without writing anything.
        """
        required = InventoryService._required_quantities(items)

        # Select For Update (Pessimistic Lock), ordered by id
        medicines = (
            Medicine.objects
            .select_for_update()
            .filter(id__in=sorted(required))
            .order_by("id")
        )
        medicine_map = {str(m.id): m for m in medicines}

        # Validation loop in request order so the first bad line is reported
        for item in items:
            mid = InventoryService.medicine_key(item["medicine_id"])
            medicine = medicine_map.get(mid)
            if medicine is None:
                raise NotFound(f"Medicine {mid} not found.")

            if medicine.stock_quantity < required[mid]:
                raise InsufficientStock(
                    f"Not enough stock for {medicine.product_name}. "
                    f"Required: {required[mid]}, Available: {medicine.stock_quantity}"
                )

        return medicine_map

    @staticmethod
    @transaction.atomic
    def reserve_stock(items: List[Dict], reference: str) -> Dict[str, Medicine]:
        """
        All-or-nothing decrement.

        Each line is a conditional decrement (only if enough stock is left),
        so even without row locks two requests can never both take the last
        unit. A failed line raises and rolls back every earlier decrement.
        Returns the locked medicines as read before the decrement.
        """
        medicines = InventoryService.bulk_lock_and_validate(items)
        now = timezone.now()

        for item in items:
            mid = InventoryService.medicine_key(item["medicine_id"])
            qty = item["quantity"]

            updated = (
                Medicine.objects
                .filter(id=mid, stock_quantity__gte=qty)
                .update(stock_quantity=F("stock_quantity") - qty, updated_at=now)
            )
            if not updated:
                logger.warning(f"Stock race lost for {mid} ({reference})")
                raise InsufficientStock(
                    f"Not enough stock for {medicines[mid].product_name}"
                )

        logger.info(f"Reserved stock for {len(items)} line(s) [{reference}]")
        return medicines

    @staticmethod
    @transaction.atomic
    def release_stock(items: List[Dict], reference: str):
        """
        Reverses a reservation (e.g., Order Cancellation).
        """
        required = InventoryService._required_quantities(items)
        now = timezone.now()

        for mid in sorted(required):
            Medicine.objects.filter(id=mid).update(
                stock_quantity=F("stock_quantity") + required[mid],
                updated_at=now,
            )

        logger.info(f"Released stock for {len(required)} medicine(s) [{reference}]")
