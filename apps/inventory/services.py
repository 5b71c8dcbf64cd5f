import logging
from typing import Dict, Iterable

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from apps.catalog.models import Product
from apps.utils.exceptions import (
    InsufficientStockError,
    ServerError,
    StockVersionConflict,
    ValidationError,
)

from .models import StockMovementLog

logger = logging.getLogger(__name__)


class InventoryService:
    """
    Core Logic for Inventory Management.
    ALL stock changes must pass through here, inside the transaction of the
    order mutation that triggers them.
    """

    @staticmethod
    def _require_atomic():
        if not transaction.get_connection().in_atomic_block:
            raise ServerError("Stock mutations must run inside the order transaction.")

    @staticmethod
    def lock_products(product_ids: Iterable) -> Dict[str, Product]:
        """
        Locks product rows in deterministic order to prevent deadlocks.
        Returns a snapshot keyed by str(product_id); missing ids are absent.
        """
        InventoryService._require_atomic()
        ids = sorted({str(pid) for pid in product_ids})
        products = (
            Product.objects
            .select_for_update()
            .filter(pk__in=ids)
            .order_by("pk")
        )
        return {str(p.pk): p for p in products}

    @staticmethod
    def debit(product: Product, quantity: int, *, reference: str) -> Product:
        """
        Decrease stock by `quantity`.
        `product` is the snapshot read under lock; its version is the CAS token.
        """
        InventoryService._require_atomic()
        if quantity < 1:
            raise ValidationError("Debit quantity must be at least 1.")
        if product.stock_quantity < quantity:
            raise InsufficientStockError(product, quantity, product.stock_quantity)

        updated = Product.objects.filter(
            pk=product.pk,
            version=product.version,
            stock_quantity__gte=quantity,
        ).update(
            stock_quantity=F("stock_quantity") - quantity,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
        if not updated:
            logger.warning(
                f"Stock CAS failed for {product.pk} at version {product.version}",
                extra={"product_id": product.pk},
            )
            raise StockVersionConflict(
                f"Stock for \"{product.name}\" changed during checkout. Please retry."
            )

        product.refresh_from_db(fields=["stock_quantity", "version"])
        InventoryService._log(
            product, -quantity, StockMovementLog.MovementType.DEBIT_ORDER, reference
        )
        return product

    @staticmethod
    def credit(product_id, quantity: int, *, reference: str) -> Product:
        """
        Return previously debited stock (cancellation reversal). Unconditional
        apart from the version check.
        """
        InventoryService._require_atomic()
        if quantity < 1:
            raise ValidationError("Credit quantity must be at least 1.")

        product = Product.objects.select_for_update().get(pk=product_id)
        updated = Product.objects.filter(
            pk=product.pk, version=product.version
        ).update(
            stock_quantity=F("stock_quantity") + quantity,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
        if not updated:
            raise StockVersionConflict(
                f"Stock for \"{product.name}\" changed during cancellation. Please retry."
            )

        product.refresh_from_db(fields=["stock_quantity", "version"])
        InventoryService._log(
            product, quantity, StockMovementLog.MovementType.CREDIT_CANCEL, reference
        )
        return product

    @staticmethod
    def _log(product, delta, movement_type, reference):
        StockMovementLog.objects.create(
            product=product,
            quantity_change=delta,
            movement_type=movement_type,
            reference=reference,
            balance_after=product.stock_quantity,
            version_after=product.version,
        )
