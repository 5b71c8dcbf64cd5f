from decimal import Decimal

from django.db import transaction
from django.db.models import F
from django.test import TestCase, TransactionTestCase

from apps.catalog.models import Product
from apps.inventory.models import StockMovementLog
from apps.inventory.services import InventoryService
from apps.utils.exceptions import (
    InsufficientStockError,
    ServerError,
    StockVersionConflict,
    ValidationError,
)


def make_product(**kwargs):
    defaults = {
        "name": "Oolong Tea",
        "price": Decimal("50000.00"),
        "stock_quantity": 10,
        "status": Product.Status.PUBLISHED,
    }
    defaults.update(kwargs)
    return Product.objects.create(**defaults)


class InventoryServiceTests(TestCase):

    def setUp(self):
        self.product = make_product()

    def test_debit_decrements_stock_and_bumps_version(self):
        with transaction.atomic():
            snapshot = InventoryService.lock_products([self.product.pk])[str(self.product.pk)]
            InventoryService.debit(snapshot, 3, reference="DH00000001")

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 7)
        self.assertEqual(self.product.version, 2)

        log = StockMovementLog.objects.get()
        self.assertEqual(log.quantity_change, -3)
        self.assertEqual(log.movement_type, StockMovementLog.MovementType.DEBIT_ORDER)
        self.assertEqual(log.balance_after, 7)
        self.assertEqual(log.version_after, 2)
        self.assertEqual(log.reference, "DH00000001")

    def test_debit_more_than_stock_is_rejected(self):
        with self.assertRaises(InsufficientStockError) as ctx:
            with transaction.atomic():
                InventoryService.debit(self.product, 11, reference="DH00000002")

        self.assertEqual(ctx.exception.requested, 11)
        self.assertEqual(ctx.exception.available, 10)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 10)
        self.assertFalse(StockMovementLog.objects.exists())

    def test_stale_snapshot_raises_version_conflict(self):
        stale = Product.objects.get(pk=self.product.pk)
        # Another writer moved the row on
        Product.objects.filter(pk=self.product.pk).update(version=F("version") + 1)

        with self.assertRaises(StockVersionConflict):
            with transaction.atomic():
                InventoryService.debit(stale, 1, reference="DH00000003")

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 10)
        self.assertEqual(self.product.version, 2)

    def test_credit_restores_stock(self):
        with transaction.atomic():
            InventoryService.credit(self.product.pk, 4, reference="CANCEL-DH00000004")

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 14)
        self.assertEqual(self.product.version, 2)
        self.assertEqual(
            StockMovementLog.objects.get().movement_type,
            StockMovementLog.MovementType.CREDIT_CANCEL,
        )

    def test_non_positive_quantity_is_rejected(self):
        with transaction.atomic():
            with self.assertRaises(ValidationError):
                InventoryService.debit(self.product, 0, reference="X")
            with self.assertRaises(ValidationError):
                InventoryService.credit(self.product.pk, 0, reference="X")

    def test_lock_products_skips_unknown_ids(self):
        other = make_product(name="Green Tea")
        with transaction.atomic():
            locked = InventoryService.lock_products([other.pk, self.product.pk, "00000000-0000-0000-0000-000000000000"])
        self.assertEqual(set(locked), {str(other.pk), str(self.product.pk)})


class AtomicGuardTests(TransactionTestCase):
    """Stock mutations refuse to run outside an enclosing transaction."""

    def test_debit_outside_transaction_fails(self):
        product = make_product()
        with self.assertRaises(ServerError):
            InventoryService.debit(product, 1, reference="DH00000005")

        product.refresh_from_db()
        self.assertEqual(product.stock_quantity, 10)
