from django.db import models
from apps.catalog.models import Product
from apps.utils.models import TimestampedModel


class StockMovementLog(TimestampedModel):
    """
    Immutable Ledger of all inventory changes.
    """
    class MovementType(models.TextChoices):
        DEBIT_ORDER = "DEBIT", "Debit (Checkout)"
        CREDIT_CANCEL = "CREDIT", "Credit (Cancellation)"

    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='stock_movements'
    )

    quantity_change = models.IntegerField(help_text="Delta value (+/-)")
    movement_type = models.CharField(max_length=20, choices=MovementType.choices)

    # Traceability
    reference = models.CharField(max_length=100, db_index=True, help_text="Order code")
    balance_after = models.IntegerField(help_text="Snapshot of stock quantity")
    version_after = models.PositiveIntegerField()

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.movement_type} {self.quantity_change:+d} {self.product_id} ({self.reference})"
