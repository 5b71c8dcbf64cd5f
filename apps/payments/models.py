from django.db import models

from apps.orders.models import Order
from apps.utils.models import TimestampedModel


class Transaction(TimestampedModel):
    """
    One payment attempt or gateway notification.
    transaction_code is the gateway's reference and the idempotency key
    for redelivered notifications.
    """
    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        SUCCESS = "SUCCESS", "Success"
        FAILED = "FAILED", "Failed"

    # Null for notifications that could not be correlated to an order
    order = models.ForeignKey(
        Order,
        on_delete=models.PROTECT,
        related_name="transactions",
        null=True,
        blank=True,
    )

    payment_method = models.CharField(max_length=20, choices=Order.PaymentMethod.choices)
    transaction_code = models.CharField(max_length=100, unique=True, null=True, blank=True)
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    description = models.TextField(blank=True)

    # Audit fields
    gateway = models.CharField(max_length=100, blank=True)
    gateway_payload = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["order", "status"], name="txn_order_status_idx"),
        ]

    def __str__(self):
        return f"{self.transaction_code or self.pk} | {self.amount} | {self.status}"
