import logging
from decimal import Decimal

from django.db import IntegrityError, models, transaction
from django.conf import settings

from apps.utils.models import TimestampedModel
from apps.utils.exceptions import ConflictError
from apps.utils.utils import generate_code

__all__ = ["Order"]

logger = logging.getLogger(__name__)

ORDER_CODE_PREFIX = "DH"
CODE_ATTEMPTS = 5


class Order(TimestampedModel):
    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        CONFIRMED = "CONFIRMED", "Confirmed"
        SHIPPING = "SHIPPING", "Shipping"
        COMPLETED = "COMPLETED", "Completed"
        CANCELLED = "CANCELLED", "Cancelled"

    class PaymentStatus(models.TextChoices):
        UNPAID = "UNPAID", "Unpaid"
        PAID = "PAID", "Paid"
        REFUNDED = "REFUNDED", "Refunded"

    class PaymentMethod(models.TextChoices):
        COD = "COD", "Cash on Delivery"
        GATEWAY = "gateway", "Bank transfer (gateway)"

    # Bank-transfer reference, e.g. DH1A2B3C4D
    code = models.CharField(max_length=20, unique=True, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='orders',
    )

    subtotal = models.DecimalField(max_digits=14, decimal_places=2)
    shipping_fee = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    discount_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total_money = models.DecimalField(max_digits=14, decimal_places=2)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)
    payment_status = models.CharField(
        max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.UNPAID, db_index=True
    )
    payment_method = models.CharField(max_length=20, choices=PaymentMethod.choices, default=PaymentMethod.COD)

    shipping_address = models.CharField(max_length=500)
    shipping_phone = models.CharField(max_length=20)
    note = models.TextField(blank=True, null=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "created_at"], name="order_user_created_idx"),
            models.Index(fields=["payment_status", "total_money"], name="order_payment_amount_idx"),
        ]

    def __str__(self):
        return f"{self.code} [{self.status}]"

    def save(self, *args, **kwargs):
        if self.code:
            return super().save(*args, **kwargs)

        for attempt in range(1, CODE_ATTEMPTS + 1):
            self.code = generate_code(ORDER_CODE_PREFIX)
            try:
                # Savepoint so a code collision does not poison the outer transaction
                with transaction.atomic():
                    return super().save(*args, **kwargs)
            except IntegrityError:
                if attempt == CODE_ATTEMPTS or not Order.objects.filter(code=self.code).exists():
                    raise
                logger.warning(f"Order code {self.code} already taken, regenerating")

    def delete(self, *args, **kwargs):
        raise ConflictError("Orders are financial records and cannot be deleted.")

    @staticmethod
    def compute_total(subtotal, shipping_fee, discount_amount):
        return subtotal + shipping_fee - discount_amount

    @property
    def can_cancel(self):
        return self.status in [self.Status.PENDING, self.Status.CONFIRMED]

    def is_owned_by(self, user):
        return self.user_id is not None and user is not None and self.user_id == user.pk
