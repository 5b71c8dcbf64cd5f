from django.db import models

from apps.catalog.models import Product
from apps.utils.models import TimestampedModel
from .order import Order

__all__ = ["OrderDetail"]


class OrderDetail(TimestampedModel):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='details')
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='order_details')

    # Snapshot fields (Critical for audit)
    product_name = models.CharField(max_length=255)
    price = models.DecimalField(max_digits=14, decimal_places=2)

    quantity = models.PositiveIntegerField()

    class Meta:
        ordering = ["created_at"]

    @property
    def subtotal(self):
        return self.price * self.quantity

    def __str__(self):
        return f"{self.quantity}x {self.product_name}"
