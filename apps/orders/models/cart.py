import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models

__all__ = ["Cart", "CartItem"]


class Cart(models.Model):
    """
    Per-customer cart.
    One cart per user; user is empty for anonymous carts.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        related_name="cart",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "carts"

    def __str__(self):
        return f"Cart for {self.user_id or 'guest'}"

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items.all())

    @property
    def total_amount(self) -> Decimal:
        # Live catalog prices; checkout re-reads them under lock anyway
        return sum((item.subtotal for item in self.items.all()), Decimal("0.00"))


class CartItem(models.Model):
    """
    Product reference + quantity. No price is stored here.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    cart = models.ForeignKey(
        Cart,
        related_name="items",
        on_delete=models.CASCADE,
    )
    product = models.ForeignKey(
        "catalog.Product",
        related_name="cart_items",
        on_delete=models.CASCADE,
    )

    quantity = models.PositiveIntegerField(default=1)
    added_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "cart_items"
        ordering = ["added_at"]
        constraints = [
            models.UniqueConstraint(fields=["cart", "product"], name="uniq_cart_product"),
            models.CheckConstraint(condition=models.Q(quantity__gte=1), name="cart_item_quantity_positive"),
        ]

    def __str__(self):
        return f"{self.cart_id} -> {self.product_id} x {self.quantity}"

    @property
    def subtotal(self) -> Decimal:
        return self.product.price * self.quantity
