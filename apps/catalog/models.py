# apps/catalog/models.py
from django.db import models
from django.utils.text import slugify

from apps.utils.models import TimestampedModel


class Product(TimestampedModel):
    """
    Sellable item as seen by checkout.

    NOTE:
    - Catalog CRUD lives outside this service; orders only read price/status.
    - stock_quantity and version are mutated exclusively by
      apps.inventory.services.InventoryService.
    """
    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        PUBLISHED = "PUBLISHED", "Published"
        HIDDEN = "HIDDEN", "Hidden"
        DISCONTINUED = "DISCONTINUED", "Discontinued"

    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=280, unique=True, blank=True, db_index=True)
    price = models.DecimalField(max_digits=14, decimal_places=2)
    stock_quantity = models.IntegerField(default=0)
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.DRAFT, db_index=True
    )

    # Compare-and-swap token for stock mutations
    version = models.PositiveIntegerField(default=1)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(stock_quantity__gte=0),
                name='product_stock_non_negative'
            ),
            models.CheckConstraint(
                condition=models.Q(price__gte=0),
                name='product_price_non_negative'
            ),
        ]

    def __str__(self):
        return self.name

    @property
    def is_purchasable(self):
        return self.status == self.Status.PUBLISHED

    def save(self, *args, **kwargs):
        if not self.slug:
            base_slug = slugify(self.name) or "product"
            slug_candidate = base_slug
            counter = 1

            while Product.objects.filter(slug=slug_candidate).exclude(pk=self.pk).exists():
                slug_candidate = f"{base_slug}-{counter}"
                counter += 1

            self.slug = slug_candidate
        super().save(*args, **kwargs)
