# apps/catalog/tests.py
from decimal import Decimal

from django.db import IntegrityError
from django.test import TestCase

from .models import Product


class ProductModelTests(TestCase):
    def test_slug_auto_generated_and_unique(self):
        p1 = Product.objects.create(name="Green Tea", price=Decimal("10000"))
        p2 = Product.objects.create(name="Green Tea", price=Decimal("12000"))

        self.assertEqual(p1.slug, "green-tea")
        self.assertEqual(p2.slug, "green-tea-1")

    def test_only_published_products_are_purchasable(self):
        product = Product.objects.create(name="Black Tea", price=Decimal("10000"))
        self.assertFalse(product.is_purchasable)

        product.status = Product.Status.PUBLISHED
        self.assertTrue(product.is_purchasable)

    def test_stock_cannot_go_negative(self):
        with self.assertRaises(IntegrityError):
            Product.objects.create(name="White Tea", price=Decimal("10000"), stock_quantity=-1)
