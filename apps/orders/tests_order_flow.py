from decimal import Decimal

from django.contrib.auth import get_user_model
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from apps.catalog.models import Product
from apps.orders.models import Order

User = get_user_model()

CHECKOUT_BODY = {
    "shippingAddress": "12 Nguyen Hue, District 1, Ho Chi Minh City",
    "shippingPhone": "0909123456",
    "paymentMethod": "COD",
    "note": "Ring the bell",
}


class OrderFlowTests(APITestCase):
    """Cart -> checkout -> admin transitions over HTTP."""

    def setUp(self):
        self.user = User.objects.create_user(username="lan", password="pass")
        self.admin = User.objects.create_user(username="boss", password="pass", is_staff=True)
        self.tea = Product.objects.create(
            name="Jasmine Tea", price=Decimal("45000.00"), stock_quantity=10,
            status=Product.Status.PUBLISHED,
        )
        self.client.force_authenticate(self.user)

    def _add_to_cart(self, quantity=2):
        return self.client.post("/api/v1/cart/items/", {"productId": str(self.tea.pk), "quantity": quantity}, format="json")

    def _checkout(self, **overrides):
        body = {**CHECKOUT_BODY, **overrides}
        return self.client.post("/api/v1/orders/", body, format="json")

    def test_cart_then_checkout(self):
        response = self._add_to_cart()
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.json()["data"]["totalItems"], 2)

        response = self._checkout()
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["data"]["status"], "PENDING")
        self.assertEqual(body["data"]["paymentStatus"], "UNPAID")
        self.assertEqual(Decimal(body["data"]["totalMoney"]), Decimal("120000.00"))
        self.assertEqual(body["data"]["details"][0]["productName"], "Jasmine Tea")

        cart = self.client.get("/api/v1/cart/").json()["data"]
        self.assertEqual(cart["items"], [])

    def test_client_cannot_set_pricing(self):
        self._add_to_cart()

        response = self._checkout(shippingFee="0", discountAmount="90000")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        data = response.json()["data"]
        self.assertEqual(Decimal(data["shippingFee"]), Decimal("30000.00"))
        self.assertEqual(Decimal(data["discountAmount"]), Decimal("0.00"))
        self.assertEqual(Decimal(data["totalMoney"]), Decimal("120000.00"))

    def test_malformed_order_id_is_not_found(self):
        response = self.client.get("/api/v1/orders/not-a-uuid/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.json()["code"], "not_found")

        response = self.client.put("/api/v1/orders/not-a-uuid/cancel/", {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_checkout_validation_errors(self):
        self._add_to_cart()

        response = self._checkout(shippingPhone="12345")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.json()["success"])
        self.assertIn("shippingPhone", response.json()["errors"])

        response = self._checkout(shippingAddress="short")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self._checkout(paymentMethod="BITCOIN")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        self.assertFalse(Order.objects.exists())

    def test_checkout_with_empty_cart(self):
        response = self._checkout()
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()["code"], "cart_empty")

    def test_checkout_insufficient_stock_is_conflict(self):
        self._add_to_cart(quantity=5)
        self.tea.stock_quantity = 1
        self.tea.save()

        response = self._checkout()
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertIn("Requested: 5, Available: 1", response.json()["message"])

    def test_requires_authentication(self):
        self.client.force_authenticate(None)
        response = self.client.get("/api/v1/orders/")
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(response.json()["success"])

    def test_detail_is_private(self):
        self._add_to_cart()
        order_id = self._checkout().json()["data"]["id"]

        response = self.client.get(f"/api/v1/orders/{order_id}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.json()["data"]["timeline"]), 1)

        stranger = User.objects.create_user(username="minh", password="pass")
        self.client.force_authenticate(stranger)
        response = self.client.get(f"/api/v1/orders/{order_id}/")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.admin)
        response = self.client.get(f"/api/v1/orders/{order_id}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_admin_drives_lifecycle(self):
        self._add_to_cart()
        order_id = self._checkout().json()["data"]["id"]

        url = reverse("orders-status", args=[order_id])
        response = self.client.put(url, {"status": "CONFIRMED"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.admin)
        response = self.client.put(url, {"status": "CONFIRMED"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["data"]["status"], "CONFIRMED")

        response = self.client.put(url, {"status": "COMPLETED"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.json()["code"], "illegal_transition")

        response = self.client.put(url, {"status": "NOPE"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        payment_url = reverse("orders-payment", args=[order_id])
        response = self.client.put(payment_url, {"paymentStatus": "PAID"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["data"]["paymentStatus"], "PAID")

        response = self.client.put(payment_url, {"paymentStatus": "PAID"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_customer_cancels_own_order(self):
        self._add_to_cart(quantity=3)
        order_id = self._checkout().json()["data"]["id"]

        url = reverse("orders-cancel", args=[order_id])
        response = self.client.put(url, {"reason": "Ordered by mistake"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["data"]["status"], "CANCELLED")

        self.tea.refresh_from_db()
        self.assertEqual(self.tea.stock_quantity, 10)

        response = self.client.put(url, {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

        response = self.client.put(url, {"reason": "x" * 501}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class OrderListTests(APITestCase):

    def setUp(self):
        self.user = User.objects.create_user(username="lan", password="pass")
        self.other = User.objects.create_user(username="minh", password="pass")
        self.admin = User.objects.create_user(username="boss", password="pass", is_staff=True)

        common = {
            "shipping_fee": Decimal("0"), "discount_amount": Decimal("0"),
            "shipping_address": "12 Nguyen Hue, District 1", "shipping_phone": "0909123456",
        }
        for amount in ("100000", "300000", "200000"):
            Order.objects.create(user=self.user, subtotal=Decimal(amount), total_money=Decimal(amount), **common)
        Order.objects.create(
            user=self.other, subtotal=Decimal("50000"), total_money=Decimal("50000"),
            status=Order.Status.CANCELLED, **common
        )

    def test_customers_see_only_their_orders(self):
        self.client.force_authenticate(self.user)
        body = self.client.get("/api/v1/orders/").json()

        self.assertTrue(body["success"])
        self.assertEqual(len(body["data"]), 3)
        self.assertEqual(body["meta"], {"page": 1, "limit": 10, "total": 3, "totalPages": 1})

    def test_admin_sees_all_and_filters(self):
        self.client.force_authenticate(self.admin)
        self.assertEqual(self.client.get("/api/v1/orders/").json()["meta"]["total"], 4)

        body = self.client.get("/api/v1/orders/", {"status": "CANCELLED"}).json()
        self.assertEqual(body["meta"]["total"], 1)

    def test_sort_and_paginate(self):
        self.client.force_authenticate(self.user)
        body = self.client.get(
            "/api/v1/orders/", {"sortBy": "totalMoney", "sortOrder": "asc", "limit": 2, "page": 2}
        ).json()

        self.assertEqual(body["meta"], {"page": 2, "limit": 2, "total": 3, "totalPages": 2})
        self.assertEqual([Decimal(o["totalMoney"]) for o in body["data"]], [Decimal("300000.00")])

    def test_date_range_is_inclusive(self):
        self.client.force_authenticate(self.user)
        today = timezone.localdate(Order.objects.first().created_at).isoformat()
        body = self.client.get("/api/v1/orders/", {"fromDate": today, "toDate": today}).json()
        self.assertEqual(body["meta"]["total"], 3)

    def test_bad_query_parameters(self):
        self.client.force_authenticate(self.user)
        for params in ({"limit": 101}, {"sortBy": "price"}, {"fromDate": "yesterday"}, {"status": "LOST"}):
            response = self.client.get("/api/v1/orders/", params)
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, params)
