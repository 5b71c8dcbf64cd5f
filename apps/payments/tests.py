from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests
from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from apps.orders.models import Order
from apps.orders.state_machine import OrderStateMachine
from apps.payments.models import Transaction
from apps.payments.services import (
    PaymentReconciliationService,
    PaymentService,
    sync_gateway_transactions,
)
from apps.payments.tasks import sync_gateway_transactions_task
from apps.utils.exceptions import ConflictError, PaymentGatewayError, ValidationError

User = get_user_model()


def make_order(user, total="330000", method=Order.PaymentMethod.GATEWAY, **kwargs):
    return Order.objects.create(
        user=user,
        subtotal=Decimal(total) - Decimal("30000"),
        shipping_fee=Decimal("30000"),
        total_money=Decimal(total),
        payment_method=method,
        shipping_address="12 Nguyen Hue, District 1",
        shipping_phone="0909123456",
        **kwargs,
    )


def notification(order=None, amount=330000, reference="FT24001", content=None, **extra):
    payload = {
        "id": 92704,
        "gateway": "VietinBank",
        "transactionDate": "2024-07-02 10:15:00",
        "accountNumber": "0123456789",
        "transferType": "in",
        "transferAmount": amount,
        "content": content if content is not None else f"SEVQR TKPLAM {order.code}",
        "referenceCode": reference,
        "description": "",
    }
    payload.update(extra)
    return payload


class ReconciliationTests(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(username="lan", password="pass")
        self.order = make_order(self.user)

    def test_matching_transfer_marks_order_paid(self):
        result = PaymentReconciliationService.process_notification(notification(self.order))

        self.assertTrue(result.success)
        self.assertEqual(result.order_id, str(self.order.pk))
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PAID)

        txn = Transaction.objects.get(transaction_code="FT24001")
        self.assertEqual(txn.status, Transaction.Status.SUCCESS)
        self.assertEqual(txn.order, self.order)
        self.assertEqual(txn.amount, Decimal("330000"))
        self.assertIsNotNone(txn.paid_at)

    def test_redelivery_is_a_no_op(self):
        payload = notification(self.order)
        PaymentReconciliationService.process_notification(payload)
        result = PaymentReconciliationService.process_notification(payload)

        self.assertFalse(result.success)
        self.assertEqual(result.message, "Transaction already processed")
        self.assertEqual(Transaction.objects.filter(transaction_code="FT24001").count(), 1)
        self.assertEqual(self.order.timeline.filter(payment_status=Order.PaymentStatus.PAID).count(), 1)

    def test_outgoing_transfer_is_ignored(self):
        result = PaymentReconciliationService.process_notification(
            notification(self.order, transferType="out")
        )
        self.assertFalse(result.success)
        self.assertFalse(Transaction.objects.exists())

    def test_oversized_reference_is_ignored(self):
        result = PaymentReconciliationService.process_notification(
            notification(self.order, reference="FT" * 60)
        )
        self.assertFalse(result.success)
        self.assertIn("too long", result.message)
        self.assertFalse(Transaction.objects.exists())

    def test_long_gateway_name_is_truncated(self):
        result = PaymentReconciliationService.process_notification(
            notification(self.order, gateway="V" * 250)
        )
        self.assertTrue(result.success)
        self.assertEqual(Transaction.objects.get().gateway, "V" * 100)

    def test_unknown_order_is_recorded_as_failed(self):
        result = PaymentReconciliationService.process_notification(
            notification(amount=123456, content="thanh toan don hang")
        )

        self.assertFalse(result.success)
        self.assertIsNone(result.order_id)
        txn = Transaction.objects.get(transaction_code="FT24001")
        self.assertEqual(txn.status, Transaction.Status.FAILED)
        self.assertIsNone(txn.order)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.UNPAID)

    def test_amount_mismatch_is_recorded_against_order(self):
        result = PaymentReconciliationService.process_notification(
            notification(self.order, amount=300000)
        )

        self.assertFalse(result.success)
        self.assertIn("Amount mismatch", result.message)
        txn = Transaction.objects.get(transaction_code="FT24001")
        self.assertEqual(txn.status, Transaction.Status.FAILED)
        self.assertEqual(txn.order, self.order)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.UNPAID)

    def test_small_rounding_difference_is_tolerated(self):
        result = PaymentReconciliationService.process_notification(
            notification(self.order, amount=329500)
        )
        self.assertTrue(result.success)

    def test_failed_reference_is_re_evaluated_in_place(self):
        PaymentReconciliationService.process_notification(notification(self.order, amount=1000))
        result = PaymentReconciliationService.process_notification(notification(self.order))

        self.assertTrue(result.success)
        txn = Transaction.objects.get(transaction_code="FT24001")
        self.assertEqual(txn.status, Transaction.Status.SUCCESS)

    def test_fallback_matches_unique_amount(self):
        result = PaymentReconciliationService.process_notification(
            notification(content="chuyen tien mua tra")
        )
        self.assertTrue(result.success)
        self.assertEqual(result.order_id, str(self.order.pk))

    def test_fallback_refuses_ambiguous_amount(self):
        make_order(self.user)
        result = PaymentReconciliationService.process_notification(
            notification(content="chuyen tien mua tra")
        )
        self.assertFalse(result.success)
        self.assertFalse(Order.objects.filter(payment_status=Order.PaymentStatus.PAID).exists())

    def test_already_paid_order_is_not_paid_twice(self):
        OrderStateMachine.update_payment_status(self.order, Order.PaymentStatus.PAID)
        result = PaymentReconciliationService.process_notification(
            notification(self.order, reference="FT24002")
        )

        self.assertFalse(result.success)
        self.assertEqual(
            Transaction.objects.get(transaction_code="FT24002").status, Transaction.Status.FAILED
        )

    def test_transfer_supersedes_cod_placeholder(self):
        cod_order = make_order(self.user, total="130000", method=Order.PaymentMethod.COD)
        PaymentService.open_cod_transaction(cod_order)

        result = PaymentReconciliationService.process_notification(
            notification(cod_order, amount=130000)
        )

        self.assertTrue(result.success)
        statuses = sorted(cod_order.transactions.values_list("status", flat=True))
        self.assertEqual(statuses, [Transaction.Status.FAILED, Transaction.Status.SUCCESS])


class PaymentInstructionsTests(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(username="lan", password="pass")

    @override_settings(PAYMENT_TRANSFER_PREFIX="SEVQR TKPLAM", BANK_BIN="970415")
    def test_qr_payload(self):
        order = make_order(self.user)
        data = PaymentService.build_payment_instructions(order)

        self.assertEqual(data["orderCode"], order.code)
        self.assertEqual(data["amount"], 330000)
        self.assertEqual(data["bankInfo"]["content"], f"SEVQR TKPLAM {order.code}")
        self.assertTrue(data["qrUrl"].startswith("https://img.vietqr.io/image/970415-0123456789-compact2.png?"))
        self.assertIn("amount=330000", data["qrUrl"])

    def test_paid_or_cod_orders_are_rejected(self):
        with self.assertRaises(ConflictError):
            PaymentService.build_payment_instructions(
                make_order(self.user, payment_status=Order.PaymentStatus.PAID)
            )
        with self.assertRaises(ValidationError):
            PaymentService.build_payment_instructions(
                make_order(self.user, method=Order.PaymentMethod.COD)
            )

    def test_payment_status(self):
        order = make_order(self.user)
        self.assertIsNone(PaymentService.get_payment_status(order)["paidAt"])

        PaymentReconciliationService.process_notification(notification(order))
        order.refresh_from_db()
        data = PaymentService.get_payment_status(order)
        self.assertEqual(data["paymentStatus"], Order.PaymentStatus.PAID)
        self.assertIsNotNone(data["paidAt"])


def gateway_response(rows):
    response = MagicMock()
    response.json.return_value = {"status": 200, "transactions": rows}
    response.raise_for_status.return_value = None
    return response


class GatewaySyncTests(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(username="lan", password="pass")
        self.order = make_order(self.user)

    @patch("apps.payments.gateway.requests.get")
    def test_sync_feeds_incoming_transfers(self, mock_get):
        mock_get.return_value = gateway_response([
            {
                "id": "1", "bank_brand_name": "VietinBank", "transaction_date": "2024-07-02 10:15:00",
                "account_number": "0123456789", "amount_in": "330000.00", "amount_out": "0.00",
                "transaction_content": f"SEVQR TKPLAM {self.order.code}", "reference_number": "FT24009",
            },
            {
                "id": "2", "bank_brand_name": "VietinBank", "amount_in": "0.00", "amount_out": "50000.00",
                "transaction_content": "rut tien", "reference_number": "FT24010",
            },
        ])

        summary = sync_gateway_transactions(limit=20)

        self.assertEqual(summary, {"fetched": 2, "processed": 1, "skipped": 1})
        _, kwargs = mock_get.call_args
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer test-sepay-token")
        self.assertEqual(kwargs["params"], {"account_number": "0123456789", "limit": 20})
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PAID)

        # Second run is idempotent
        summary = sync_gateway_transactions(limit=20)
        self.assertEqual(summary["processed"], 0)
        self.assertEqual(Transaction.objects.count(), 1)

    @patch("apps.payments.gateway.requests.get", side_effect=requests.ConnectionError("down"))
    def test_gateway_outage(self, mock_get):
        with self.assertRaises(PaymentGatewayError):
            sync_gateway_transactions()

    @patch("apps.payments.tasks.sync_gateway_transactions", return_value={"fetched": 0, "processed": 0, "skipped": 0})
    def test_periodic_task(self, mock_sync):
        result = sync_gateway_transactions_task.delay(limit=5)
        self.assertEqual(result.get()["fetched"], 0)
        mock_sync.assert_called_once_with(5)


class PaymentApiTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(username="lan", password="pass")
        self.admin = User.objects.create_user(username="boss", password="pass", is_staff=True)
        self.order = make_order(self.user)
        self.url = reverse("payment-webhook")

    def test_webhook_requires_api_key(self):
        response = self.client.post(self.url, notification(self.order), format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        response = self.client.post(
            self.url, notification(self.order), format="json", HTTP_AUTHORIZATION="Apikey wrong"
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Transaction.objects.exists())

    def test_webhook_acknowledges_every_authenticated_call(self):
        response = self.client.post(
            self.url, notification(self.order), format="json", HTTP_AUTHORIZATION="Apikey test-webhook-key"
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json(), {
            "success": True,
            "message": "Payment confirmed successfully",
            "orderId": str(self.order.pk),
        })

        # Redelivery and garbage are still 200
        response = self.client.post(
            self.url, notification(self.order), format="json", HTTP_AUTHORIZATION="Bearer test-webhook-key"
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.json()["success"])

        response = self.client.post(
            self.url, {"transferType": "in", "transferAmount": "abc", "referenceCode": "X1"},
            format="json", HTTP_AUTHORIZATION="Apikey test-webhook-key",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.json()["success"])

    @override_settings(PAYMENT_WEBHOOK_API_KEY="")
    def test_webhook_open_when_no_key_configured(self):
        response = self.client.post(self.url, notification(self.order), format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_qr_and_status_are_owner_only(self):
        self.client.force_authenticate(self.user)
        response = self.client.get(reverse("payment-qr", args=[self.order.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["data"]["orderCode"], self.order.code)

        response = self.client.get(reverse("payment-status", args=[self.order.pk]))
        self.assertEqual(response.json()["data"]["paymentStatus"], "UNPAID")

        stranger = User.objects.create_user(username="minh", password="pass")
        self.client.force_authenticate(stranger)
        response = self.client.get(reverse("payment-status", args=[self.order.pk]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_transactions_are_admin_only(self):
        PaymentReconciliationService.process_notification(notification(self.order))

        self.client.force_authenticate(self.user)
        response = self.client.get(reverse("payment-transactions"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.admin)
        body = self.client.get(reverse("payment-transactions")).json()
        self.assertEqual(body["meta"]["total"], 1)
        self.assertEqual(body["data"][0]["transactionCode"], "FT24001")
        self.assertEqual(body["data"][0]["orderCode"], self.order.code)

    @patch("apps.payments.views.sync_gateway_transactions", return_value={"fetched": 3, "processed": 1, "skipped": 2})
    def test_manual_sync(self, mock_sync):
        self.client.force_authenticate(self.admin)
        response = self.client.post(reverse("payment-sync"), {"limit": 10}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["data"]["processed"], 1)
        mock_sync.assert_called_once_with(10)
