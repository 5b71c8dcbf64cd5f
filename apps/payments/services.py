import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from urllib.parse import urlencode

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.orders.models import Order
from apps.orders.state_machine import OrderStateMachine
from apps.utils.exceptions import ConflictError, ValidationError

from .gateway import SePayClient
from .models import Transaction

logger = logging.getLogger(__name__)

ORDER_CODE_PATTERN = re.compile(r"DH([A-Z0-9]{8})")
VIETQR_URL = "https://img.vietqr.io/image/{bin}-{account}-compact2.png"

# Untrusted gateway fields must fit their columns
REFERENCE_MAX_LENGTH = Transaction._meta.get_field("transaction_code").max_length
GATEWAY_MAX_LENGTH = Transaction._meta.get_field("gateway").max_length


@dataclass
class ReconciliationResult:
    success: bool
    message: str
    order_id: str = None


class PaymentService:
    """
    Payment records owned by checkout and the customer-facing payment screens.
    """

    @staticmethod
    def open_cod_transaction(order: Order) -> Transaction:
        # Settled when the order is marked PAID, failed when it is cancelled
        return Transaction.objects.create(
            order=order,
            payment_method=Order.PaymentMethod.COD,
            amount=order.total_money,
            status=Transaction.Status.PENDING,
            description=f"Cash on delivery for {order.code}",
        )

    @staticmethod
    def transfer_content(order: Order) -> str:
        prefix = settings.PAYMENT_TRANSFER_PREFIX.strip()
        return f"{prefix} {order.code}".strip()

    @staticmethod
    def build_payment_instructions(order: Order) -> dict:
        """
        VietQR image URL and bank details for a bank-transfer order.
        The transfer content carries the order code so the webhook can match it.
        """
        if order.payment_method != Order.PaymentMethod.GATEWAY:
            raise ValidationError("This order is paid on delivery.")
        if order.payment_status == Order.PaymentStatus.PAID:
            raise ConflictError("Order has already been paid.")
        if order.status == Order.Status.CANCELLED:
            raise ConflictError("Order has been cancelled.")

        content = PaymentService.transfer_content(order)
        amount = int(order.total_money)
        qr_url = VIETQR_URL.format(bin=settings.BANK_BIN, account=settings.BANK_ACCOUNT_NUMBER)
        query = urlencode({
            "amount": amount,
            "addInfo": content,
            "accountName": settings.BANK_ACCOUNT_NAME,
        })

        return {
            "qrUrl": f"{qr_url}?{query}",
            "orderCode": order.code,
            "amount": amount,
            "bankInfo": {
                "bankName": settings.BANK_NAME,
                "accountNumber": settings.BANK_ACCOUNT_NUMBER,
                "accountName": settings.BANK_ACCOUNT_NAME,
                "content": content,
            },
        }

    @staticmethod
    def get_payment_status(order: Order) -> dict:
        """For client polling while the customer completes the transfer."""
        settled = (
            order.transactions
            .filter(status=Transaction.Status.SUCCESS)
            .exclude(paid_at=None)
            .order_by("-paid_at")
            .first()
        )
        return {
            "orderId": str(order.pk),
            "orderCode": order.code,
            "paymentStatus": order.payment_status,
            "paidAt": settled.paid_at if settled else None,
        }


class PaymentReconciliationService:
    """
    Applies gateway notifications to orders.

    FLOW:
    1. Only incoming transfers are considered
    2. A reference already recorded as SUCCESS is a no-op
    3. Correlate: order code in the transfer content, else a unique UNPAID order with the exact amount
    4. Verify the amount within PAYMENT_AMOUNT_TOLERANCE
    5. SUCCESS transaction + payment status PAID, atomically

    Anything that does not match is recorded as a FAILED transaction and
    reported in the result; nothing is raised to the webhook caller.
    """

    @staticmethod
    def process_notification(payload: dict) -> ReconciliationResult:
        if payload.get("transferType") != "in":
            return ReconciliationResult(False, "Ignored: not an incoming transfer")

        reference = PaymentReconciliationService._reference_of(payload)
        if not reference:
            logger.warning(f"Gateway notification without reference ignored: {payload.get('id')}")
            return ReconciliationResult(False, "Ignored: missing transaction reference")
        if len(reference) > REFERENCE_MAX_LENGTH:
            logger.warning(f"Gateway notification with oversized reference ignored: {reference[:40]}...")
            return ReconciliationResult(False, "Ignored: transaction reference too long")

        try:
            with transaction.atomic():
                result = PaymentReconciliationService._reconcile(payload, reference)
        except IntegrityError:
            # Concurrent redelivery inserted the same reference first
            logger.info(f"Duplicate gateway notification {reference}", extra={"transaction_code": reference})
            return ReconciliationResult(False, "Transaction already processed")

        log = logger.info if result.success else logger.warning
        log(f"Gateway notification {reference}: {result.message}",
            extra={"transaction_code": reference, "order_id": result.order_id})
        return result

    @staticmethod
    def _reference_of(payload):
        reference = payload.get("referenceCode")
        if reference:
            return str(reference)
        if payload.get("id") is not None:
            return f"SEPAY-{payload['id']}"
        return None

    @staticmethod
    def _amount_of(payload):
        try:
            amount = Decimal(str(payload.get("transferAmount")))
        except (InvalidOperation, ValueError, TypeError):
            return None
        return amount if amount.is_finite() else None

    @staticmethod
    def _reconcile(payload, reference) -> ReconciliationResult:
        existing = Transaction.objects.select_for_update().filter(transaction_code=reference).first()
        if existing and existing.status == Transaction.Status.SUCCESS:
            return ReconciliationResult(
                False, "Transaction already processed",
                str(existing.order_id) if existing.order_id else None,
            )

        amount = PaymentReconciliationService._amount_of(payload)
        if amount is None or amount <= 0:
            return PaymentReconciliationService._fail(
                existing, payload, reference, Decimal("0.00"), None, "Invalid transfer amount"
            )

        order = PaymentReconciliationService._correlate(payload, amount)
        if order is None:
            return PaymentReconciliationService._fail(
                existing, payload, reference, amount, None, "Order not found or match ambiguous"
            )

        order = Order.objects.select_for_update().get(pk=order.pk)
        if order.status == Order.Status.CANCELLED:
            return PaymentReconciliationService._fail(
                existing, payload, reference, amount, order, f"Order {order.code} is cancelled"
            )
        if order.payment_status != Order.PaymentStatus.UNPAID:
            return PaymentReconciliationService._fail(
                existing, payload, reference, amount, order,
                f"Order {order.code} is already {order.payment_status}",
            )
        if abs(order.total_money - amount) > settings.PAYMENT_AMOUNT_TOLERANCE:
            return PaymentReconciliationService._fail(
                existing, payload, reference, amount, order,
                f"Amount mismatch: expected {order.total_money}, received {amount}",
            )

        now = timezone.now()
        # The transfer supersedes any cash-on-delivery placeholder
        Transaction.objects.filter(order=order, status=Transaction.Status.PENDING).update(
            status=Transaction.Status.FAILED,
            description="Superseded by bank transfer",
            updated_at=now,
        )

        PaymentReconciliationService._save(
            existing, payload, reference, amount, order, Transaction.Status.SUCCESS, paid_at=now
        )
        OrderStateMachine.update_payment_status(
            order, Order.PaymentStatus.PAID, note=f"Bank transfer {reference}"
        )
        return ReconciliationResult(True, "Payment confirmed successfully", str(order.pk))

    @staticmethod
    def _correlate(payload, amount):
        content = str(payload.get("content") or "").upper()
        match = ORDER_CODE_PATTERN.search(content)
        if match:
            order = Order.objects.filter(code=f"DH{match.group(1)}").first()
            if order is not None:
                return order

        # Fallback: exactly one open UNPAID order with this amount
        candidates = list(
            Order.objects
            .filter(total_money=amount, payment_status=Order.PaymentStatus.UNPAID)
            .exclude(status=Order.Status.CANCELLED)[:2]
        )
        if len(candidates) > 1:
            logger.warning(f"Ambiguous amount match for {amount}")
        return candidates[0] if len(candidates) == 1 else None

    @staticmethod
    def _fail(existing, payload, reference, amount, order, message) -> ReconciliationResult:
        PaymentReconciliationService._save(
            existing, payload, reference, amount, order, Transaction.Status.FAILED,
            note=message,
        )
        return ReconciliationResult(False, message, str(order.pk) if order else None)

    @staticmethod
    def _save(existing, payload, reference, amount, order, status, paid_at=None, note=None):
        gateway = str(payload.get("gateway") or "")[:GATEWAY_MAX_LENGTH]
        description = f"{gateway}: {payload.get('content') or ''}".strip()
        if note:
            description = f"{description} [{note}]"

        values = {
            "order": order,
            "payment_method": Order.PaymentMethod.GATEWAY,
            "amount": amount,
            "status": status,
            "paid_at": paid_at,
            "description": description,
            "gateway": gateway,
            "gateway_payload": payload,
        }

        if existing is None:
            # Savepoint so a concurrent duplicate only rolls back this insert
            with transaction.atomic():
                return Transaction.objects.create(transaction_code=reference, **values)

        for field, value in values.items():
            setattr(existing, field, value)
        existing.save()
        return existing


def sync_gateway_transactions(limit: int = None) -> dict:
    """
    Pulls recent history from the gateway and feeds incoming transfers
    through reconciliation. Safe to re-run: references already settled no-op.
    """
    limit = limit or settings.PAYMENT_SYNC_LIMIT
    rows = SePayClient().fetch_transactions(limit)

    processed = 0
    skipped = 0
    for row in rows:
        payload = SePayClient.to_notification(row)
        amount = PaymentReconciliationService._amount_of(payload)
        if amount is None or amount <= 0:
            skipped += 1
            continue
        if PaymentReconciliationService.process_notification(payload).success:
            processed += 1

    logger.info(f"Gateway sync: fetched {len(rows)}, processed {processed}, skipped {skipped}")
    return {"fetched": len(rows), "processed": processed, "skipped": skipped}
