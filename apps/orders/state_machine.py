"""
Legal order transitions, in one place.

    PENDING -> CONFIRMED -> SHIPPING -> COMPLETED
       |           |
       +-----------+--> CANCELLED

    UNPAID -> PAID -> REFUNDED

Every write goes through OrderStateMachine so the status, the stock reversal
on cancellation and the payment records change inside one transaction.
"""
import logging

from django.apps import apps as django_apps
from django.db import transaction
from django.utils import timezone

from apps.inventory.services import InventoryService
from apps.utils.exceptions import AuthorizationError, IllegalTransitionError, ValidationError
from apps.utils.permissions import is_admin

from .models import Order, OrderTimeline
from .signals import order_status_changed, order_refund_requested

logger = logging.getLogger(__name__)

Status = Order.Status
PaymentStatus = Order.PaymentStatus

STATUS_TRANSITIONS = {
    Status.PENDING: frozenset({Status.CONFIRMED, Status.CANCELLED}),
    Status.CONFIRMED: frozenset({Status.SHIPPING, Status.CANCELLED}),
    Status.SHIPPING: frozenset({Status.COMPLETED}),
    Status.COMPLETED: frozenset(),
    Status.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS = {
    PaymentStatus.UNPAID: frozenset({PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}


def _names(values):
    return ", ".join(sorted(values)) or "none"


class OrderStateMachine:

    @staticmethod
    def allowed_statuses(current):
        return STATUS_TRANSITIONS.get(current, frozenset())

    @staticmethod
    def allowed_payment_statuses(current):
        return PAYMENT_TRANSITIONS.get(current, frozenset())

    @staticmethod
    def update_status(order: Order, new_status: str, *, actor=None, note: str = "", reason: str = None) -> Order:
        """
        Moves the order to `new_status`.
        CANCELLED also credits back every detail quantity and closes
        pending payments, atomically with the status write.
        """
        if new_status not in Status.values:
            raise ValidationError(f"Unknown order status: {new_status}")

        with transaction.atomic():
            locked = Order.objects.select_for_update().get(pk=order.pk)
            old_status = locked.status
            allowed = OrderStateMachine.allowed_statuses(old_status)

            if new_status not in allowed:
                raise IllegalTransitionError(
                    f"Cannot change order status from {old_status} to {new_status}. "
                    f"Allowed: {_names(allowed)}"
                )

            update_fields = ["status", "updated_at"]
            locked.status = new_status

            if new_status == Status.CANCELLED:
                update_fields += OrderStateMachine._apply_cancellation(locked, reason)

            locked.save(update_fields=update_fields)

            OrderTimeline.objects.create(
                order=locked,
                status=new_status,
                payment_status=locked.payment_status,
                note=note or (f"Cancelled: {reason}" if reason else ""),
                created_by=actor if actor is not None and actor.is_authenticated else None,
            )

            transaction.on_commit(lambda: order_status_changed.send(
                sender=Order,
                order=locked,
                old_status=old_status,
                new_status=new_status,
                field="status",
            ))

        logger.info(
            f"Order {locked.code} status {old_status} -> {new_status}",
            extra={"order_id": locked.pk},
        )
        return locked

    @staticmethod
    def _apply_cancellation(order: Order, reason):
        """
        Runs inside update_status' transaction. Returns extra fields to save.
        """
        Transaction = django_apps.get_model("payments", "Transaction")
        fields = []

        for detail in order.details.order_by("product_id"):
            InventoryService.credit(
                detail.product_id,
                detail.quantity,
                reference=f"CANCEL-{order.code}",
            )

        Transaction.objects.filter(
            order=order, status=Transaction.Status.PENDING
        ).update(status=Transaction.Status.FAILED, updated_at=timezone.now())

        if reason:
            prefix = f"{order.note} | " if order.note else ""
            order.note = f"{prefix}Cancel reason: {reason}"
            fields.append("note")

        if order.payment_status == PaymentStatus.PAID:
            order.payment_status = PaymentStatus.REFUNDED
            fields.append("payment_status")
            order_id, amount = order.pk, order.total_money
            transaction.on_commit(lambda: order_refund_requested.send(
                sender=Order,
                order_id=order_id,
                amount=amount,
                reason=reason or "Order cancelled",
            ))

        return fields

    @staticmethod
    def update_payment_status(order: Order, new_payment_status: str, *, actor=None, note: str = "") -> Order:
        """
        UNPAID -> PAID -> REFUNDED only.
        PAID settles the order's pending payment records, REFUNDED fails them.
        """
        if new_payment_status not in PaymentStatus.values:
            raise ValidationError(f"Unknown payment status: {new_payment_status}")

        Transaction = django_apps.get_model("payments", "Transaction")

        with transaction.atomic():
            locked = Order.objects.select_for_update().get(pk=order.pk)
            old_payment_status = locked.payment_status
            allowed = OrderStateMachine.allowed_payment_statuses(old_payment_status)

            if new_payment_status not in allowed:
                raise IllegalTransitionError(
                    f"Cannot change payment status from {old_payment_status} to {new_payment_status}. "
                    f"Allowed: {_names(allowed)}"
                )

            pending = Transaction.objects.filter(order=locked, status=Transaction.Status.PENDING)
            now = timezone.now()
            if new_payment_status == PaymentStatus.PAID:
                pending.update(status=Transaction.Status.SUCCESS, paid_at=now, updated_at=now)
            else:
                pending.update(status=Transaction.Status.FAILED, updated_at=now)

            locked.payment_status = new_payment_status
            locked.save(update_fields=["payment_status", "updated_at"])

            OrderTimeline.objects.create(
                order=locked,
                status=locked.status,
                payment_status=new_payment_status,
                note=note or f"Payment {old_payment_status} -> {new_payment_status}",
                created_by=actor if actor is not None and actor.is_authenticated else None,
            )

            transaction.on_commit(lambda: order_status_changed.send(
                sender=Order,
                order=locked,
                old_status=old_payment_status,
                new_status=new_payment_status,
                field="payment_status",
            ))

        logger.info(
            f"Order {locked.code} payment {old_payment_status} -> {new_payment_status}",
            extra={"order_id": locked.pk},
        )
        return locked

    @staticmethod
    def cancel(order: Order, requester, reason: str = None) -> Order:
        """
        Owner or admin only; PENDING and CONFIRMED orders only.
        """
        if not (is_admin(requester) or order.is_owned_by(requester)):
            raise AuthorizationError("You are not allowed to cancel this order.")

        if not order.can_cancel:
            raise IllegalTransitionError(
                f"Cannot cancel an order in status {order.status}. "
                f"Only {Status.PENDING} or {Status.CONFIRMED} orders can be cancelled."
            )

        return OrderStateMachine.update_status(
            order, Status.CANCELLED, actor=requester, reason=reason
        )
