import logging

from django.dispatch import receiver
from .signals import order_created, order_status_changed, order_refund_requested

logger = logging.getLogger(__name__)


@receiver(order_created)
def log_order_created(sender, order, **kwargs):
    logger.info(
        f"Order {order.code} placed. Total: {order.total_money}",
        extra={"order_id": order.pk, "user_id": order.user_id},
    )


@receiver(order_status_changed)
def log_status_change(sender, order, old_status, new_status, field="status", **kwargs):
    logger.info(
        f"Order {order.code} {field}: {old_status} -> {new_status}",
        extra={"order_id": order.pk, "user_id": order.user_id},
    )


@receiver(order_refund_requested)
def log_refund_request(sender, order_id, amount, reason, **kwargs):
    logger.warning(
        f"Refund requested for order {order_id}: {amount} ({reason})",
        extra={"order_id": order_id},
    )
