from celery import shared_task
import logging

from apps.utils.exceptions import PaymentGatewayError
from .services import sync_gateway_transactions

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def sync_gateway_transactions_task(self, limit=None):
    """
    Periodic safety net for missed webhooks.
    Retries in background if the gateway is flaky.
    """
    try:
        return sync_gateway_transactions(limit)
    except PaymentGatewayError as e:
        logger.error(f"Gateway sync failed, retrying: {e.message}")
        raise self.retry(exc=e)
