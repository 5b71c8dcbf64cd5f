import logging

import requests
from django.conf import settings

from apps.utils.exceptions import PaymentGatewayError, ServerError

logger = logging.getLogger(__name__)


class SePayClient:
    """
    Thin client for the bank-transfer gateway's transaction history API.
    Only used for reconciliation sync; notifications normally arrive via webhook.
    """

    def __init__(self, api_token=None, account_number=None, api_url=None, timeout=10):
        self.api_token = api_token if api_token is not None else settings.SEPAY_API_TOKEN
        self.account_number = account_number if account_number is not None else settings.BANK_ACCOUNT_NUMBER
        self.api_url = api_url or settings.SEPAY_API_URL
        self.timeout = timeout

    def fetch_transactions(self, limit: int = 20) -> list:
        if not self.api_token or not self.account_number:
            raise ServerError("Gateway sync is not configured (SEPAY_API_TOKEN / BANK_ACCOUNT_NUMBER).")

        try:
            response = requests.get(
                self.api_url,
                headers={
                    "Authorization": f"Bearer {self.api_token}",
                    "Content-Type": "application/json",
                },
                params={"account_number": self.account_number, "limit": limit},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Gateway history fetch failed: {e}")
            raise PaymentGatewayError("Failed to fetch transactions from the payment gateway.")

        return data.get("transactions") or []

    @staticmethod
    def to_notification(row: dict) -> dict:
        """Maps a history API row onto the webhook payload shape."""
        return {
            "id": row.get("id"),
            "gateway": row.get("bank_brand_name") or "",
            "transactionDate": row.get("transaction_date"),
            "accountNumber": row.get("account_number"),
            "transferType": row.get("transfer_type") or "in",
            "transferAmount": row.get("amount_in") or 0,
            "content": row.get("transaction_content") or "",
            "referenceCode": row.get("reference_number"),
            "description": row.get("description") or row.get("transaction_content") or "",
        }
