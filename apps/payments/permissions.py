import hmac
import logging

from django.conf import settings
from rest_framework.permissions import BasePermission

logger = logging.getLogger(__name__)

AUTH_SCHEMES = ("apikey", "bearer")


class HasGatewayApiKey(BasePermission):
    """
    Gateway webhooks authenticate with `Authorization: Apikey <key>`
    (or `Bearer <key>`) instead of a user session.
    """
    message = "Invalid or missing webhook API key."

    def has_permission(self, request, view):
        expected = settings.PAYMENT_WEBHOOK_API_KEY
        if not expected:
            # Unset key means local/dev mode
            logger.warning("PAYMENT_WEBHOOK_API_KEY not configured, skipping webhook authentication")
            return True

        header = request.headers.get("Authorization", "").strip()
        scheme, _, credential = header.partition(" ")
        if scheme.lower() in AUTH_SCHEMES:
            header = credential.strip()

        if not header or not hmac.compare_digest(header.encode(), expected.encode()):
            logger.warning(f"Rejected webhook call from {request.META.get('REMOTE_ADDR')}")
            return False
        return True
