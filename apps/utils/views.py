# apps/utils/views.py
from rest_framework.views import APIView
from rest_framework.permissions import AllowAny
from django.conf import settings

from .responses import success_response


class ServerInfoView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        return success_response({
            "appName": "Storefront",
            "version": "1.0.0",
            "debug": settings.DEBUG,
        })


class GlobalConfigView(APIView):
    """
    Checkout settings the storefront client needs before placing an order.
    """
    permission_classes = [AllowAny]

    def get(self, request):
        return success_response({
            "shippingFee": str(settings.SHIPPING_FEE),
            "paymentMethods": ["COD", "gateway"],
            "bankName": settings.BANK_NAME,
        })
