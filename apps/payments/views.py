import logging

from rest_framework import generics
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.orders.services import OrderService
from apps.utils.pagination import StandardResultsSetPagination
from apps.utils.permissions import IsAdminRole
from apps.utils.responses import success_response

from .models import Transaction
from .permissions import HasGatewayApiKey
from .serializers import SyncTransactionsSerializer, TransactionSerializer
from .services import PaymentReconciliationService, PaymentService, sync_gateway_transactions

logger = logging.getLogger(__name__)


class PaymentWebhookView(APIView):
    """
    Public endpoint for gateway callbacks, authenticated by API key.
    Always acknowledges with 200 once authenticated so the gateway
    does not keep redelivering; the body reports what happened.
    """
    permission_classes = [HasGatewayApiKey]
    authentication_classes = []

    def post(self, request):
        payload = request.data
        if hasattr(payload, 'dict'):
            payload = payload.dict()
        if not isinstance(payload, dict):
            return Response({"success": False, "message": "Ignored: malformed payload", "orderId": None})

        result = PaymentReconciliationService.process_notification(payload)
        return Response({
            "success": result.success,
            "message": result.message,
            "orderId": result.order_id,
        })


class PaymentQRView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, order_id):
        order = OrderService.get_order_for(request.user, order_id)
        return success_response(PaymentService.build_payment_instructions(order))


class PaymentStatusView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, order_id):
        order = OrderService.get_order_for(request.user, order_id)
        return success_response(PaymentService.get_payment_status(order))


class TransactionListView(generics.ListAPIView):
    """Admin audit trail of every payment record."""
    serializer_class = TransactionSerializer
    permission_classes = [IsAuthenticated, IsAdminRole]
    pagination_class = StandardResultsSetPagination
    filter_backends = []
    queryset = Transaction.objects.select_related('order').order_by('-created_at')


class PaymentSyncView(APIView):
    permission_classes = [IsAuthenticated, IsAdminRole]

    def post(self, request):
        serializer = SyncTransactionsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        summary = sync_gateway_transactions(serializer.validated_data.get('limit'))
        return success_response(
            summary,
            message=f"Synced {summary['fetched']} transactions, {summary['processed']} new payments.",
        )
