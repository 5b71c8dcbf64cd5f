from rest_framework import serializers

from .models import Transaction


class SyncTransactionsSerializer(serializers.Serializer):
    limit = serializers.IntegerField(min_value=1, max_value=100, required=False)


class TransactionSerializer(serializers.ModelSerializer):
    orderId = serializers.UUIDField(source='order_id', read_only=True)
    orderCode = serializers.CharField(source='order.code', read_only=True, default=None)
    paymentMethod = serializers.CharField(source='payment_method', read_only=True)
    transactionCode = serializers.CharField(source='transaction_code', read_only=True)
    paidAt = serializers.DateTimeField(source='paid_at', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = Transaction
        fields = [
            'id', 'orderId', 'orderCode', 'paymentMethod', 'transactionCode',
            'amount', 'status', 'gateway', 'description', 'paidAt', 'createdAt',
        ]
