from rest_framework import serializers

from apps.utils.validators import validate_phone

from .models import Cart, CartItem, Order, OrderDetail, OrderTimeline


# Inputs

class CheckoutSerializer(serializers.Serializer):
    shippingAddress = serializers.CharField(min_length=10, max_length=500, source='shipping_address')
    shippingPhone = serializers.CharField(max_length=20, source='shipping_phone', validators=[validate_phone])
    paymentMethod = serializers.ChoiceField(choices=Order.PaymentMethod.choices, source='payment_method')
    note = serializers.CharField(max_length=500, required=False, allow_blank=True, allow_null=True)
    # Pricing (shipping fee, discount) is decided server-side; extra keys are dropped

    def validate_shippingAddress(self, value):
        value = value.strip()
        if len(value) < 10:
            raise serializers.ValidationError("Address must be at least 10 characters.")
        return value


class UpdateStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.Status.choices)
    note = serializers.CharField(max_length=500, required=False, allow_blank=True)


class UpdatePaymentStatusSerializer(serializers.Serializer):
    paymentStatus = serializers.ChoiceField(choices=Order.PaymentStatus.choices, source='payment_status')
    note = serializers.CharField(max_length=500, required=False, allow_blank=True)


class CancelOrderSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, allow_null=True)


class OrderListQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(min_value=1, required=False)
    limit = serializers.IntegerField(min_value=1, max_value=100, required=False)
    status = serializers.ChoiceField(choices=Order.Status.choices, required=False)
    paymentStatus = serializers.ChoiceField(choices=Order.PaymentStatus.choices, required=False)
    fromDate = serializers.DateField(required=False)
    toDate = serializers.DateField(required=False)
    sortBy = serializers.ChoiceField(choices=['createdAt', 'totalMoney', 'status'], required=False)
    sortOrder = serializers.ChoiceField(choices=['asc', 'desc'], required=False)

    def validate(self, attrs):
        start, end = attrs.get('fromDate'), attrs.get('toDate')
        if start and end and start > end:
            raise serializers.ValidationError("fromDate must not be after toDate.")
        return attrs


class CartAddSerializer(serializers.Serializer):
    productId = serializers.UUIDField(source='product_id')
    quantity = serializers.IntegerField(min_value=1, default=1)


class CartUpdateSerializer(serializers.Serializer):
    # 0 removes the line
    quantity = serializers.IntegerField(min_value=0)


class CartSyncItemSerializer(serializers.Serializer):
    productId = serializers.UUIDField(source='product_id')
    quantity = serializers.IntegerField(min_value=1)


class CartSyncSerializer(serializers.Serializer):
    items = CartSyncItemSerializer(many=True, allow_empty=True)


# Outputs

class OrderDetailSerializer(serializers.ModelSerializer):
    productId = serializers.UUIDField(source='product_id', read_only=True)
    productName = serializers.CharField(source='product_name', read_only=True)
    subtotal = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = OrderDetail
        fields = ['id', 'productId', 'productName', 'price', 'quantity', 'subtotal']


class OrderTimelineSerializer(serializers.ModelSerializer):
    paymentStatus = serializers.CharField(source='payment_status', read_only=True)

    class Meta:
        model = OrderTimeline
        fields = ['status', 'paymentStatus', 'note', 'timestamp']


class OrderSerializer(serializers.ModelSerializer):
    userId = serializers.IntegerField(source='user_id', read_only=True)
    shippingFee = serializers.DecimalField(source='shipping_fee', max_digits=14, decimal_places=2, read_only=True)
    discountAmount = serializers.DecimalField(
        source='discount_amount', max_digits=14, decimal_places=2, read_only=True
    )
    totalMoney = serializers.DecimalField(source='total_money', max_digits=14, decimal_places=2, read_only=True)
    paymentStatus = serializers.CharField(source='payment_status', read_only=True)
    paymentMethod = serializers.CharField(source='payment_method', read_only=True)
    shippingAddress = serializers.CharField(source='shipping_address', read_only=True)
    shippingPhone = serializers.CharField(source='shipping_phone', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)
    details = OrderDetailSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'code', 'userId', 'subtotal', 'shippingFee', 'discountAmount', 'totalMoney',
            'status', 'paymentStatus', 'paymentMethod', 'shippingAddress', 'shippingPhone',
            'note', 'createdAt', 'updatedAt', 'details',
        ]


class OrderWithTimelineSerializer(OrderSerializer):
    timeline = OrderTimelineSerializer(many=True, read_only=True)

    class Meta(OrderSerializer.Meta):
        fields = OrderSerializer.Meta.fields + ['timeline']


class CartItemSerializer(serializers.ModelSerializer):
    productId = serializers.UUIDField(source='product_id', read_only=True)
    productName = serializers.CharField(source='product.name', read_only=True)
    price = serializers.DecimalField(source='product.price', max_digits=14, decimal_places=2, read_only=True)
    stockQuantity = serializers.IntegerField(source='product.stock_quantity', read_only=True)
    subtotal = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = CartItem
        fields = ['id', 'productId', 'productName', 'price', 'stockQuantity', 'quantity', 'subtotal']


class CartSerializer(serializers.ModelSerializer):
    items = CartItemSerializer(many=True, read_only=True)
    totalItems = serializers.IntegerField(source='total_items', read_only=True)
    totalAmount = serializers.DecimalField(source='total_amount', max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = Cart
        fields = ['id', 'items', 'totalItems', 'totalAmount']
