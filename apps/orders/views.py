import logging

from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView
from django_filters.rest_framework import DjangoFilterBackend

from apps.utils.permissions import IsAdminRole
from apps.utils.responses import success_response

from .filters import OrderFilter
from .serializers import (
    CancelOrderSerializer,
    CartAddSerializer,
    CartSerializer,
    CartSyncSerializer,
    CartUpdateSerializer,
    CheckoutSerializer,
    OrderListQuerySerializer,
    OrderSerializer,
    OrderWithTimelineSerializer,
    UpdatePaymentStatusSerializer,
    UpdateStatusSerializer,
)
from .services import CartService, OrderService
from .state_machine import OrderStateMachine

logger = logging.getLogger(__name__)


class OrderViewSet(viewsets.GenericViewSet):
    """
    Checkout, order history and lifecycle transitions.
    Customers see their own orders; admins see all.
    """
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_class = OrderFilter

    def get_queryset(self):
        return OrderService.orders_for(self.request.user)

    def get_permissions(self):
        if self.action in ('update_status', 'update_payment_status'):
            return [IsAuthenticated(), IsAdminRole()]
        return super().get_permissions()

    def create(self, request):
        """
        Checkout Endpoint.
        Expects: { "shippingAddress", "shippingPhone", "paymentMethod", "note"? }
        """
        serializer = CheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = OrderService.create_order(request.user, **serializer.validated_data)
        return success_response(
            OrderSerializer(order).data,
            status=status.HTTP_201_CREATED,
            message="Order created successfully",
        )

    def list(self, request):
        # Rejects limit > 100 and malformed dates instead of silently clamping
        OrderListQuerySerializer(data=request.query_params).is_valid(raise_exception=True)

        queryset = self.filter_queryset(self.get_queryset())
        page = self.paginate_queryset(queryset)
        return self.get_paginated_response(self.get_serializer(page, many=True).data)

    def retrieve(self, request, pk=None):
        order = OrderService.get_order_for(request.user, pk)
        return success_response(OrderWithTimelineSerializer(order).data)

    @action(detail=True, methods=['put'], url_path='status', url_name='status')
    def update_status(self, request, pk=None):
        serializer = UpdateStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = OrderService.get_order(pk)
        OrderStateMachine.update_status(
            order,
            serializer.validated_data['status'],
            actor=request.user,
            note=serializer.validated_data.get('note', ''),
        )
        return success_response(OrderSerializer(OrderService.get_order(pk)).data)

    @action(detail=True, methods=['put'], url_path='payment', url_name='payment')
    def update_payment_status(self, request, pk=None):
        serializer = UpdatePaymentStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = OrderService.get_order(pk)
        OrderStateMachine.update_payment_status(
            order,
            serializer.validated_data['payment_status'],
            actor=request.user,
            note=serializer.validated_data.get('note', ''),
        )
        return success_response(OrderSerializer(OrderService.get_order(pk)).data)

    @action(detail=True, methods=['put'], url_path='cancel', url_name='cancel')
    def cancel(self, request, pk=None):
        serializer = CancelOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = OrderService.get_order(pk)
        OrderStateMachine.cancel(order, request.user, reason=serializer.validated_data.get('reason'))
        return success_response(
            OrderSerializer(OrderService.get_order(pk)).data,
            message="Order cancelled",
        )


class CartView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return success_response(CartSerializer(CartService.get_or_create_cart(request.user)).data)

    def delete(self, request):
        return success_response(CartSerializer(CartService.clear(request.user)).data)


class CartItemsView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = CartAddSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        cart = CartService.add_item(
            request.user,
            serializer.validated_data['product_id'],
            serializer.validated_data['quantity'],
        )
        return success_response(CartSerializer(cart).data, status=status.HTTP_201_CREATED)


class CartItemDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def put(self, request, item_id):
        serializer = CartUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        cart = CartService.update_item(request.user, item_id, serializer.validated_data['quantity'])
        return success_response(CartSerializer(cart).data)

    def delete(self, request, item_id):
        return success_response(CartSerializer(CartService.remove_item(request.user, item_id)).data)


class CartSyncView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = CartSyncSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        cart = CartService.sync(request.user, serializer.validated_data['items'])
        return success_response(CartSerializer(cart).data)
