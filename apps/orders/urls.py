from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import CartItemDetailView, CartItemsView, CartSyncView, CartView, OrderViewSet

router = DefaultRouter()
router.register(r'orders', OrderViewSet, basename='orders')

urlpatterns = [
    path('cart/', CartView.as_view(), name='cart'),
    path('cart/items/', CartItemsView.as_view(), name='cart-items'),
    path('cart/items/<uuid:item_id>/', CartItemDetailView.as_view(), name='cart-item-detail'),
    path('cart/sync/', CartSyncView.as_view(), name='cart-sync'),
    path('', include(router.urls)),
]
