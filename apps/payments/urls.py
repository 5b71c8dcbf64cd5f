from django.urls import path

from .views import (
    PaymentQRView,
    PaymentStatusView,
    PaymentSyncView,
    PaymentWebhookView,
    TransactionListView,
)

urlpatterns = [
    path('webhook/', PaymentWebhookView.as_view(), name='payment-webhook'),
    path('qr/<uuid:order_id>/', PaymentQRView.as_view(), name='payment-qr'),
    path('status/<uuid:order_id>/', PaymentStatusView.as_view(), name='payment-status'),
    path('transactions/', TransactionListView.as_view(), name='payment-transactions'),
    path('sync/', PaymentSyncView.as_view(), name='payment-sync'),
]
