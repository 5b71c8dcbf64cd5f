from django.contrib import admin
from .models import Transaction


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ('transaction_code', 'order', 'amount', 'status', 'payment_method', 'paid_at', 'created_at')
    list_filter = ('status', 'payment_method', 'created_at')
    search_fields = ('transaction_code', 'order__code', 'description')
    readonly_fields = ('gateway_payload',)

    def has_delete_permission(self, request, obj=None):
        return False # Payment audit trail
