from django.contrib import admin

from .models import Cart, CartItem, Order, OrderDetail, OrderTimeline


class OrderDetailInline(admin.TabularInline):
    model = OrderDetail
    extra = 0
    readonly_fields = ('product', 'product_name', 'price', 'quantity', 'subtotal')

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class OrderTimelineInline(admin.TabularInline):
    model = OrderTimeline
    extra = 0
    readonly_fields = ('timestamp', 'status', 'payment_status', 'note', 'created_by')

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """
    Read-only view. Status changes go through the API so that stock and
    payment records move with them.
    """
    list_display = ('code', 'user', 'status', 'payment_status', 'payment_method', 'total_money', 'created_at')
    list_filter = ('status', 'payment_status', 'payment_method', 'created_at')
    search_fields = ('code', 'id', 'shipping_phone', 'user__username')

    inlines = [OrderDetailInline, OrderTimelineInline]

    readonly_fields = (
        'id', 'code', 'user',
        'subtotal', 'shipping_fee', 'discount_amount', 'total_money',
        'status', 'payment_status', 'payment_method',
        'shipping_address', 'shipping_phone', 'note',
        'created_at', 'updated_at',
    )

    fieldsets = (
        ('Order Details', {
            'fields': ('code', 'id', 'status', 'user')
        }),
        ('Financials', {
            'fields': ('subtotal', 'shipping_fee', 'discount_amount', 'total_money',
                       'payment_status', 'payment_method')
        }),
        ('Delivery Info', {
            'fields': ('shipping_address', 'shipping_phone', 'note')
        }),
        ('System Data', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class CartItemInline(admin.TabularInline):
    model = CartItem
    extra = 0
    readonly_fields = ('product', 'quantity', 'added_at')
    can_delete = False


@admin.register(Cart)
class CartAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'updated_at')
    search_fields = ('user__username', 'user__email')
    readonly_fields = ('user', 'created_at', 'updated_at')
    inlines = [CartItemInline]

    def has_add_permission(self, request):
        return False
