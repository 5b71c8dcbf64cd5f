# apps/catalog/admin.py
from django.contrib import admin
from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("name", "price", "stock_quantity", "status", "version")
    search_fields = ("name", "slug")
    list_filter = ("status",)
    prepopulated_fields = {"slug": ("name",)}

    def get_readonly_fields(self, request, obj=None):
        # Opening stock is set on create; afterwards it only moves through the inventory ledger
        if obj is not None:
            return ("stock_quantity", "version", "created_at", "updated_at")
        return ("version",)
