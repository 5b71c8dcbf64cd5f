# apps/orders/apps.py

from django.apps import AppConfig


class OrdersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.orders"

    def ready(self):
        # Side-effect listeners only; order logic stays in services
        import apps.orders.receivers  # noqa: F401
