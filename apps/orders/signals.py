# apps/orders/signals.py
from django.dispatch import Signal

# Fired after a checkout commits.
# args: order
order_created = Signal()

# Fired after a status or payment-status transition commits.
# args: order, old_status, new_status, field
order_status_changed = Signal()

# Fired when a paid order is cancelled and the gateway must refund it.
# args: order_id, amount, reason
order_refund_requested = Signal()
