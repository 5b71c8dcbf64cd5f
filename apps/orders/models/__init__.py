"""
Top-level models import shim for the Orders app.

Lets callers write
    from apps.orders.models import Order
while the models live in separate modules.
"""

from .order import *          # Order
from .item import *           # OrderDetail
from .timeline import *       # OrderTimeline
from .cart import *           # Cart, CartItem
