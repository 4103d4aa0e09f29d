"""
Top-level models import shim for the Orders app.

Lets `from apps.orders.models import Order` work while the actual
models live in separate modules.
"""

from .order import *          # Order
from .item import *           # OrderItem
from .cart import *           # Cart, CartItem
