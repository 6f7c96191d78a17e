from .enums import OrderStatus
from .products import Product
from .orders import Order, OrderItem
from .phone_numbers import PhoneNumber

__all__ = [
    "OrderStatus",
    "Product",
    "Order",
    "OrderItem",
    "PhoneNumber",
]
