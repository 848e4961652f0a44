from .order import Order, OrderItem, OrderStatus, PaymentStatus


__all__ = [
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
]
