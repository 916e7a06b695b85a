from paycore.models.order import Order, OrderPaymentStatus, OrderStatus

__all__ = [
    "Order",
    "OrderPaymentStatus",
    "OrderStatus",
]
