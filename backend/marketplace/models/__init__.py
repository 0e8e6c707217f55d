from .user import User, UserType
from .order import (
    Order,
    OrderItem,
    OrderStatus,
    OrderTotalLocked,
    PaymentMethod,
    PaymentStatus,
)
from .payment import Payment, PaymentRecordStatus

__all__ = [
    "User",
    "UserType",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderTotalLocked",
    "PaymentMethod",
    "PaymentStatus",
    "Payment",
    "PaymentRecordStatus",
]
