from .user import UserCreate, UserResponse, Token
from .order import (
    OrderCreate,
    OrderItemCreate,
    OrderItemResponse,
    OrderResponse,
    OrderStatusResponse,
)
from .payment import (
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentRecordResponse,
    WebhookAck,
)
