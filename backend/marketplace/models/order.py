import enum
import uuid

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    Numeric,
    String,
    event,
    select,
)
from sqlalchemy.orm import relationship
from sqlalchemy.orm.attributes import get_history

from .base import BaseModel


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PENDING_PAYMENT = "pending_payment"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class PaymentMethod(str, enum.Enum):
    CARDLINK = "cardlink"
    QRPAY = "qrpay"
    FORMPAY = "formpay"


class OrderTotalLocked(ValueError):
    """Raised when an order total is changed after a payment attempt exists."""


def _new_order_id() -> str:
    return str(uuid.uuid4())


class Order(BaseModel):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_new_order_id)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    total_amount = Column(Numeric(12, 2), nullable=False)
    total_commission = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="ZAR")
    # Plain strings (OrderStatus / PaymentStatus values) so conditional
    # updates can compare against them directly.
    status = Column(String, nullable=False, default=OrderStatus.PENDING.value, index=True)
    payment_status = Column(String, nullable=False, default=PaymentStatus.UNPAID.value)
    payment_method = Column(String, nullable=True)

    buyer = relationship("User", back_populates="orders")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    payment = relationship("Payment", back_populates="order", uselist=False)


class OrderItem(BaseModel):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    # Catalogue rows live outside this service; keep their ids opaque
    product_id = Column(String, nullable=False)
    seller_store_id = Column(String, nullable=False, index=True)
    product_name = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    item_total = Column(Numeric(12, 2), nullable=False)
    commission_amount = Column(Numeric(12, 2), nullable=False)
    item_status = Column(String, nullable=False, default="pending")

    order = relationship("Order", back_populates="items")


@event.listens_for(Order, "before_update")
def _lock_total_once_payment_exists(mapper, connection, target: Order) -> None:
    history = get_history(target, "total_amount")
    if not history.added:
        return
    if history.deleted and history.deleted[0] == history.added[0]:
        return
    from .payment import Payment

    exists = connection.execute(
        select(Payment.id).where(Payment.order_id == target.id).limit(1)
    ).first()
    if exists is not None:
        raise OrderTotalLocked(
            f"Order {target.id} total is locked by an existing payment record"
        )
