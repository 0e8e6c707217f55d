import enum

from sqlalchemy import Column, ForeignKey, Integer, JSON, Numeric, String
from sqlalchemy.orm import relationship

from .base import BaseModel


class PaymentRecordStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Payment(BaseModel):
    """One live payment attempt for an order.

    ``provider_reference`` is the anchor every inbound provider callback must
    match; it is written at initiation time and only replaced by a fresh
    initiation of the same order.
    """

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, unique=True, index=True)
    payment_method = Column(String, nullable=False)
    provider_reference = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=PaymentRecordStatus.PENDING.value)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="ZAR")
    # ``metadata`` is reserved on declarative classes, hence the attribute name
    provider_metadata = Column("metadata", JSON, nullable=True)

    order = relationship("Order", back_populates="payment")
