from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.order import PaymentMethod


class OrderItemCreate(BaseModel):
    product_id: str
    seller_store_id: str
    product_name: Optional[str] = None
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(gt=0, decimal_places=2)


class OrderCreate(BaseModel):
    items: List[OrderItemCreate] = Field(min_length=1)
    payment_method: PaymentMethod


class OrderItemResponse(BaseModel):
    id: int
    product_id: str
    seller_store_id: str
    product_name: Optional[str] = None
    quantity: int
    unit_price: Decimal
    item_total: Decimal
    commission_amount: Decimal
    item_status: str

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    id: str
    buyer_id: int
    total_amount: Decimal
    total_commission: Decimal
    currency: str
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    created_at: datetime
    items: List[OrderItemResponse] = []

    model_config = {"from_attributes": True}


class OrderStatusResponse(BaseModel):
    """Polling contract read by the storefront after a redirect or QR scan."""

    order_id: str
    status: str
    payment_status: str
    payment_method: Optional[str] = None
