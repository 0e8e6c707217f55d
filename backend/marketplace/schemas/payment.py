from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentInitiateRequest(BaseModel):
    """Body posted by the storefront to any provider's initiate endpoint.

    ``amount`` is what the client believes it owes; the server only uses it to
    detect tampering and always charges the stored order total.
    """

    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId")
    amount: Decimal = Field(gt=0)
    description: str = ""
    buyer_email: Optional[str] = Field(default=None, alias="buyerEmail")
    buyer_name: Optional[str] = Field(default=None, alias="buyerName")
    metadata: Optional[Dict[str, Any]] = None


class PaymentInitiateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    order_id: str = Field(alias="orderId")
    payment_id: str = Field(alias="paymentId")
    provider: str
    redirect_url: Optional[str] = Field(default=None, alias="redirectUrl")
    qr_code: Optional[str] = Field(default=None, alias="qrCode")


class PaymentRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: str
    payment_method: str
    provider_reference: str
    status: str
    amount: Decimal
    currency: str
    created_at: datetime
    updated_at: Optional[datetime] = None


class WebhookAck(BaseModel):
    success: bool = True
