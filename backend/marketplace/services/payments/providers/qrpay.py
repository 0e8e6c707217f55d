"""QRPay: scan-to-pay QR codes.

The reference and QR payload are minted locally, so initiation makes no
outbound call. QRPay cannot sign its callbacks; a callback is trusted only if
it names our merchant id, carries a reference we minted (which encodes the
order id) and reports the stored order amount.
"""

from __future__ import annotations

import hmac
import json
import logging
from typing import Mapping

from ..errors import (
    MalformedWebhook,
    ProviderNotConfigured,
    SignatureInvalid,
    UnknownOrder,
    WebhookNotConfigured,
)
from ..outcomes import QRPayOutcome, classify
from .base import PaymentGateway, PaymentHandle, mint_reference, parse_cents, parse_reference

logger = logging.getLogger(__name__)

PAID_STATUSES = ("completed", "success", "successful", "paid")
FAILED_STATUSES = ("failed", "declined", "error")
CANCELLED_STATUSES = ("cancelled", "canceled", "expired")


def build_qr_payload(merchant_id: str, amount_cents: int, reference: str, description: str) -> str:
    """``{merchant}|{cents}|{reference}|{description}``; ``|`` is stripped from the description."""
    safe_description = description.replace("|", " ").strip()
    return f"{merchant_id}|{amount_cents}|{reference}|{safe_description}"


class QRPayGateway(PaymentGateway):
    name = "qrpay"
    reference_prefix = "QRPAY"

    def is_configured(self) -> bool:
        return bool(self.settings.QRPAY_MERCHANT_ID and self.settings.QRPAY_API_KEY)

    def create_payment(self, order, amount_cents, request, buyer) -> PaymentHandle:
        if not self.is_configured():
            raise ProviderNotConfigured(self.name)
        merchant_id = self.settings.QRPAY_MERCHANT_ID
        reference = mint_reference(self.reference_prefix, order.id)
        description = request.description or f"Order {order.id}"
        qr_data = build_qr_payload(merchant_id, amount_cents, reference, description)
        return PaymentHandle(
            provider_reference=reference,
            qr_payload=qr_data,
            metadata={
                **(request.metadata or {}),
                "merchantId": merchant_id,
                "qrData": qr_data,
                "transactionId": reference,
                "requiresPolling": True,
            },
        )

    def parse_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> QRPayOutcome:
        merchant_id = self.settings.QRPAY_MERCHANT_ID
        if not merchant_id:
            raise WebhookNotConfigured("QRPay merchant id is not configured")

        try:
            body = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise MalformedWebhook("QRPay webhook body is not JSON") from exc
        if not isinstance(body, dict):
            raise MalformedWebhook("QRPay webhook body is not an object")

        reference = body.get("reference") or body.get("merchantReference")
        if not reference:
            raise MalformedWebhook("QRPay webhook missing reference")
        reference = str(reference)

        inbound_merchant = str(body.get("merchantId") or "")
        if not hmac.compare_digest(inbound_merchant.encode(), merchant_id.encode()):
            raise SignatureInvalid(f"QRPay merchant id mismatch for {reference}")

        parsed = parse_reference(self.reference_prefix, reference)
        if parsed is None:
            raise UnknownOrder(f"QRPay reference not minted here: {reference}")
        order_id, _minted_at = parsed

        try:
            amount_cents = parse_cents(body.get("amount"))
        except ValueError as exc:
            raise MalformedWebhook(f"QRPay webhook amount invalid: {exc}") from exc
        if amount_cents is None:
            raise MalformedWebhook("QRPay webhook missing amount")

        raw_status = str(body.get("status") or "")
        return QRPayOutcome(
            order_id=order_id,
            provider_reference=reference,
            outcome=classify(
                raw_status,
                paid=PAID_STATUSES,
                failed=FAILED_STATUSES,
                cancelled=CANCELLED_STATUSES,
            ),
            raw_status=raw_status,
            amount_cents=amount_cents,
            payload=body,
            merchant_id=inbound_merchant,
            transaction_id=(str(body["transactionId"]) if body.get("transactionId") else None),
        )
