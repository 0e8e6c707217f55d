"""FormPay: signed hosted payment form with form-encoded notifications.

The buyer is redirected to FormPay's process page with the merchant fields in
the query string and an MD5 signature over them. FormPay later posts a
notification (form-encoded) that is signed the same way.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, Mapping
from urllib.parse import parse_qsl, quote_plus, urlencode

from ..errors import (
    MalformedWebhook,
    ProviderNotConfigured,
    SignatureInvalid,
    UnknownOrder,
    WebhookNotConfigured,
)
from ..outcomes import FormPayOutcome, classify
from .base import PaymentGateway, PaymentHandle, mint_reference, parse_reference, to_cents

logger = logging.getLogger(__name__)

SANDBOX_BASE_URL = "https://sandbox.formpay.example"
LIVE_BASE_URL = "https://www.formpay.example"
NOTIFY_PATH = "/api/v1/payments/formpay/notify"

PAID_STATUSES = ("COMPLETE",)
FAILED_STATUSES = ("FAILED",)
CANCELLED_STATUSES = ("CANCELLED",)


def _encode(value: str) -> str:
    # Matches browser encodeURIComponent with spaces as '+'
    return quote_plus(value.strip(), safe="!*'()")


def sign_fields(fields: Mapping[str, str], passphrase: str = "") -> str:
    """MD5 over the sorted, url-encoded non-empty fields plus the passphrase."""
    pairs = [
        f"{key}={_encode(str(value))}"
        for key, value in sorted(fields.items())
        if key != "signature" and str(value).strip() != ""
    ]
    if passphrase:
        pairs.append(f"passphrase={_encode(passphrase)}")
    return hashlib.md5("&".join(pairs).encode("utf-8")).hexdigest()


class FormPayGateway(PaymentGateway):
    name = "formpay"
    reference_prefix = "FORMPAY"

    def is_configured(self) -> bool:
        return bool(self.settings.FORMPAY_MERCHANT_ID and self.settings.FORMPAY_MERCHANT_KEY)

    @property
    def base_url(self) -> str:
        return SANDBOX_BASE_URL if self.settings.FORMPAY_SANDBOX else LIVE_BASE_URL

    @property
    def notify_url(self) -> str:
        return f"{self.settings.PUBLIC_API_URL}{NOTIFY_PATH}"

    def create_payment(self, order, amount_cents, request, buyer) -> PaymentHandle:
        if not self.is_configured():
            raise ProviderNotConfigured(self.name)
        reference = mint_reference(self.reference_prefix, order.id)
        fields: Dict[str, str] = {
            "merchant_id": self.settings.FORMPAY_MERCHANT_ID,
            "merchant_key": self.settings.FORMPAY_MERCHANT_KEY,
            "return_url": self.return_url(order.id, "success"),
            "cancel_url": self.return_url(order.id, "cancelled"),
            "notify_url": self.notify_url,
            "name_first": request.buyer_name or buyer.first_name or "",
            "email_address": request.buyer_email or buyer.email or "",
            "m_payment_id": reference,
            "amount": f"{Decimal(amount_cents) / 100:.2f}",
            "item_name": (request.description or f"Order {order.id}")[:100],
            "custom_str1": order.id,
        }
        fields = {k: v for k, v in fields.items() if v}
        fields["signature"] = sign_fields(fields, self.settings.FORMPAY_PASSPHRASE)
        redirect_url = f"{self.base_url}/eng/process?{urlencode(fields)}"
        return PaymentHandle(
            provider_reference=reference,
            redirect_url=redirect_url,
            metadata={
                **(request.metadata or {}),
                "mPaymentId": reference,
                "sandbox": self.settings.FORMPAY_SANDBOX,
            },
        )

    def parse_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> FormPayOutcome:
        if not self.is_configured():
            raise WebhookNotConfigured("FormPay merchant credentials are not configured")

        try:
            fields = dict(parse_qsl(raw_body.decode("utf-8"), keep_blank_values=True))
        except UnicodeDecodeError as exc:
            raise MalformedWebhook("FormPay notification is not valid form data") from exc
        if not fields:
            raise MalformedWebhook("FormPay notification is empty")

        merchant_id = fields.get("merchant_id", "")
        if not hmac.compare_digest(merchant_id.encode(), self.settings.FORMPAY_MERCHANT_ID.encode()):
            raise SignatureInvalid("FormPay merchant id mismatch")

        received = fields.get("signature", "")
        expected = sign_fields(fields, self.settings.FORMPAY_PASSPHRASE)
        if not hmac.compare_digest(expected.encode(), received.strip().lower().encode()):
            raise SignatureInvalid("FormPay signature mismatch")

        reference = fields.get("m_payment_id")
        if not reference:
            raise MalformedWebhook("FormPay notification missing m_payment_id")
        parsed = parse_reference(self.reference_prefix, reference)
        if parsed is None:
            raise UnknownOrder(f"FormPay reference not minted here: {reference}")
        order_id, _minted_at = parsed
        custom_order = fields.get("custom_str1")
        if custom_order and custom_order != order_id:
            raise UnknownOrder(f"FormPay reference {reference} does not belong to order {custom_order}")

        try:
            amount_cents = to_cents(Decimal(fields.get("amount_gross", "")))
        except (InvalidOperation, ValueError, OverflowError) as exc:
            raise MalformedWebhook("FormPay notification amount_gross invalid") from exc

        raw_status = fields.get("payment_status", "")
        return FormPayOutcome(
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
            payload=fields,
            provider_payment_id=fields.get("fp_payment_id") or None,
        )
