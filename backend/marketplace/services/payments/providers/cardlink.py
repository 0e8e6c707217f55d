"""CardLink: hosted card checkout links with HMAC-signed webhooks.

Initiation creates a payment link through the CardLink API; the link id is the
provider reference. Webhooks carry ``x-cardlink-signature`` (HMAC-SHA256 over
``timestamp + raw body``, hex or base64) and ``x-cardlink-timestamp``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping

import httpx

from ..errors import (
    MalformedWebhook,
    ProviderError,
    ProviderNotConfigured,
    SignatureInvalid,
    WebhookNotConfigured,
)
from ..outcomes import CardLinkOutcome, classify
from .base import (
    PaymentGateway,
    PaymentHandle,
    header,
    hmac_sha256_matches,
    parse_cents,
)

logger = logging.getLogger(__name__)

SANDBOX_API_URL = "https://sandbox.api.cardlink.example/v1"
LIVE_API_URL = "https://api.cardlink.example/v1"

SIGNATURE_HEADER = "x-cardlink-signature"
TIMESTAMP_HEADER = "x-cardlink-timestamp"

PAID_STATUSES = ("completed", "succeeded", "success", "payment.succeeded")
FAILED_STATUSES = ("failed", "payment.failed")
CANCELLED_STATUSES = ("cancelled", "canceled", "payment.cancelled")


class CardLinkGateway(PaymentGateway):
    name = "cardlink"

    def is_configured(self) -> bool:
        return bool(self.settings.CARDLINK_SECRET_KEY)

    @property
    def is_test_mode(self) -> bool:
        return "test" in self.settings.CARDLINK_SECRET_KEY

    @property
    def api_url(self) -> str:
        if self.settings.CARDLINK_API_URL:
            return self.settings.CARDLINK_API_URL
        return SANDBOX_API_URL if self.is_test_mode else LIVE_API_URL

    def create_payment(self, order, amount_cents, request, buyer) -> PaymentHandle:
        if not self.is_configured():
            raise ProviderNotConfigured(self.name)

        payload: Dict[str, Any] = {
            "amount": amount_cents,
            "currency": order.currency,
            "description": (request.description or f"Order {order.id}")[:255],
            "externalId": order.id,
            "customer": {
                "email": request.buyer_email or buyer.email,
                "name": request.buyer_name or buyer.full_name,
            },
            "redirectUrl": {
                "success": self.return_url(order.id, "success"),
                "failure": self.return_url(order.id, "failed"),
                "cancel": self.return_url(order.id, "cancelled"),
            },
            "metadata": {
                **(request.metadata or {}),
                "orderId": order.id,
                "buyerId": str(buyer.id),
            },
        }
        headers = {
            "Authorization": f"Bearer {self.settings.CARDLINK_SECRET_KEY}",
            "Content-Type": "application/json",
        }
        url = f"{self.api_url}/links"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                r = client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            logger.error("CardLink link request timed out for order %s", order.id)
            raise ProviderError(self.name, "CardLink did not respond in time") from exc
        except httpx.HTTPError as exc:
            logger.error("CardLink link request failed for order %s: %s", order.id, exc)
            raise ProviderError(self.name, f"CardLink request failed: {exc}") from exc

        try:
            data = r.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if r.status_code >= 400:
            message = data.get("message") or data.get("error") or r.text or "CardLink error"
            logger.error(
                "CardLink rejected link for order %s: status=%s message=%s",
                order.id,
                r.status_code,
                message,
            )
            raise ProviderError(self.name, str(message))

        link_id = data.get("id")
        redirect_url = data.get("url") or data.get("redirectUrl")
        if not link_id or not redirect_url:
            logger.error("CardLink response missing id/url for order %s: %s", order.id, data)
            raise ProviderError(self.name, "Invalid CardLink response")

        return PaymentHandle(
            provider_reference=str(link_id),
            redirect_url=str(redirect_url),
            metadata={
                "linkId": str(link_id),
                "mode": "test" if self.is_test_mode else "live",
                "amountCents": amount_cents,
            },
        )

    def parse_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> CardLinkOutcome:
        secret = self.settings.CARDLINK_WEBHOOK_SECRET
        if not secret:
            raise WebhookNotConfigured("CardLink webhook secret is not configured")

        signature = header(headers, SIGNATURE_HEADER)
        timestamp = header(headers, TIMESTAMP_HEADER)
        if not signature or not timestamp:
            raise SignatureInvalid("Missing CardLink signature headers")
        if not hmac_sha256_matches(secret, timestamp.encode("utf-8") + raw_body, signature):
            raise SignatureInvalid("CardLink signature mismatch")

        try:
            body = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise MalformedWebhook("CardLink webhook body is not JSON") from exc
        if not isinstance(body, dict):
            raise MalformedWebhook("CardLink webhook body is not an object")

        data = body.get("data") if isinstance(body.get("data"), dict) else body
        metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}

        reference = metadata.get("linkId") or data.get("id")
        order_id = metadata.get("orderId") or data.get("externalId")
        if not reference or not order_id:
            raise MalformedWebhook("CardLink webhook missing link id or order id")

        raw_status = str(data.get("status") or body.get("type") or "")
        try:
            amount_cents = parse_cents(data.get("amount"))
        except ValueError as exc:
            raise MalformedWebhook(f"CardLink webhook amount invalid: {exc}") from exc

        return CardLinkOutcome(
            order_id=str(order_id),
            provider_reference=str(reference),
            outcome=classify(
                raw_status,
                paid=PAID_STATUSES,
                failed=FAILED_STATUSES,
                cancelled=CANCELLED_STATUSES,
            ),
            raw_status=raw_status,
            amount_cents=amount_cents,
            payload=body,
            event_type=body.get("type"),
        )
