"""Payment error taxonomy.

Initiation errors carry an HTTP status and a field-error map so the API layer
can hand them straight to ``error_response``. Webhook-side errors derive from
``WebhookRejected`` and are absorbed by the webhook routes (logged, 200-acked)
except for ``MalformedWebhook``, which is a transport-level 400.
"""

from typing import Dict, Optional

from fastapi import status


class PaymentError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Payment error"

    def __init__(
        self,
        message: Optional[str] = None,
        field_errors: Optional[Dict[str, str]] = None,
    ) -> None:
        self.message = message or self.default_message
        self.field_errors = field_errors or {}
        super().__init__(self.message)


class Unauthenticated(PaymentError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class Forbidden(PaymentError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class OrderNotFound(PaymentError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Order not found"

    def __init__(self, order_id: str) -> None:
        super().__init__(field_errors={"order_id": "not_found"})
        self.order_id = order_id


class AmountMismatch(PaymentError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Payment amount does not match order total"

    def __init__(self, claimed, expected) -> None:
        super().__init__(field_errors={"amount": "mismatch"})
        self.claimed = claimed
        self.expected = expected


class OrderNotPayable(PaymentError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Order cannot be paid in its current state"


class ProviderError(PaymentError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Payment provider error"

    def __init__(self, provider: str, message: Optional[str] = None) -> None:
        super().__init__(message, {"provider": provider})
        self.provider = provider


class ProviderNotConfigured(ProviderError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, provider: str) -> None:
        super().__init__(provider, f"{provider} is not configured")


class PaymentRecordUnavailable(PaymentError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Payment could not be recorded; please try again"


class WebhookRejected(Exception):
    """A provider callback that must not change any state."""

    reason: str = "rejected"

    def __init__(self, message: str, order_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.order_id = order_id


class MalformedWebhook(WebhookRejected):
    reason = "malformed"


class SignatureInvalid(WebhookRejected):
    reason = "signature"


class UnknownOrder(WebhookRejected):
    reason = "unknown_order"


class WebhookAmountMismatch(WebhookRejected):
    reason = "amount"


class ReferenceConflict(WebhookRejected):
    reason = "reference_conflict"

    def __init__(self, order_id: str, stored_reference: str, inbound_reference: str) -> None:
        super().__init__(
            f"Reference conflict for order {order_id}: stored={stored_reference} inbound={inbound_reference}",
            order_id,
        )
        self.stored_reference = stored_reference
        self.inbound_reference = inbound_reference


class WebhookNotConfigured(WebhookRejected):
    reason = "not_configured"
