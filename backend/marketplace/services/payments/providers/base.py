from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlencode

from ....core.config import Settings
from ....models import Order, User
from ....schemas.payment import PaymentInitiateRequest
from ..outcomes import ProviderOutcome

logger = logging.getLogger(__name__)


@dataclass
class PaymentHandle:
    """What the buyer needs to go and pay, plus the reference we pin."""

    provider_reference: str
    redirect_url: Optional[str] = None
    qr_payload: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(ABC):
    """One external payment provider.

    Gateways are built per request from a ``Settings`` instance and hold no
    state of their own between calls.
    """

    name: str = ""
    reference_prefix: str = ""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.timeout = settings.PROVIDER_TIMEOUT_SECONDS

    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    def create_payment(
        self,
        order: Order,
        amount_cents: int,
        request: PaymentInitiateRequest,
        buyer: User,
    ) -> PaymentHandle:
        """Mint a redirect URL or QR payload for ``order``.

        Raises ``ProviderError`` on any upstream failure, timeouts included.
        """

    @abstractmethod
    def parse_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> ProviderOutcome:
        """Verify an inbound callback and resolve it to a ``ProviderOutcome``.

        Raises a ``WebhookRejected`` subclass when the callback is not genuine
        or cannot be tied to exactly one order.
        """

    def return_url(self, order_id: str, status: str) -> str:
        """Storefront URL the provider sends the browser back to."""
        query = urlencode({"order_id": order_id, "status": status})
        return f"{self.settings.SITE_URL}/#/checkout?{query}"


def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def mint_reference(prefix: str, order_id: str, now_ms: Optional[int] = None) -> str:
    """Build a self-describing reference ``{prefix}-{order_id}-{ms}``."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{prefix}-{order_id}-{now_ms}"


def parse_reference(prefix: str, reference: str) -> Optional[Tuple[str, int]]:
    """Return ``(order_id, ms)`` from a reference minted by ``mint_reference``.

    Order ids contain hyphens, so the timestamp is split off the right.
    """
    head = f"{prefix}-"
    if not reference or not reference.startswith(head):
        return None
    order_id, sep, stamp = reference[len(head):].rpartition("-")
    if not sep or not order_id or not stamp.isdigit():
        return None
    return order_id, int(stamp)


def hmac_sha256_matches(secret: str, message: bytes, received: str) -> bool:
    """Constant-time check of ``received`` against HMAC-SHA256(secret, message).

    Providers send the digest hex- or base64-encoded; both are accepted.
    """
    if not received:
        return False
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()
    received = received.strip()
    hex_ok = hmac.compare_digest(digest.hex().encode(), received.lower().encode())
    b64_ok = hmac.compare_digest(base64.b64encode(digest), received.encode())
    return hex_ok or b64_ok


def header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup that also works on plain dicts."""
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, val in headers.items():
        if key.lower() == lowered:
            return val
    return None


def parse_cents(value: Any) -> Optional[int]:
    """Coerce a provider amount-in-cents to int; None for absent, ValueError for junk."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("boolean amount")
    if isinstance(value, int):
        return value
    try:
        as_decimal = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {value!r}") from exc
    if not as_decimal.is_finite():
        raise ValueError(f"non-finite amount: {value!r}")
    if as_decimal != as_decimal.to_integral_value():
        raise ValueError(f"fractional cents: {value}")
    return int(as_decimal)
