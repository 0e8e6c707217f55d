"""Checkout state machine driven by the storefront.

    IDLE -> INITIATING -> REDIRECTED_TO_PROVIDER | AWAITING_SCAN_PAYMENT
         -> POLLING_RESULT -> SUCCESS | FAILED | TIMED_OUT

A payment attempt may only start from IDLE or FAILED. Retrying after FAILED
pays the same order again. The return-URL status is a hint only; the order's
state is read from the API. The cart is emptied on SUCCESS and nowhere else.
"""

from __future__ import annotations

import enum
import logging
import time
from decimal import Decimal
from typing import Callable, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

from .api import StorefrontAPI, StorefrontAPIError
from .cart import Cart

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_MAX_ATTEMPTS = 30

_FAILED_ORDER_STATUSES = frozenset({"failed", "cancelled"})


class CheckoutState(str, enum.Enum):
    IDLE = "idle"
    INITIATING = "initiating"
    REDIRECTED_TO_PROVIDER = "redirected_to_provider"
    AWAITING_SCAN_PAYMENT = "awaiting_scan_payment"
    POLLING_RESULT = "polling_result"
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class InvalidTransition(Exception):
    pass


class PollTimeout(Exception):
    """Polling gave up before the order settled; the payment may still land."""


def parse_return_url(url: str) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(order_id, status)`` from a provider return URL.

    Both plain query strings and hash-router fragments
    (``/#/checkout?order_id=...``) are understood; the fragment wins.
    """
    parts = urlsplit(url)
    params = parse_qs(parts.query)
    if "?" in parts.fragment:
        params.update(parse_qs(parts.fragment.split("?", 1)[1]))
    order_id = params.get("order_id", [None])[0]
    status = params.get("status", [None])[0]
    return order_id, status


class CheckoutOrchestrator:
    def __init__(
        self,
        api: StorefrontAPI,
        cart: Cart,
        payment_method: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api = api
        self.cart = cart
        self.payment_method = payment_method
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.sleep = sleep

        self.state = CheckoutState.IDLE
        self.order_id: Optional[str] = None
        self.order_total: Optional[Decimal] = None
        self.payment_id: Optional[str] = None
        self.redirect_url: Optional[str] = None
        self.qr_code: Optional[str] = None
        self.return_hint: Optional[str] = None
        self.error: Optional[str] = None
        self.error_kind: Optional[str] = None
        self.attempts = 0
        self.abandoned = False

    # ── Initiation ──────────────────────────────────────────────────────────

    def checkout(
        self,
        description: str = "",
        buyer_email: Optional[str] = None,
        buyer_name: Optional[str] = None,
    ) -> CheckoutState:
        """Create the order (first time only) and start paying for it."""
        self._guard_initiation()
        self.abandoned = False
        if self.order_id is None and self.cart.is_empty:
            raise InvalidTransition("cart is empty")
        self._enter(CheckoutState.INITIATING)

        if self.order_id is None:
            try:
                order = self.api.create_order(self.cart.to_order_items(), self.payment_method)
            except StorefrontAPIError as exc:
                return self._fail(exc)
            self.order_id = order["id"]
            self.order_total = Decimal(str(order["total_amount"]))
            logger.info("Created order %s total=%s", self.order_id, self.order_total)

        return self._initiate(description, buyer_email, buyer_name)

    def retry_payment(
        self,
        description: str = "",
        buyer_email: Optional[str] = None,
        buyer_name: Optional[str] = None,
    ) -> CheckoutState:
        """Pay again for the same order after a failed attempt."""
        if self.state is not CheckoutState.FAILED or self.order_id is None:
            raise InvalidTransition(f"cannot retry payment from {self.state.value}")
        return self.checkout(description, buyer_email, buyer_name)

    def _guard_initiation(self) -> None:
        if self.state not in (CheckoutState.IDLE, CheckoutState.FAILED):
            raise InvalidTransition(f"cannot start a payment from {self.state.value}")

    def _initiate(
        self, description: str, buyer_email: Optional[str], buyer_name: Optional[str]
    ) -> CheckoutState:
        self.error = None
        self.error_kind = None
        try:
            if self.order_total is None:
                order = self.api.get_order(self.order_id)
                self.order_total = Decimal(str(order["total_amount"]))
            handle = self.api.initiate_payment(
                self.payment_method,
                self.order_id,
                self.order_total,
                description=description,
                buyer_email=buyer_email,
                buyer_name=buyer_name,
            )
        except StorefrontAPIError as exc:
            return self._fail(exc)

        self.payment_id = handle.get("paymentId")
        if handle.get("qrCode"):
            self.qr_code = handle["qrCode"]
            return self._enter(CheckoutState.AWAITING_SCAN_PAYMENT)
        self.redirect_url = handle.get("redirectUrl")
        return self._enter(CheckoutState.REDIRECTED_TO_PROVIDER)

    # ── Return / polling ────────────────────────────────────────────────────

    def handle_return(self, url: str) -> CheckoutState:
        """Accept the browser coming back from the provider and start polling.

        A fresh orchestrator (page reload) adopts the order id from the URL.
        """
        order_id, hint = parse_return_url(url)
        if self.order_id is None:
            if not order_id:
                raise InvalidTransition("return URL carries no order_id")
            self.order_id = order_id
        elif order_id and order_id != self.order_id:
            raise InvalidTransition(f"return URL is for order {order_id}, not {self.order_id}")
        if self.state not in (CheckoutState.IDLE, CheckoutState.REDIRECTED_TO_PROVIDER):
            raise InvalidTransition(f"unexpected provider return from {self.state.value}")
        self.return_hint = hint
        self.abandoned = False
        logger.info("Returned from provider for order %s (hint=%s)", self.order_id, hint)
        return self._enter(CheckoutState.POLLING_RESULT)

    def poll(self, raise_on_timeout: bool = False) -> CheckoutState:
        """Read the order status until it settles or the attempt budget runs out.

        Calling again after TIMED_OUT starts a fresh budget ("check back later").
        """
        if self.state not in (
            CheckoutState.POLLING_RESULT,
            CheckoutState.AWAITING_SCAN_PAYMENT,
            CheckoutState.REDIRECTED_TO_PROVIDER,
            CheckoutState.TIMED_OUT,
        ):
            raise InvalidTransition(f"cannot poll from {self.state.value}")
        self._enter(CheckoutState.POLLING_RESULT)
        self.attempts = 0
        self.abandoned = False

        while self.attempts < self.max_attempts:
            if self.abandoned:
                logger.info("Polling for order %s abandoned", self.order_id)
                return self.state
            self.attempts += 1
            try:
                snapshot = self.api.get_order_status(self.order_id)
            except StorefrontAPIError as exc:
                if not exc.is_transient:
                    return self._fail(exc)
                logger.warning(
                    "Status poll %d for order %s failed: %s", self.attempts, self.order_id, exc
                )
                snapshot = None

            if snapshot is not None:
                if snapshot.get("payment_status") == "paid":
                    return self._succeed()
                if snapshot.get("status") in _FAILED_ORDER_STATUSES:
                    self.error = "Payment was not completed. You can try again."
                    self.error_kind = "PaymentFailed"
                    return self._enter(CheckoutState.FAILED)

            if self.attempts < self.max_attempts:
                self.sleep(self.poll_interval)

        # The webhook may still land later; nothing is changed server-side
        self._enter(CheckoutState.TIMED_OUT)
        logger.info("Order %s still unsettled after %d polls", self.order_id, self.attempts)
        if raise_on_timeout:
            raise PollTimeout(
                f"Payment for order {self.order_id} is still processing; check back later"
            )
        return self.state

    def abandon(self) -> None:
        """Stop the current poll loop (user navigated away). Nothing is sent to the server."""
        self.abandoned = True

    # ── Helpers ─────────────────────────────────────────────────────────────

    def _enter(self, state: CheckoutState) -> CheckoutState:
        logger.debug("Checkout %s: %s -> %s", self.order_id, self.state.value, state.value)
        self.state = state
        return state

    def _fail(self, exc: StorefrontAPIError) -> CheckoutState:
        self.error = exc.message
        self.error_kind = exc.kind
        logger.warning("Checkout for order %s failed (%s): %s", self.order_id, exc.kind, exc.message)
        return self._enter(CheckoutState.FAILED)

    def _succeed(self) -> CheckoutState:
        self.cart.clear()
        return self._enter(CheckoutState.SUCCESS)
