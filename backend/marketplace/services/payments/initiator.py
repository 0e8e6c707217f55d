from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...core.config import Settings
from ...crud import crud_order, crud_payment
from ...models import Order, User
from ...models.order import PaymentStatus
from ...schemas.payment import PaymentInitiateRequest
from ...utils.metrics import incr as metrics_incr
from .errors import (
    AmountMismatch,
    Forbidden,
    OrderNotFound,
    OrderNotPayable,
    PaymentRecordUnavailable,
    Unauthenticated,
)
from .providers.base import PaymentGateway, PaymentHandle, to_cents

logger = logging.getLogger(__name__)


@dataclass
class InitiationResult:
    order_id: str
    provider: str
    handle: PaymentHandle


class PaymentInitiator:
    """Start a payment attempt for an existing order with one provider.

    Every call re-validates the caller, the order and the amount from the
    Order Store before the provider is contacted, so a failed attempt can be
    retried by simply calling ``initiate`` again.
    """

    def __init__(self, db: Session, gateway: PaymentGateway, settings: Settings) -> None:
        self.db = db
        self.gateway = gateway
        self.settings = settings

    def initiate(
        self, request: PaymentInitiateRequest, buyer: Optional[User]
    ) -> InitiationResult:
        provider = self.gateway.name
        if buyer is None:
            logger.warning("Unauthenticated %s initiation for order %s", provider, request.order_id)
            raise Unauthenticated()

        order = crud_order.get_order(self.db, request.order_id)
        if order is None:
            logger.warning("Order %s not found for %s initiation", request.order_id, provider)
            raise OrderNotFound(request.order_id)

        if order.buyer_id != buyer.id:
            logger.warning(
                "User %s attempted %s payment for order %s owned by %s",
                buyer.id,
                provider,
                order.id,
                order.buyer_id,
            )
            raise Forbidden()

        expected = crud_order.money(order.total_amount)
        claimed = Decimal(request.amount)
        if abs(claimed - expected) > self.settings.AMOUNT_EPSILON:
            logger.warning(
                "Amount mismatch for order %s: claimed=%s expected=%s",
                order.id,
                claimed,
                expected,
            )
            metrics_incr("payments.initiate.amount_mismatch", tags={"provider": provider})
            raise AmountMismatch(claimed, expected)

        self._ensure_payable(order)

        handle = self.gateway.create_payment(order, to_cents(expected), request, buyer)
        logger.info(
            "Minted %s payment %s for order %s amount=%s",
            provider,
            handle.provider_reference,
            order.id,
            expected,
        )

        self._record_attempt(order, handle, expected)
        self._mark_in_flight(order)
        metrics_incr("payments.initiate.success", tags={"provider": provider})
        return InitiationResult(order_id=order.id, provider=provider, handle=handle)

    def _ensure_payable(self, order: Order) -> None:
        if order.payment_status == PaymentStatus.PAID.value:
            logger.warning("Duplicate payment attempt for paid order %s", order.id)
            raise OrderNotPayable("Order is already paid", {"order": "paid"})
        if order.status not in crud_order.PAYABLE_STATUSES:
            logger.warning("Order %s is %s and cannot be paid", order.id, order.status)
            raise OrderNotPayable(f"Order is {order.status}", {"order": order.status})

    def _record_attempt(self, order: Order, handle: PaymentHandle, amount: Decimal) -> None:
        try:
            record = crud_payment.upsert_for_order(
                self.db,
                order,
                payment_method=self.gateway.name,
                provider_reference=handle.provider_reference,
                amount=amount,
                metadata=handle.metadata,
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(
                "Failed to store payment record for order %s (reference %s)",
                order.id,
                handle.provider_reference,
                exc_info=True,
            )
            metrics_incr("payments.initiate.record_failed", tags={"provider": self.gateway.name})
            if self.settings.STRICT_PAYMENT_RECORD:
                raise PaymentRecordUnavailable() from exc
            # The webhook recreates the record from its own reference
            return
        if record is None:
            logger.warning("Order %s was paid while a new attempt was being minted", order.id)
            raise OrderNotPayable("Order is already paid", {"order": "paid"})

    def _mark_in_flight(self, order: Order) -> None:
        try:
            changed = crud_order.mark_in_flight(self.db, order.id, self.gateway.name)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error("Failed to mark order %s as awaiting payment", order.id, exc_info=True)
            return
        if not changed:
            logger.info("Order %s left unchanged by in-flight marker", order.id)
