from __future__ import annotations

import enum
import logging
from typing import Mapping

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...core.config import Settings
from ...crud import crud_order, crud_payment
from ...models import Order, Payment
from ...models.payment import PaymentRecordStatus
from ...utils.metrics import incr as metrics_incr
from .errors import ReferenceConflict, UnknownOrder, WebhookAmountMismatch
from .outcomes import Outcome, ProviderOutcome
from .providers.base import PaymentGateway, to_cents

logger = logging.getLogger(__name__)


class ReconcileResult(str, enum.Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


class WebhookReconciler:
    """Verify one provider callback and fold it into the order's state.

    Rejections surface as ``WebhookRejected`` subclasses; the caller decides
    how to acknowledge them. Applying the same outcome twice is a no-op.
    """

    def __init__(self, db: Session, gateway: PaymentGateway, settings: Settings) -> None:
        self.db = db
        self.gateway = gateway
        self.settings = settings

    def handle(self, raw_body: bytes, headers: Mapping[str, str]) -> ReconcileResult:
        outcome = self.gateway.parse_webhook(raw_body, headers)
        return self.reconcile(outcome)

    def reconcile(self, outcome: ProviderOutcome) -> ReconcileResult:
        order = crud_order.get_order(self.db, outcome.order_id)
        if order is None:
            raise UnknownOrder(
                f"{outcome.provider} callback for unknown order {outcome.order_id}",
                outcome.order_id,
            )

        if outcome.amount_cents is not None:
            expected_cents = to_cents(order.total_amount)
            if outcome.amount_cents != expected_cents:
                raise WebhookAmountMismatch(
                    f"{outcome.provider} amount {outcome.amount_cents} != order total "
                    f"{expected_cents} for order {order.id}",
                    order.id,
                )

        record = crud_payment.get_by_order(self.db, order.id)
        if record is None:
            record = self._create_missing_record(order, outcome)

        if record.provider_reference != outcome.provider_reference:
            logger.error(
                "Payment reference conflict for order %s: stored=%s inbound=%s provider=%s",
                order.id,
                record.provider_reference,
                outcome.provider_reference,
                outcome.provider,
            )
            raise ReferenceConflict(order.id, record.provider_reference, outcome.provider_reference)

        if not outcome.is_terminal:
            logger.warning(
                "Ignoring %s status %r for order %s (reference %s)",
                outcome.provider,
                outcome.raw_status,
                order.id,
                outcome.provider_reference,
            )
            metrics_incr("payments.webhook.ignored", tags={"provider": outcome.provider})
            return ReconcileResult.IGNORED

        return self._apply(order, outcome)

    def _create_missing_record(self, order: Order, outcome: ProviderOutcome) -> Payment:
        logger.warning(
            "No payment record for order %s; creating from %s callback %s",
            order.id,
            outcome.provider,
            outcome.provider_reference,
        )
        try:
            return crud_payment.create_from_webhook(
                self.db,
                order,
                payment_method=outcome.provider,
                provider_reference=outcome.provider_reference,
                amount=order.total_amount,
                metadata={"rawStatus": outcome.raw_status},
            )
        except IntegrityError:
            # A concurrent delivery created it first
            self.db.rollback()
            record = crud_payment.get_by_order(self.db, order.id)
            if record is None:
                raise
            return record

    def _apply(self, order: Order, outcome: ProviderOutcome) -> ReconcileResult:
        if outcome.outcome is Outcome.PAID:
            record_changed = crud_payment.set_status(
                self.db, order.id, outcome.provider_reference, PaymentRecordStatus.PAID.value
            )
            order_changed = crud_order.mark_paid(self.db, order.id)
        else:
            record_status = (
                PaymentRecordStatus.CANCELLED.value
                if outcome.outcome is Outcome.CANCELLED
                else PaymentRecordStatus.FAILED.value
            )
            record_changed = crud_payment.set_status(
                self.db, order.id, outcome.provider_reference, record_status
            )
            order_changed = crud_order.mark_failed(
                self.db, order.id, self.settings.FAILED_PAYMENT_POLICY
            )

        result = (
            ReconcileResult.APPLIED
            if (record_changed or order_changed)
            else ReconcileResult.DUPLICATE
        )
        logger.info(
            "%s %s outcome %s for order %s (reference %s)",
            outcome.provider,
            result.value,
            outcome.outcome.value,
            order.id,
            outcome.provider_reference,
        )
        metrics_incr(
            f"payments.webhook.{result.value}",
            tags={"provider": outcome.provider, "outcome": outcome.outcome.value},
        )
        return result
