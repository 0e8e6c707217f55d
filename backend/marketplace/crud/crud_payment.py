from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from .. import models
from ..models.payment import PaymentRecordStatus

logger = logging.getLogger(__name__)

_TERMINAL = [
    PaymentRecordStatus.PAID.value,
    PaymentRecordStatus.FAILED.value,
    PaymentRecordStatus.CANCELLED.value,
]


def get_by_order(db: Session, order_id: str) -> Optional[models.Payment]:
    return db.query(models.Payment).filter(models.Payment.order_id == order_id).first()


def upsert_for_order(
    db: Session,
    order: models.Order,
    payment_method: str,
    provider_reference: str,
    amount: Decimal,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[models.Payment]:
    """Store the live attempt for ``order``, replacing an unpaid earlier one.

    Returns None when the existing record is already paid; a paid attempt is
    never overwritten.
    """
    existing = get_by_order(db, order.id)
    if existing is None:
        record = models.Payment(
            order_id=order.id,
            payment_method=payment_method,
            provider_reference=provider_reference,
            status=PaymentRecordStatus.PENDING.value,
            amount=amount,
            currency=order.currency,
            provider_metadata=metadata or {},
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    rows = (
        db.query(models.Payment)
        .filter(
            models.Payment.id == existing.id,
            models.Payment.status != PaymentRecordStatus.PAID.value,
        )
        .update(
            {
                models.Payment.payment_method: payment_method,
                models.Payment.provider_reference: provider_reference,
                models.Payment.status: PaymentRecordStatus.PENDING.value,
                models.Payment.amount: amount,
                models.Payment.provider_metadata: metadata or {},
            },
            synchronize_session=False,
        )
    )
    db.commit()
    if rows != 1:
        return None
    logger.info(
        "Replaced payment attempt for order %s: %s -> %s",
        order.id,
        existing.provider_reference,
        provider_reference,
    )
    db.refresh(existing)
    return existing


def create_from_webhook(
    db: Session,
    order: models.Order,
    payment_method: str,
    provider_reference: str,
    amount: Decimal,
    metadata: Optional[Dict[str, Any]] = None,
) -> models.Payment:
    """Create the record a provider callback refers to when initiation never stored it."""
    record = models.Payment(
        order_id=order.id,
        payment_method=payment_method,
        provider_reference=provider_reference,
        status=PaymentRecordStatus.PENDING.value,
        amount=amount,
        currency=order.currency,
        provider_metadata={**(metadata or {}), "created_by": "webhook"},
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def set_status(
    db: Session, order_id: str, provider_reference: str, new_status: str
) -> bool:
    """Move the record matching ``(order_id, provider_reference)`` to ``new_status``.

    ``paid`` applies to any record not already paid; ``failed`` and
    ``cancelled`` only apply to a record that is still pending.
    """
    query = db.query(models.Payment).filter(
        models.Payment.order_id == order_id,
        models.Payment.provider_reference == provider_reference,
    )
    if new_status == PaymentRecordStatus.PAID.value:
        query = query.filter(models.Payment.status != PaymentRecordStatus.PAID.value)
    else:
        query = query.filter(models.Payment.status.notin_(_TERMINAL))
    rows = query.update({models.Payment.status: new_status}, synchronize_session=False)
    db.commit()
    return rows == 1
