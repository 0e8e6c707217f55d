from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from sqlalchemy.orm import Session, selectinload

from .. import models, schemas
from ..models.order import OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")

# Orders in these states may (re)start a payment attempt
PAYABLE_STATUSES = frozenset(
    {
        OrderStatus.PENDING.value,
        OrderStatus.PENDING_PAYMENT.value,
        OrderStatus.FAILED.value,
    }
)


def money(value: Decimal) -> Decimal:
    """Round a ZAR amount to cents, half-up."""
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def create_order_with_items(
    db: Session,
    buyer_id: int,
    order_in: schemas.OrderCreate,
    commission_rate: Decimal,
    currency: str = "ZAR",
) -> models.Order:
    """Insert an order and all of its lines in one transaction.

    Line totals, commission and the order total are computed here from the
    submitted unit prices; nothing downstream ever re-derives them.
    """
    order = models.Order(
        buyer_id=buyer_id,
        currency=currency,
        status=OrderStatus.PENDING.value,
        payment_status=PaymentStatus.UNPAID.value,
        payment_method=order_in.payment_method.value,
    )
    total = Decimal("0")
    commission_total = Decimal("0")
    for line in order_in.items:
        item_total = money(line.unit_price * line.quantity)
        commission = money(item_total * commission_rate)
        total += item_total
        commission_total += commission
        order.items.append(
            models.OrderItem(
                product_id=line.product_id,
                seller_store_id=line.seller_store_id,
                product_name=line.product_name,
                quantity=line.quantity,
                unit_price=money(line.unit_price),
                item_total=item_total,
                commission_amount=commission,
            )
        )
    order.total_amount = money(total)
    order.total_commission = money(commission_total)
    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info(
        "Created order %s for buyer %s total=%s items=%d",
        order.id,
        buyer_id,
        order.total_amount,
        len(order.items),
    )
    return order


def get_order(db: Session, order_id: str) -> Optional[models.Order]:
    return db.query(models.Order).filter(models.Order.id == order_id).first()


def get_orders_by_buyer(
    db: Session, buyer_id: int, skip: int = 0, limit: int = 100
) -> List[models.Order]:
    return (
        db.query(models.Order)
        .options(selectinload(models.Order.items))
        .filter(models.Order.buyer_id == buyer_id)
        .order_by(models.Order.created_at.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


# ─── Conditional state transitions ────────────────────────────────────────────
# Each helper is a single UPDATE ... WHERE id = :id AND <predicate on current
# state>; the returned bool says whether this call changed the row. A False
# result is the normal outcome for a duplicate or late callback.


def mark_in_flight(db: Session, order_id: str, payment_method: str) -> bool:
    rows = (
        db.query(models.Order)
        .filter(
            models.Order.id == order_id,
            models.Order.payment_status != PaymentStatus.PAID.value,
            models.Order.status.in_(PAYABLE_STATUSES),
        )
        .update(
            {
                models.Order.status: OrderStatus.PENDING_PAYMENT.value,
                models.Order.payment_status: PaymentStatus.PENDING.value,
                models.Order.payment_method: payment_method,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return rows == 1


def mark_paid(db: Session, order_id: str) -> bool:
    rows = (
        db.query(models.Order)
        .filter(
            models.Order.id == order_id,
            models.Order.payment_status != PaymentStatus.PAID.value,
        )
        .update(
            {
                models.Order.payment_status: PaymentStatus.PAID.value,
                models.Order.status: OrderStatus.PROCESSING.value,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return rows == 1


def mark_failed(db: Session, order_id: str, policy: str = "retry") -> bool:
    """Record a failed or cancelled provider outcome on the order.

    ``retry`` leaves the order payable again (status ``failed``); ``cancel``
    closes it (status ``cancelled``). Paid orders are never touched.
    """
    new_status = (
        OrderStatus.CANCELLED.value if policy == "cancel" else OrderStatus.FAILED.value
    )
    rows = (
        db.query(models.Order)
        .filter(
            models.Order.id == order_id,
            models.Order.payment_status.notin_(
                [PaymentStatus.PAID.value, PaymentStatus.FAILED.value]
            ),
        )
        .update(
            {
                models.Order.payment_status: PaymentStatus.FAILED.value,
                models.Order.status: new_status,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return rows == 1
