from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
import logging

from .. import schemas
from ..core.config import Settings
from ..crud import crud_order
from ..models import User
from ..utils import error_response
from .dependencies import get_current_user, get_db, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["orders"])


def _owned_order_or_error(db: Session, order_id: str, current_user: User):
    order = crud_order.get_order(db, order_id)
    if order is None:
        raise error_response("Order not found", {"order_id": "not_found"}, status.HTTP_404_NOT_FOUND)
    if order.buyer_id != current_user.id:
        logger.warning("User %s attempted to read order %s", current_user.id, order_id)
        raise error_response("Forbidden", {}, status.HTTP_403_FORBIDDEN)
    return order


@router.post("/", response_model=schemas.OrderResponse, status_code=status.HTTP_201_CREATED)
def create_order(
    order_in: schemas.OrderCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    cfg: Settings = Depends(get_settings),
):
    """Create an order and its line items in one go; totals are computed server-side."""
    return crud_order.create_order_with_items(
        db,
        buyer_id=current_user.id,
        order_in=order_in,
        commission_rate=cfg.COMMISSION_RATE,
        currency=cfg.DEFAULT_CURRENCY,
    )


@router.get("/", response_model=List[schemas.OrderResponse])
def list_my_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return crud_order.get_orders_by_buyer(db, current_user.id, skip=skip, limit=limit)


@router.get("/{order_id}", response_model=schemas.OrderResponse)
def read_order(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _owned_order_or_error(db, order_id, current_user)


@router.get("/{order_id}/status", response_model=schemas.OrderStatusResponse)
def read_order_status(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Polling endpoint: the storefront reads this until the order settles."""
    order = _owned_order_or_error(db, order_id, current_user)
    return schemas.OrderStatusResponse(
        order_id=order.id,
        status=order.status,
        payment_status=order.payment_status,
        payment_method=order.payment_method,
    )
