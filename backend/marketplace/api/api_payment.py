from typing import Mapping, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from .. import schemas
from ..core.config import Settings
from ..crud import crud_order, crud_payment
from ..models import User
from ..services.payments import (
    MalformedWebhook,
    PaymentError,
    PaymentInitiator,
    WebhookReconciler,
    WebhookRejected,
)
from ..services.payments.providers import (
    CardLinkGateway,
    FormPayGateway,
    PaymentGateway,
    QRPayGateway,
)
from ..utils import error_response
from ..utils.metrics import Timer, incr as metrics_incr
from .dependencies import (
    get_cardlink_gateway,
    get_current_user,
    get_current_user_optional,
    get_db,
    get_formpay_gateway,
    get_qrpay_gateway,
    get_settings,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])

# Payment invariants:
# - The charge is always the stored order total; the client amount is only
#   compared against it.
# - A callback is applied only if its reference matches the one stored at
#   initiation for that order.
# - Webhooks answer 200 for every business-level rejection so providers do
#   not retry them; only malformed bodies get a 400.


def _initiate(
    gateway: PaymentGateway,
    payment_in: schemas.PaymentInitiateRequest,
    db: Session,
    current_user: Optional[User],
    cfg: Settings,
) -> schemas.PaymentInitiateResponse:
    logger.info("Process %s payment init for order %s", gateway.name, payment_in.order_id)
    initiator = PaymentInitiator(db, gateway, cfg)
    try:
        result = initiator.initiate(payment_in, current_user)
    except PaymentError as exc:
        metrics_incr("payments.initiate.error", tags={"provider": gateway.name, "error": type(exc).__name__})
        raise error_response(exc.message, exc.field_errors, exc.status_code)
    return schemas.PaymentInitiateResponse(
        success=True,
        order_id=result.order_id,
        payment_id=result.handle.provider_reference,
        provider=result.provider,
        redirect_url=result.handle.redirect_url,
        qr_code=result.handle.qr_payload,
    )


@router.post(
    "/cardlink/initiate",
    response_model=schemas.PaymentInitiateResponse,
    response_model_exclude_none=True,
)
def initiate_cardlink(
    payment_in: schemas.PaymentInitiateRequest,
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(get_current_user_optional),
    gateway: CardLinkGateway = Depends(get_cardlink_gateway),
    cfg: Settings = Depends(get_settings),
):
    """Create a CardLink checkout link and return the URL to redirect to."""
    return _initiate(gateway, payment_in, db, current_user, cfg)


@router.post(
    "/qrpay/initiate",
    response_model=schemas.PaymentInitiateResponse,
    response_model_exclude_none=True,
)
def initiate_qrpay(
    payment_in: schemas.PaymentInitiateRequest,
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(get_current_user_optional),
    gateway: QRPayGateway = Depends(get_qrpay_gateway),
    cfg: Settings = Depends(get_settings),
):
    """Mint a QRPay reference and the QR payload to render."""
    return _initiate(gateway, payment_in, db, current_user, cfg)


@router.post(
    "/formpay/initiate",
    response_model=schemas.PaymentInitiateResponse,
    response_model_exclude_none=True,
)
def initiate_formpay(
    payment_in: schemas.PaymentInitiateRequest,
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(get_current_user_optional),
    gateway: FormPayGateway = Depends(get_formpay_gateway),
    cfg: Settings = Depends(get_settings),
):
    """Build the signed FormPay redirect URL."""
    return _initiate(gateway, payment_in, db, current_user, cfg)


def _reconcile(
    db: Session,
    gateway: PaymentGateway,
    cfg: Settings,
    raw: bytes,
    headers: Mapping[str, str],
):
    reconciler = WebhookReconciler(db, gateway, cfg)
    try:
        with Timer("payments.webhook.ms", tags={"provider": gateway.name}):
            reconciler.handle(raw, headers)
    except MalformedWebhook as exc:
        logger.warning("%s webhook malformed: %s", gateway.name, exc)
        metrics_incr("payments.webhook.rejected", tags={"provider": gateway.name, "reason": exc.reason})
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": "malformed"},
        )
    except WebhookRejected as exc:
        # Reference conflicts are logged at error by the reconciler itself
        logger.warning("%s webhook rejected (%s): %s", gateway.name, exc.reason, exc)
        metrics_incr("payments.webhook.rejected", tags={"provider": gateway.name, "reason": exc.reason})
        return {"success": True}
    except SQLAlchemyError:
        db.rollback()
        logger.exception("%s webhook could not be stored; asking provider to retry", gateway.name)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"success": False, "error": "unavailable"},
        )
    return {"success": True}


@router.post("/cardlink/webhook")
async def cardlink_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: CardLinkGateway = Depends(get_cardlink_gateway),
    cfg: Settings = Depends(get_settings),
):
    """Handle CardLink payment events (HMAC-SHA256 signed)."""
    raw = await request.body()
    return _reconcile(db, gateway, cfg, raw, request.headers)


@router.post("/qrpay/webhook")
async def qrpay_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: QRPayGateway = Depends(get_qrpay_gateway),
    cfg: Settings = Depends(get_settings),
):
    """Handle QRPay payment callbacks (merchant id and amount cross-checked)."""
    raw = await request.body()
    return _reconcile(db, gateway, cfg, raw, request.headers)


@router.post("/formpay/notify")
async def formpay_notify(
    request: Request,
    db: Session = Depends(get_db),
    gateway: FormPayGateway = Depends(get_formpay_gateway),
    cfg: Settings = Depends(get_settings),
):
    """Handle FormPay payment notifications (form-encoded, MD5 signed)."""
    raw = await request.body()
    return _reconcile(db, gateway, cfg, raw, request.headers)


@router.get("/{order_id}", response_model=schemas.PaymentRecordResponse)
def read_payment_record(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Return the live payment attempt for one of the caller's orders."""
    order = crud_order.get_order(db, order_id)
    if order is None:
        raise error_response("Order not found", {"order_id": "not_found"}, status.HTTP_404_NOT_FOUND)
    if order.buyer_id != current_user.id:
        raise error_response("Forbidden", {}, status.HTTP_403_FORBIDDEN)
    record = crud_payment.get_by_order(db, order_id)
    if record is None:
        raise error_response("No payment for this order", {"payment": "not_found"}, status.HTTP_404_NOT_FOUND)
    return record
