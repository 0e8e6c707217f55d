from typing import Optional

from fastapi import Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
from jose import JWTError, jwt

from ..database import get_db
from ..core.config import Settings, settings as app_settings
from ..crud import crud_user
from ..models.user import User
from ..services.payments.providers import CardLinkGateway, FormPayGateway, QRPayGateway
from .auth import oauth2_scheme, SECRET_KEY, ALGORITHM


def _user_from_token(token: Optional[str], db: Session) -> Optional[User]:
    if not token:
        return None
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    email = payload.get("sub")
    if not email:
        return None
    user = crud_user.get_user_by_email(db, email)
    if user is None or not user.is_active:
        return None
    return user


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db), request: Request = None) -> User:
    jwt_token = token or (request.cookies.get("access_token") if request else None)
    user = _user_from_token(jwt_token, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_current_user_optional(
    token: str = Depends(oauth2_scheme), db: Session = Depends(get_db), request: Request = None
) -> Optional[User]:
    """Resolve the caller if a valid token is present; None otherwise.

    Payment initiation runs its own authentication step, so it takes the
    caller through this dependency instead of failing in FastAPI.
    """
    jwt_token = token or (request.cookies.get("access_token") if request else None)
    return _user_from_token(jwt_token, db)


def get_settings() -> Settings:
    return app_settings


# Gateways are built per request from the settings dependency so tests can
# swap credentials or whole gateways through ``app.dependency_overrides``.
def get_cardlink_gateway(cfg: Settings = Depends(get_settings)) -> CardLinkGateway:
    return CardLinkGateway(cfg)


def get_qrpay_gateway(cfg: Settings = Depends(get_settings)) -> QRPayGateway:
    return QRPayGateway(cfg)


def get_formpay_gateway(cfg: Settings = Depends(get_settings)) -> FormPayGateway:
    return FormPayGateway(cfg)
