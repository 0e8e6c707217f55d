from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import models, schemas
from ..utils.auth import get_password_hash, normalize_email


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return (
        db.query(models.User)
        .filter(func.lower(models.User.email) == normalize_email(email))
        .first()
    )


def create_user(db: Session, user_in: schemas.UserCreate) -> models.User:
    db_user = models.User(
        email=normalize_email(user_in.email),
        password=get_password_hash(user_in.password),
        first_name=user_in.first_name,
        last_name=user_in.last_name,
        user_type=user_in.user_type,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user
