# backend/marketplace/models/user.py

from sqlalchemy import Boolean, Column, Integer, String, Enum
from sqlalchemy.orm import relationship
from .base import BaseModel
import enum


class UserType(str, enum.Enum):
    """Enumeration of all supported user roles."""

    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"


class User(BaseModel):
    __tablename__ = "users"

    id         = Column(Integer, primary_key=True, index=True)
    email      = Column(String, unique=True, index=True, nullable=False)
    password   = Column(String, nullable=False)
    first_name = Column(String, nullable=False)
    last_name  = Column(String, nullable=False)
    user_type  = Column(Enum(UserType), nullable=False, default=UserType.BUYER)
    is_active  = Column(Boolean, default=True)

    # ↔–↔ All orders placed by this user as a buyer
    orders = relationship(
        "Order",
        back_populates="buyer",
        order_by="Order.created_at.desc()",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
