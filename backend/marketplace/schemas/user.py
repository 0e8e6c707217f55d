# backend/marketplace/schemas/user.py

from pydantic import BaseModel, EmailStr, Field

from ..models.user import UserType


class UserBase(BaseModel):
    email: EmailStr
    first_name: str
    last_name: str
    # Self-registration only creates buyers and sellers; admins are seeded.
    user_type: UserType = UserType.BUYER


class UserCreate(UserBase):
    password: str = Field(min_length=8)


class UserResponse(UserBase):
    id: int
    is_active: bool

    model_config = {
        "from_attributes": True
    }


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
