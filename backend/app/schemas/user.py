# backend/app/schemas/user.py
from typing import Optional
from pydantic import BaseModel, EmailStr


class UserBase(BaseModel):
    id: int
    name: str
    email: EmailStr
    phone: Optional[str] = None
    role: str

    # Pydantic v2 style (replaces orm_mode = True)
    model_config = {"from_attributes": True}


class UserOut(UserBase):
    """
    Public-facing user data. Payment provider ids stay server side; only
    whether the owner can receive payouts is exposed.
    """

    payouts_enabled: bool = False

    @classmethod
    def from_user(cls, user) -> "UserOut":
        out = cls.model_validate(user)
        out.payouts_enabled = bool(user.stripe_connect_id)
        return out
