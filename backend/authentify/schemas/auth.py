from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator


def looks_like_email(value: str) -> bool:
    v = value.strip()
    return "@" in v and "." in v.split("@")[-1]


class EmailIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=254, examples=["user@example.com"])

    @model_validator(mode="after")
    def validate_email(self):
        if not looks_like_email(self.email):
            raise ValueError("Invalid email")
        return self


class RegisterIn(EmailIn):
    password: str = Field(..., min_length=1, max_length=128)
    wallet_address: str | None = Field(default=None, max_length=64)


class LoginIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=1, max_length=128)


class TokenOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    id: str
    email: str
    wallet_address: str | None = None
    created_at: datetime | None = None
    last_login_at: datetime | None = None


class AuthOut(BaseModel):
    user: UserOut
    tokens: TokenOut
    mode: Literal["password", "biometric", "chain", "fallback"] = "password"
    transaction_hash: str | None = None


class PasswordChangeIn(BaseModel):
    current_password: str = Field(default="", max_length=128)
    new_password: str = Field(..., min_length=1, max_length=128)


class PasswordChangeOut(BaseModel):
    ok: bool = True
    sessions_revoked: int


class WalletUpdateIn(BaseModel):
    wallet_address: str = Field(..., min_length=1, max_length=64)


class SimpleOKOut(BaseModel):
    ok: bool = True


class PasswordResetRequestIn(EmailIn):
    pass


class PasswordResetRequestOut(BaseModel):
    ok: bool = True
    reset_token: str | None = None


class PasswordResetConfirmIn(BaseModel):
    token: str = Field(..., min_length=1, max_length=2048)
    new_password: str = Field(..., min_length=1, max_length=128)
