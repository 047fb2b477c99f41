from datetime import datetime

from pydantic import BaseModel


class RefreshIn(BaseModel):
    refresh_token: str


class LogoutIn(BaseModel):
    refresh_token: str


class LogoutOut(BaseModel):
    ok: bool = True
    removed: bool


class LogoutAllOut(BaseModel):
    ok: bool = True
    removed: int


class SessionOut(BaseModel):
    id: str
    created_at: datetime | None = None
    expires_at: datetime
    rotated_at: datetime | None = None
