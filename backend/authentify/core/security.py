import hashlib
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import bcrypt
from jose import jwt

from authentify.core.config import settings

ALGO = "HS256"

# bcrypt only consumes the first 72 bytes of its input
BCRYPT_MAX_BYTES = 72

def now_utc() -> datetime:
    return datetime.now(timezone.utc)

@dataclass(frozen=True)
class PasswordCheck:
    valid: bool
    reason: str | None = None

def hash_password(password: str) -> str:
    raw = password.encode("utf-8")
    return bcrypt.hashpw(raw, bcrypt.gensalt()).decode("utf-8")

def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except Exception:
        return False

def validate_password_strength(password: str, min_length: int | None = None) -> PasswordCheck:
    minimum = settings.PASSWORD_MIN_LENGTH if min_length is None else min_length
    if len(password or "") < minimum:
        return PasswordCheck(False, f"Password must be at least {minimum} characters long")
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        return PasswordCheck(False, f"Password must be at most {BCRYPT_MAX_BYTES} bytes long")
    if not re.search(r"[a-z]", password):
        return PasswordCheck(False, "Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        return PasswordCheck(False, "Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        return PasswordCheck(False, "Password must contain at least one number")
    return PasswordCheck(True)

def identity_commitment(username: str, password: str) -> str:
    # The ledger compares password hashes by equality, so this must be deterministic.
    raw = (settings.IDENTITY_PEPPER + ":identity:" + username.strip().lower() + ":" + password).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()

def social_id_hash(provider: str, social_id: str) -> str:
    raw = (settings.IDENTITY_PEPPER + ":social:" + provider.strip().lower() + ":" + social_id.strip()).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()

def hash_token(token: str) -> str:
    raw = (settings.JWT_REFRESH_SECRET + ":" + token).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()

def sign_token(claims: dict, secret: str, ttl: timedelta) -> str:
    now = now_utc()
    payload = dict(claims)
    payload["iat"] = now
    payload["exp"] = now + ttl
    # Two tokens minted in the same second from the same claims must still differ
    payload["jti"] = uuid4().hex
    return jwt.encode(payload, secret, algorithm=ALGO)

def decode_token(token: str, secret: str) -> dict:
    return jwt.decode(token, secret, algorithms=[ALGO])
