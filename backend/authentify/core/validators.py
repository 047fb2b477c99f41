import re

from authentify.core.config import settings
from authentify.core.errors import ValidationFailed

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
# SS58 addresses are base58 strings of 47-48 characters
_SS58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{47,48}$")
_USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{3,32}$")
_BASE64URL_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def looks_like_email(value: str) -> bool:
    return bool(_EMAIL_RE.match((value or "").strip()))


def normalize_email(email: str | None) -> str:
    raw = (email or "").strip().lower()
    if not looks_like_email(raw):
        raise ValidationFailed("Invalid email format")
    return raw


def is_valid_address(address: str | None) -> bool:
    return bool(_SS58_RE.match(address or ""))


def normalize_wallet_address(address: str | None) -> str | None:
    if address is None or not address.strip():
        return None
    value = address.strip()
    if not is_valid_address(value):
        raise ValidationFailed("Invalid wallet address")
    return value


def normalize_username(username: str | None) -> str:
    value = (username or "").strip()
    if not _USERNAME_RE.match(value):
        raise ValidationFailed("Username must be 3-32 characters of letters, digits or underscore")
    return value


def is_base64url(value) -> bool:
    return isinstance(value, str) and bool(_BASE64URL_RE.match(value))


def placeholder_email(username: str) -> str:
    return f"{username.strip().lower()}@{settings.FALLBACK_EMAIL_DOMAIN}"
