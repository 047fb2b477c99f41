from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

import sqlalchemy as sa
from jose import ExpiredSignatureError, JWTError
from sqlalchemy.orm import Session

from authentify.core.config import settings
from authentify.core.errors import InvalidToken, SessionNotFound, TokenExpired
from authentify.core.security import decode_token, hash_token, now_utc, sign_token
from authentify.models.auth_session import AuthSession
from authentify.services.users import as_uuid

logger = logging.getLogger("authentify.sessions")


@dataclass(frozen=True)
class TokenPayload:
    user_id: str
    email: str
    wallet_address: str | None = None

    def to_claims(self, token_type: str) -> dict:
        claims = {"sub": self.user_id, "email": self.email, "type": token_type}
        if self.wallet_address:
            claims["wallet"] = self.wallet_address
        return claims

    @classmethod
    def from_claims(cls, claims: dict) -> "TokenPayload":
        return cls(user_id=str(claims["sub"]), email=claims.get("email") or "", wallet_address=claims.get("wallet"))


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class SessionManager:
    def __init__(
        self,
        *,
        access_secret: str | None = None,
        refresh_secret: str | None = None,
        access_ttl: timedelta | None = None,
        refresh_ttl: timedelta | None = None,
        session_ttl: timedelta | None = None,
        reset_ttl: timedelta | None = None,
    ):
        self.access_secret = access_secret or settings.JWT_SECRET
        self.refresh_secret = refresh_secret or settings.JWT_REFRESH_SECRET
        self.access_ttl = access_ttl or timedelta(minutes=settings.JWT_ACCESS_MINUTES)
        self.refresh_ttl = refresh_ttl or timedelta(days=settings.JWT_REFRESH_DAYS)
        self.session_ttl = session_ttl or timedelta(days=settings.SESSION_TTL_DAYS)
        self.reset_ttl = reset_ttl or timedelta(minutes=settings.PASSWORD_RESET_MINUTES)

    def issue(self, payload: TokenPayload) -> TokenPair:
        return TokenPair(
            access_token=sign_token(payload.to_claims("access"), self.access_secret, self.access_ttl),
            refresh_token=sign_token(payload.to_claims("refresh"), self.refresh_secret, self.refresh_ttl),
        )

    def verify_access_token(self, token: str) -> TokenPayload:
        return self._decode(token, self.access_secret, "access")

    def issue_reset_token(self, payload: TokenPayload, fingerprint: str) -> str:
        """Short-lived token bound to the password it replaces.

        ``fingerprint`` is derived from the current password hash, so the token
        stops verifying once the password changes.
        """
        claims = {**payload.to_claims("password_reset"), "fp": fingerprint}
        return sign_token(claims, self.access_secret, self.reset_ttl)

    def verify_reset_token(self, token: str) -> tuple[TokenPayload, str]:
        try:
            claims = decode_token(token, self.access_secret)
        except JWTError as exc:
            raise InvalidToken("Invalid or expired reset token") from exc
        if claims.get("type") != "password_reset" or not claims.get("sub") or not claims.get("fp"):
            raise InvalidToken("Invalid or expired reset token")
        return TokenPayload.from_claims(claims), claims["fp"]

    def create_session(self, db: Session, user_id, tokens: TokenPair) -> AuthSession:
        row = AuthSession(
            user_id=as_uuid(user_id),
            access_hash=hash_token(tokens.access_token),
            refresh_hash=hash_token(tokens.refresh_token),
            expires_at=now_utc() + self.session_ttl,
        )
        db.add(row)
        db.flush()
        return row

    def refresh(self, db: Session, refresh_token: str) -> TokenPair:
        payload = self._decode(refresh_token, self.refresh_secret, "refresh")
        old_hash = hash_token(refresh_token)

        # The session row, not the signature, decides whether the token is still usable.
        row = db.execute(
            sa.select(AuthSession.id)
            .where(AuthSession.refresh_hash == old_hash, AuthSession.expires_at > now_utc())
            .with_for_update()
        ).first()
        if not row:
            raise SessionNotFound()

        tokens = self.issue(payload)
        rotated = db.execute(
            sa.update(AuthSession)
            .where(AuthSession.id == row.id, AuthSession.refresh_hash == old_hash)
            .values(
                access_hash=hash_token(tokens.access_token),
                refresh_hash=hash_token(tokens.refresh_token),
                rotated_at=now_utc(),
            )
            .execution_options(synchronize_session=False)
        )
        if rotated.rowcount != 1:
            # Lost a race with a concurrent refresh of the same token.
            raise SessionNotFound()
        return tokens

    def invalidate(self, db: Session, refresh_token: str) -> bool:
        result = db.execute(
            sa.delete(AuthSession)
            .where(AuthSession.refresh_hash == hash_token(refresh_token))
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def invalidate_all(self, db: Session, user_id) -> int:
        result = db.execute(
            sa.delete(AuthSession)
            .where(AuthSession.user_id == as_uuid(user_id))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def get_sessions(self, db: Session, user_id) -> list[AuthSession]:
        return list(
            db.execute(
                sa.select(AuthSession)
                .where(AuthSession.user_id == as_uuid(user_id), AuthSession.expires_at > now_utc())
                .order_by(AuthSession.created_at.desc())
            ).scalars()
        )

    def sweep_expired(self, db: Session) -> int:
        result = db.execute(
            sa.delete(AuthSession)
            .where(AuthSession.expires_at <= now_utc())
            .execution_options(synchronize_session=False)
        )
        removed = result.rowcount or 0
        logger.info("expired sessions removed=%d", removed)
        return removed

    @staticmethod
    def _decode(token: str, secret: str, expected_type: str) -> TokenPayload:
        try:
            claims = decode_token(token, secret)
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            raise InvalidToken() from exc
        if claims.get("type") != expected_type or not claims.get("sub"):
            raise InvalidToken("Invalid token type")
        return TokenPayload.from_claims(claims)
