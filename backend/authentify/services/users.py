from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from authentify.core.errors import AlreadyExists, UserNotFound
from authentify.models.user import User

logger = logging.getLogger("authentify.users")


@dataclass(frozen=True)
class SchemaFeatures:
    """Optional `users` columns, resolved once when the service starts."""

    username_column: bool = True
    chain_status_column: bool = True


def detect_schema_features(engine: Engine) -> SchemaFeatures:
    inspector = sa.inspect(engine)
    if not inspector.has_table("users"):
        return SchemaFeatures()
    columns = {c["name"] for c in inspector.get_columns("users")}
    features = SchemaFeatures(
        username_column="username" in columns,
        chain_status_column="chain_status" in columns,
    )
    if not features.username_column:
        logger.warning("users.username column absent; username lookups use placeholder emails only")
    return features


def as_uuid(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def get_user(db: Session, user_id) -> User | None:
    try:
        key = as_uuid(user_id)
    except ValueError:
        return None
    return db.get(User, key)


def require_user(db: Session, user_id) -> User:
    user = get_user(db, user_id)
    if not user:
        raise UserNotFound()
    return user


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.execute(sa.select(User).where(User.email == email)).scalar_one_or_none()


def get_user_by_wallet(db: Session, wallet_address: str) -> User | None:
    return db.execute(sa.select(User).where(User.wallet_address == wallet_address)).scalar_one_or_none()


def get_user_by_username(db: Session, username: str, features: SchemaFeatures) -> User | None:
    if not features.username_column:
        return None
    return db.execute(
        sa.select(User).where(sa.func.lower(User.username) == username.strip().lower())
    ).scalar_one_or_none()


def create_user(
    db: Session,
    *,
    email: str,
    password_hash: str | None = None,
    wallet_address: str | None = None,
    username: str | None = None,
    chain_status: str | None = None,
    features: SchemaFeatures = SchemaFeatures(),
) -> User:
    user = User(email=email, password_hash=password_hash, wallet_address=wallet_address)
    if username is not None and features.username_column:
        user.username = username
    if chain_status is not None and features.chain_status_column:
        user.chain_status = chain_status
    db.add(user)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise AlreadyExists("Email, username or wallet address already registered") from exc
    return user


def set_chain_status(user: User, status: str, features: SchemaFeatures) -> None:
    if features.chain_status_column:
        user.chain_status = status
