import uuid

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship
from authentify.db.base import Base

class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(sa.Text, unique=True, nullable=False)
    # Optional columns: older deployments may lack them (see services.users.detect_schema_features)
    username: Mapped[str | None] = mapped_column(sa.Text, unique=True, nullable=True, deferred=True)
    chain_status: Mapped[str | None] = mapped_column(sa.Text, nullable=True, deferred=True)
    password_hash: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    wallet_address: Mapped[str | None] = mapped_column(sa.Text, unique=True, nullable=True)
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
    updated_at: Mapped[sa.DateTime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), onupdate=sa.func.now()
    )
    last_login_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        sa.CheckConstraint("chain_status IS NULL OR chain_status in ('pending','synced')", name="ck_user_chain_status"),
    )

    sessions = relationship("AuthSession", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    biometric_credentials = relationship(
        "BiometricCredential", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
