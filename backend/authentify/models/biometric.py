import uuid

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship
from authentify.db.base import Base

class BiometricCredential(Base):
    __tablename__ = "biometric_credentials"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    credential_id: Mapped[str] = mapped_column(sa.Text, unique=True, nullable=False)  # base64url
    public_key: Mapped[str] = mapped_column(sa.Text, nullable=False)  # base64url COSE key
    counter: Mapped[int] = mapped_column(sa.BigInteger, nullable=False, default=0)
    authenticator_kind: Mapped[str] = mapped_column(sa.Text, nullable=False, default="platform")
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
    last_used_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        sa.CheckConstraint("counter >= 0", name="ck_biometric_counter_non_negative"),
        sa.CheckConstraint("authenticator_kind in ('platform','cross-platform')", name="ck_biometric_kind"),
        sa.Index("ix_biometric_credentials_user", "user_id"),
    )

    user = relationship("User", back_populates="biometric_credentials")
