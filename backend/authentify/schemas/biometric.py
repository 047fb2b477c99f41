from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from authentify.schemas.auth import AuthOut, EmailIn


class BiometricRegisterBeginIn(EmailIn):
    display_name: str = Field(default="", max_length=120)
    authenticator_kind: Literal["platform", "cross-platform"] = "platform"


class BiometricRegisterCompleteIn(EmailIn):
    attestation: dict[str, Any]
    authenticator_kind: Literal["platform", "cross-platform"] = "platform"


class BiometricLoginBeginIn(EmailIn):
    pass


class BiometricLoginCompleteIn(EmailIn):
    assertion: dict[str, Any]


class CredentialOut(BaseModel):
    credential_id: str
    authenticator_kind: str
    counter: int
    created_at: datetime | None = None
    last_used_at: datetime | None = None


class BiometricResultOut(BaseModel):
    verified: bool
    reason: str | None = None
    credential: CredentialOut | None = None
    auth: AuthOut | None = None
