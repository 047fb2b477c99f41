from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Literal, Protocol

import sqlalchemy as sa
from sqlalchemy.orm import Session
from webauthn import generate_authentication_options, generate_registration_options, options_to_json
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from authentify.core.config import settings
from authentify.core.errors import (
    AlreadyExists,
    ChallengeExpired,
    CredentialNotFound,
    NoCredentials,
    ReplayDetected,
    ValidationFailed,
)
from authentify.core.security import now_utc
from authentify.core.validators import is_base64url
from authentify.models.biometric import BiometricCredential
from authentify.models.user import User
from authentify.services import webauthn_verifier
from authentify.services.challenges import ChallengeKey, ChallengeStore
from authentify.services.users import as_uuid, create_user, get_user_by_email
from authentify.services.webauthn_verifier import (
    AuthenticationVerification,
    RegistrationVerification,
    StoredCredential,
)

logger = logging.getLogger("authentify.biometric")

AuthenticatorKind = Literal["platform", "cross-platform"]

_ATTACHMENTS = {
    "platform": AuthenticatorAttachment.PLATFORM,
    "cross-platform": AuthenticatorAttachment.CROSS_PLATFORM,
}


class WebAuthnVerifier(Protocol):
    def verify_registration(
        self, attestation: dict, expected_challenge: str, origin: str, rp_id: str
    ) -> RegistrationVerification:
        ...

    def verify_authentication(
        self, assertion: dict, expected_challenge: str, origin: str, rp_id: str, stored: StoredCredential
    ) -> AuthenticationVerification:
        ...


@dataclass(frozen=True)
class RelyingParty:
    name: str
    id: str
    origin: str


@dataclass
class RegistrationOutcome:
    verified: bool
    credential: BiometricCredential | None = None
    user: User | None = None
    reason: str | None = None


@dataclass
class AuthenticationOutcome:
    verified: bool
    user: User | None = None
    credential: BiometricCredential | None = None
    reason: str | None = None


def default_relying_party() -> RelyingParty:
    return RelyingParty(name=settings.RP_NAME, id=settings.RP_ID, origin=settings.RP_ORIGIN)


class BiometricCeremonyManager:
    """WebAuthn registration and authentication ceremonies.

    Each (ceremony kind, email) pair moves NONE -> CHALLENGED on ``begin_*``
    and CHALLENGED -> VERIFIED|FAILED on ``complete_*``. The pending challenge
    is consumed by the first completion attempt whatever its outcome.
    """

    def __init__(
        self,
        challenges: ChallengeStore,
        *,
        verifier: WebAuthnVerifier = webauthn_verifier,
        relying_party: RelyingParty | None = None,
        timeout_ms: int | None = None,
    ):
        self.challenges = challenges
        self.verifier = verifier
        self.rp = relying_party or default_relying_party()
        self.timeout_ms = timeout_ms or settings.WEBAUTHN_TIMEOUT_MS

    # ---- registration ----

    def begin_registration(
        self,
        db: Session,
        email: str,
        display_name: str,
        authenticator_kind: AuthenticatorKind = "platform",
    ) -> dict:
        if authenticator_kind not in _ATTACHMENTS:
            raise ValidationFailed("authenticator_kind must be 'platform' or 'cross-platform'")

        user = get_user_by_email(db, email)
        if not user:
            # Enrollment may precede a full signup; the row has no password yet.
            user = create_user(db, email=email)
            logger.info("created passwordless user for biometric enrollment user_id=%s", user.id)

        existing = self._credential_ids(db, user.id)
        options = generate_registration_options(
            rp_id=self.rp.id,
            rp_name=self.rp.name,
            user_id=str(user.id).encode("utf-8"),
            user_name=display_name or email,
            user_display_name=display_name or email,
            timeout=self.timeout_ms,
            attestation=AttestationConveyancePreference.NONE,
            authenticator_selection=AuthenticatorSelectionCriteria(
                authenticator_attachment=_ATTACHMENTS[authenticator_kind],
                resident_key=(
                    ResidentKeyRequirement.PREFERRED
                    if authenticator_kind == "platform"
                    else ResidentKeyRequirement.REQUIRED
                ),
                user_verification=UserVerificationRequirement.REQUIRED,
            ),
            exclude_credentials=[
                PublicKeyCredentialDescriptor(id=base64url_to_bytes(cid)) for cid in existing
            ],
            supported_pub_key_algs=[
                COSEAlgorithmIdentifier.ECDSA_SHA_256,
                COSEAlgorithmIdentifier.RSASSA_PKCS1_v1_5_SHA_256,
            ],
        )
        challenge = bytes_to_base64url(options.challenge)
        self.challenges.set(ChallengeKey("registration", email), challenge)
        logger.info("registration challenge issued user_id=%s excluded=%d", user.id, len(existing))
        return json.loads(options_to_json(options))

    def complete_registration(
        self,
        db: Session,
        email: str,
        attestation: dict,
        authenticator_kind: AuthenticatorKind = "platform",
    ) -> RegistrationOutcome:
        expected = self.challenges.pop(ChallengeKey("registration", email))
        if expected is None:
            raise ChallengeExpired()

        user = get_user_by_email(db, email)
        if not user:
            return RegistrationOutcome(False, reason="User not found")

        raw_id = attestation.get("id") if isinstance(attestation, dict) else None
        if not raw_id or not is_base64url(raw_id):
            logger.warning("registration rejected: malformed credential id user_id=%s", user.id)
            return RegistrationOutcome(False, user=user, reason="Credential ID is not base64url encoded")

        result = self.verifier.verify_registration(attestation, expected, self.rp.origin, self.rp.id)
        if not result.verified or not result.credential_id or not result.public_key:
            logger.warning("registration verification failed user_id=%s reason=%s", user.id, result.reason)
            return RegistrationOutcome(False, user=user, reason=result.reason or "Verification failed")

        taken = db.execute(
            sa.select(BiometricCredential.id).where(BiometricCredential.credential_id == result.credential_id)
        ).first()
        if taken:
            raise AlreadyExists("Credential already registered")

        credential = BiometricCredential(
            user_id=user.id,
            credential_id=result.credential_id,
            public_key=result.public_key,
            counter=result.counter,
            authenticator_kind=authenticator_kind if authenticator_kind in _ATTACHMENTS else "platform",
        )
        db.add(credential)
        db.flush()
        logger.info("biometric credential stored user_id=%s", user.id)
        return RegistrationOutcome(True, credential=credential, user=user)

    # ---- authentication ----

    def begin_authentication(self, db: Session, email: str) -> dict:
        user = get_user_by_email(db, email)
        credential_ids = self._credential_ids(db, user.id) if user else []
        if not credential_ids:
            raise NoCredentials()

        options = generate_authentication_options(
            rp_id=self.rp.id,
            timeout=self.timeout_ms,
            allow_credentials=[
                PublicKeyCredentialDescriptor(
                    id=base64url_to_bytes(cid),
                    transports=[AuthenticatorTransport.INTERNAL],
                )
                for cid in credential_ids
            ],
            user_verification=UserVerificationRequirement.REQUIRED,
        )
        self.challenges.set(ChallengeKey("authentication", email), bytes_to_base64url(options.challenge))
        return json.loads(options_to_json(options))

    def complete_authentication(self, db: Session, email: str, assertion: dict) -> AuthenticationOutcome:
        expected = self.challenges.pop(ChallengeKey("authentication", email))
        if expected is None:
            raise ChallengeExpired()

        user = get_user_by_email(db, email)
        raw_id = assertion.get("id") if isinstance(assertion, dict) else None
        if not user or not raw_id:
            raise CredentialNotFound()

        credential = db.execute(
            sa.select(BiometricCredential)
            .where(
                BiometricCredential.user_id == user.id,
                BiometricCredential.credential_id == raw_id,
            )
            .with_for_update()
        ).scalar_one_or_none()
        if not credential:
            raise CredentialNotFound()

        stored = StoredCredential(credential.credential_id, credential.public_key, credential.counter)
        result = self.verifier.verify_authentication(assertion, expected, self.rp.origin, self.rp.id, stored)
        if not result.verified:
            logger.warning("authentication verification failed user_id=%s reason=%s", user.id, result.reason)
            return AuthenticationOutcome(False, user=user, reason=result.reason or "Verification failed")

        new_counter = int(result.new_counter or 0)
        # Authenticators without a counter report zero forever; anything else must strictly increase.
        if (new_counter > 0 or credential.counter > 0) and new_counter <= credential.counter:
            logger.warning(
                "counter regression user_id=%s stored=%d received=%d", user.id, credential.counter, new_counter
            )
            raise ReplayDetected()

        credential.counter = new_counter
        credential.last_used_at = now_utc()
        db.flush()
        return AuthenticationOutcome(True, user=user, credential=credential)

    # ---- credential management ----

    def list_credentials(self, db: Session, user_id) -> list[BiometricCredential]:
        return list(
            db.execute(
                sa.select(BiometricCredential)
                .where(BiometricCredential.user_id == as_uuid(user_id))
                .order_by(BiometricCredential.created_at.desc())
            ).scalars()
        )

    def delete_credential(self, db: Session, user_id, credential_id: str) -> bool:
        result = db.execute(
            sa.delete(BiometricCredential).where(
                BiometricCredential.user_id == as_uuid(user_id),
                BiometricCredential.credential_id == credential_id,
            )
        )
        return bool(result.rowcount)

    def _credential_ids(self, db: Session, user_id) -> list[str]:
        return list(
            db.execute(
                sa.select(BiometricCredential.credential_id).where(BiometricCredential.user_id == as_uuid(user_id))
            ).scalars()
        )
