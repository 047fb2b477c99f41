"""
WebAuthn response verification.

Thin adapter over py_webauthn exposing the two pure checks the ceremony
manager needs. Expected failures come back as ``verified=False`` with a
reason; nothing here touches storage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from webauthn import verify_authentication_response, verify_registration_response
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.exceptions import WebAuthnException

logger = logging.getLogger("authentify.webauthn")


@dataclass(frozen=True)
class StoredCredential:
    credential_id: str
    public_key: str
    counter: int


@dataclass(frozen=True)
class RegistrationVerification:
    verified: bool
    credential_id: str | None = None
    public_key: str | None = None
    counter: int = 0
    reason: str | None = None


@dataclass(frozen=True)
class AuthenticationVerification:
    verified: bool
    new_counter: int | None = None
    reason: str | None = None


def verify_registration(attestation: dict, expected_challenge: str, origin: str, rp_id: str) -> RegistrationVerification:
    try:
        result = verify_registration_response(
            credential=attestation,
            expected_challenge=base64url_to_bytes(expected_challenge),
            expected_origin=origin,
            expected_rp_id=rp_id,
            require_user_verification=True,
        )
    except (WebAuthnException, ValueError, KeyError, TypeError) as exc:
        logger.info("registration response rejected: %s", exc)
        return RegistrationVerification(False, reason=str(exc))
    return RegistrationVerification(
        True,
        credential_id=bytes_to_base64url(result.credential_id),
        public_key=bytes_to_base64url(result.credential_public_key),
        counter=result.sign_count,
    )


def verify_authentication(
    assertion: dict,
    expected_challenge: str,
    origin: str,
    rp_id: str,
    stored: StoredCredential,
) -> AuthenticationVerification:
    try:
        result = verify_authentication_response(
            credential=assertion,
            expected_challenge=base64url_to_bytes(expected_challenge),
            expected_origin=origin,
            expected_rp_id=rp_id,
            credential_public_key=base64url_to_bytes(stored.public_key),
            credential_current_sign_count=stored.counter,
            require_user_verification=True,
        )
    except (WebAuthnException, ValueError, KeyError, TypeError) as exc:
        logger.info("authentication response rejected: %s", exc)
        return AuthenticationVerification(False, reason=str(exc))
    return AuthenticationVerification(True, new_counter=result.new_sign_count)
