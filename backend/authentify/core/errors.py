from __future__ import annotations

from typing import Any


class ConfigurationError(RuntimeError):
    """Raised for misconfiguration; never a verdict on a user's credentials."""


class AuthError(Exception):
    code = "auth_error"
    status_code = 400
    default_message = "Authentication error"

    def __init__(self, message: str | None = None, **context: Any):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "detail": self.message}


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid credentials"


class AlreadyExists(AuthError):
    code = "already_exists"
    status_code = 409
    default_message = "Account already exists"


class ChallengeExpired(AuthError):
    code = "challenge_expired"
    status_code = 400
    default_message = "Challenge not found or expired"


class NoCredentials(AuthError):
    code = "no_credentials"
    status_code = 404
    default_message = "No biometric credentials registered"


class CredentialNotFound(AuthError):
    code = "credential_not_found"
    status_code = 404
    default_message = "Credential not found"


class ReplayDetected(AuthError):
    code = "replay_detected"
    status_code = 401
    default_message = "Authenticator counter did not increase"


class ChainUnavailable(AuthError):
    code = "chain_unavailable"
    status_code = 503
    default_message = "Identity ledger unavailable"


class ChainRejected(AuthError):
    code = "chain_rejected"
    status_code = 401
    default_message = "Identity ledger rejected the request"

    def __init__(self, message: str | None = None, *, reason: str | None = None, **context: Any):
        self.reason = reason
        super().__init__(message, reason=reason, **context)


class SessionNotFound(AuthError):
    code = "session_not_found"
    status_code = 401
    default_message = "Session not found or expired"


class TokenExpired(AuthError):
    code = "token_expired"
    status_code = 401
    default_message = "Token expired"


class InvalidToken(AuthError):
    code = "invalid_token"
    status_code = 401
    default_message = "Invalid token"


class WeakPassword(AuthError):
    code = "weak_password"
    status_code = 400
    default_message = "Password does not meet the strength policy"


class ValidationFailed(AuthError):
    code = "validation_failed"
    status_code = 400
    default_message = "Invalid request"


class UserNotFound(AuthError):
    code = "user_not_found"
    status_code = 404
    default_message = "User not found"
