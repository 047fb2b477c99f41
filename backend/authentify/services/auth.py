from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from contextlib import contextmanager
from dataclasses import dataclass, field

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from authentify.core.config import settings
from authentify.core.errors import (
    AlreadyExists,
    AuthError,
    ChainRejected,
    ChainUnavailable,
    ConfigurationError,
    InvalidCredentials,
    InvalidToken,
    ValidationFailed,
    WeakPassword,
)
from authentify.core.security import (
    hash_password,
    hash_token,
    identity_commitment,
    now_utc,
    social_id_hash,
    validate_password_strength,
    verify_password,
)
from authentify.core.validators import (
    normalize_email,
    normalize_username,
    normalize_wallet_address,
    placeholder_email,
)
from authentify.models.auth_session import AuthSession
from authentify.models.biometric import BiometricCredential
from authentify.models.user import User
from authentify.services.audit import audit
from authentify.services.biometric import AuthenticatorKind, BiometricCeremonyManager
from authentify.services.chain import ContractIdentityBridge, IdentityLedger
from authentify.services.challenges import InMemoryChallengeStore
from authentify.services.sessions import SessionManager, TokenPair, TokenPayload
from authentify.services.users import (
    SchemaFeatures,
    create_user,
    detect_schema_features,
    get_user,
    get_user_by_email,
    get_user_by_username,
    get_user_by_wallet,
    require_user,
    set_chain_status,
)

logger = logging.getLogger("authentify.auth")


@dataclass
class AuthResult:
    user: User
    tokens: TokenPair
    session: AuthSession
    mode: str = "password"
    transaction_hash: str | None = None


@dataclass
class BiometricResult:
    verified: bool
    auth: AuthResult | None = None
    credential: BiometricCredential | None = None
    reason: str | None = None


@dataclass
class LoginEligibility:
    can_login: bool
    auth_methods: list[str] = field(default_factory=list)


@dataclass
class ChainPhase:
    transaction_hash: str | None = None
    account_address: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def synced(self) -> bool:
        return self.transaction_hash is not None


@contextmanager
def _transaction(db: Session):
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise


def _reset_fingerprint(user: User) -> str:
    return hash_token("reset:" + (user.password_hash or ""))[:32]


def _require_strong(password: str) -> None:
    check = validate_password_strength(password)
    if not check.valid:
        raise WeakPassword(check.reason)


class AuthService:
    """Composes the credential, ceremony, ledger and session components.

    Chain calls run on a worker pool and are abandoned after
    ``chain_timeout`` seconds. Unavailability of the ledger always leads to
    the off-chain path; an explicit ledger rejection never does.
    """

    def __init__(
        self,
        sessions: SessionManager,
        ceremonies: BiometricCeremonyManager,
        bridge: IdentityLedger | None = None,
        *,
        features: SchemaFeatures = SchemaFeatures(),
        chain_timeout: float | None = None,
        executor: Executor | None = None,
    ):
        self.sessions = sessions
        self.ceremonies = ceremonies
        self.bridge = bridge
        self.features = features
        self.chain_timeout = chain_timeout if chain_timeout is not None else settings.CHAIN_CALL_TIMEOUT_SECONDS
        self._executor = executor
        if bridge is not None and executor is None:
            self._executor = ThreadPoolExecutor(max_workers=settings.CHAIN_WORKERS, thread_name_prefix="chain")

    # ---- shared helpers ----

    def _start_session(self, db: Session, user: User, *, mode: str, action: str, data: dict | None = None,
                       transaction_hash: str | None = None) -> AuthResult:
        tokens = self.sessions.issue(
            TokenPayload(user_id=str(user.id), email=user.email, wallet_address=user.wallet_address)
        )
        session = self.sessions.create_session(db, user.id, tokens)
        user.last_login_at = now_utc()
        audit(db, user.id, "auth", str(user.id), action, {"mode": mode, **(data or {})})
        return AuthResult(user=user, tokens=tokens, session=session, mode=mode, transaction_hash=transaction_hash)

    def _call_chain(self, fn, *args):
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self.chain_timeout)
        except FuturesTimeout as exc:
            # The call keeps running in its worker; nothing is rolled back.
            logger.warning("chain call %s timed out after %ss", getattr(fn, "__name__", fn), self.chain_timeout)
            raise ChainUnavailable("Chain call timed out") from exc
        except (AuthError, ConfigurationError):
            raise
        except Exception as exc:
            # Anything else the client library raises is not a verdict on the caller.
            logger.exception("chain call %s failed", getattr(fn, "__name__", fn))
            raise ChainUnavailable(f"Chain call failed: {exc}") from exc

    def chain_available(self) -> bool:
        if self.bridge is None:
            return False
        try:
            return bool(self._call_chain(self.bridge.is_available))
        except ChainUnavailable:
            return False
        except ConfigurationError as exc:
            logger.error("identity ledger misconfigured: %s", exc)
            return False

    def close(self) -> None:
        if self.bridge is not None:
            self.bridge.close()
        if self._executor is not None:
            self._executor.shutdown(wait=False)

    def current_user(self, db: Session, access_token: str) -> User:
        payload = self.sessions.verify_access_token(access_token)
        user = get_user(db, payload.user_id)
        if not user:
            raise InvalidToken("User not found")
        return user

    # ---- password ----

    def register_with_password(self, db: Session, email: str, password: str,
                               wallet_address: str | None = None) -> AuthResult:
        email = normalize_email(email)
        _require_strong(password)
        wallet = normalize_wallet_address(wallet_address)

        with _transaction(db):
            if get_user_by_email(db, email):
                raise AlreadyExists("User already exists with this email")
            if wallet and get_user_by_wallet(db, wallet):
                raise AlreadyExists("Wallet address already registered")
            user = create_user(
                db, email=email, password_hash=hash_password(password), wallet_address=wallet, features=self.features
            )
            result = self._start_session(db, user, mode="password", action="register")
        logger.info("password registration user_id=%s", user.id)
        return result

    def login_with_password(self, db: Session, email: str, password: str) -> AuthResult:
        try:
            email = normalize_email(email)
        except ValidationFailed:
            raise InvalidCredentials()
        user = get_user_by_email(db, email)
        if not user or not user.password_hash or not verify_password(password, user.password_hash):
            logger.info("password login rejected")
            raise InvalidCredentials()

        with _transaction(db):
            result = self._start_session(db, user, mode="password", action="login")
        return result

    def change_password(self, db: Session, user_id, current_password: str, new_password: str) -> int:
        user = require_user(db, user_id)
        # Accounts created without a password (biometric, ledger) may set one directly.
        if user.password_hash and not verify_password(current_password or "", user.password_hash):
            raise InvalidCredentials("Current password is incorrect")
        _require_strong(new_password)

        with _transaction(db):
            user.password_hash = hash_password(new_password)
            removed = self.sessions.invalidate_all(db, user.id)
            audit(db, user.id, "auth", str(user.id), "password_changed", {"sessions_revoked": removed})
        logger.info("password changed user_id=%s sessions_revoked=%d", user.id, removed)
        return removed

    def get_user(self, db: Session, user_id) -> User:
        return require_user(db, user_id)

    def update_wallet_address(self, db: Session, user_id, wallet_address: str) -> User:
        wallet = normalize_wallet_address(wallet_address)
        if not wallet:
            raise ValidationFailed("Invalid wallet address")
        user = require_user(db, user_id)

        with _transaction(db):
            owner = get_user_by_wallet(db, wallet)
            if owner and owner.id != user.id:
                raise AlreadyExists("Wallet address already registered")
            user.wallet_address = wallet
            audit(db, user.id, "user", str(user.id), "wallet_updated", {})
        return user

    def request_password_reset(self, db: Session, email: str) -> str | None:
        """Issue a reset token for ``email``.

        Returns None for unknown or malformed addresses so callers can answer
        identically whether or not the account exists. Delivering the token is
        left to the caller.
        """
        try:
            email = normalize_email(email)
        except ValidationFailed:
            return None
        user = get_user_by_email(db, email)
        if not user:
            logger.info("password reset requested for unknown email")
            return None

        token = self.sessions.issue_reset_token(
            TokenPayload(user_id=str(user.id), email=user.email, wallet_address=user.wallet_address),
            _reset_fingerprint(user),
        )
        with _transaction(db):
            audit(db, user.id, "auth", str(user.id), "password_reset_requested", {})
        return token

    def reset_password(self, db: Session, token: str, new_password: str) -> AuthResult:
        payload, fingerprint = self.sessions.verify_reset_token(token)
        user = get_user(db, payload.user_id)
        # A token issued before the last password change no longer matches.
        if not user or fingerprint != _reset_fingerprint(user):
            raise InvalidToken("Invalid or expired reset token")
        _require_strong(new_password)

        with _transaction(db):
            user.password_hash = hash_password(new_password)
            removed = self.sessions.invalidate_all(db, user.id)
            result = self._start_session(
                db, user, mode="password", action="password_reset", data={"sessions_revoked": removed}
            )
        logger.info("password reset user_id=%s sessions_revoked=%d", user.id, removed)
        return result

    # ---- biometric ----

    def begin_biometric_registration(self, db: Session, email: str, display_name: str,
                                     authenticator_kind: AuthenticatorKind = "platform") -> dict:
        email = normalize_email(email)
        with _transaction(db):
            options = self.ceremonies.begin_registration(db, email, display_name, authenticator_kind)
        return options

    def complete_biometric_registration(self, db: Session, email: str, attestation: dict,
                                        authenticator_kind: AuthenticatorKind = "platform") -> BiometricResult:
        email = normalize_email(email)
        with _transaction(db):
            outcome = self.ceremonies.complete_registration(db, email, attestation, authenticator_kind)
            if not outcome.verified:
                return BiometricResult(False, reason=outcome.reason)
            audit(db, outcome.user.id, "biometric", outcome.credential.credential_id, "credential_registered", {})
            auth = self._start_session(db, outcome.user, mode="biometric", action="register")
        return BiometricResult(True, auth=auth, credential=outcome.credential)

    def begin_biometric_login(self, db: Session, email: str) -> dict:
        return self.ceremonies.begin_authentication(db, normalize_email(email))

    def complete_biometric_login(self, db: Session, email: str, assertion: dict) -> BiometricResult:
        email = normalize_email(email)
        with _transaction(db):
            outcome = self.ceremonies.complete_authentication(db, email, assertion)
            if not outcome.verified:
                return BiometricResult(False, reason=outcome.reason)
            user = require_user(db, outcome.user.id)
            auth = self._start_session(db, user, mode="biometric", action="login")
        return BiometricResult(True, auth=auth, credential=outcome.credential)

    def list_biometric_credentials(self, db: Session, user_id) -> list[BiometricCredential]:
        return self.ceremonies.list_credentials(db, user_id)

    def delete_biometric_credential(self, db: Session, user_id, credential_id: str) -> bool:
        with _transaction(db):
            deleted = self.ceremonies.delete_credential(db, user_id, credential_id)
            if deleted:
                audit(db, user_id, "biometric", credential_id, "credential_deleted", {})
        return deleted

    # ---- identity ledger ----

    def register_with_contract(self, db: Session, username: str, password: str,
                               social_provider: str | None = None, social_id: str | None = None) -> AuthResult:
        username = normalize_username(username)
        _require_strong(password)
        email = placeholder_email(username)
        commitment = identity_commitment(username, password)
        provider = (social_provider or "").strip().lower()
        social_hash = social_id_hash(provider or "authentify", social_id or username)

        # Phase 1: best effort on the ledger. Any failure is tolerated and recorded.
        chain = ChainPhase()
        if self.chain_available():
            try:
                receipt = self._call_chain(self.bridge.register_on_chain, username, commitment, social_hash, provider)
                chain.transaction_hash = receipt.extrinsic_hash
                chain.account_address = self._call_chain(self.bridge.authenticate_on_chain, username, commitment)
            except (ChainUnavailable, ChainRejected, ConfigurationError) as exc:
                chain.errors.append(str(exc))
                logger.warning("on-chain registration failed for %s; continuing off-chain only: %s", username, exc)
        else:
            logger.warning("identity ledger unavailable; registering %s off-chain only (degraded)", username)

        # Phase 2: the off-chain row is mandatory.
        status = "synced" if chain.synced else "pending"
        with _transaction(db):
            user = self._upsert_ledger_user(db, username, email, password, chain.account_address, status)
            result = self._start_session(
                db,
                user,
                mode="chain" if chain.synced else "fallback",
                action="register",
                data={"chain_status": status},
                transaction_hash=chain.transaction_hash,
            )
        return result

    def login_with_contract(self, db: Session, username: str, password: str) -> AuthResult:
        try:
            username = normalize_username(username)
        except ValidationFailed:
            raise InvalidCredentials()

        if not self.chain_available():
            return self._fallback_login(db, username, password)

        try:
            address = self._call_chain(
                self.bridge.authenticate_on_chain, username, identity_commitment(username, password)
            )
        except (ChainUnavailable, ConfigurationError) as exc:
            logger.warning("ledger call failed during login (%s); falling back", exc)
            return self._fallback_login(db, username, password)
        except ChainRejected:
            raise InvalidCredentials()
        if not address:
            raise InvalidCredentials()

        with _transaction(db):
            user = self._upsert_ledger_user(
                db, username, placeholder_email(username), password, address, "synced", verify_existing=False
            )
            result = self._start_session(db, user, mode="chain", action="login")
        return result

    def get_auth_methods(self, db: Session, account_address: str) -> list[str]:
        address = normalize_wallet_address(account_address)
        if not address:
            raise ValidationFailed("Invalid wallet address")
        if self.chain_available():
            try:
                return self._call_chain(self.bridge.query_auth_methods, address)
            except (ChainUnavailable, ConfigurationError) as exc:
                logger.warning("ledger query failed (%s); answering from the off-chain store", exc)

        user = get_user_by_wallet(db, address)
        return self._offchain_auth_methods(db, user) if user else []

    def can_user_login(self, db: Session, account_address: str) -> LoginEligibility:
        address = normalize_wallet_address(account_address)
        if not address:
            raise ValidationFailed("Invalid wallet address")
        if self.chain_available():
            try:
                can_login = self._call_chain(self.bridge.can_user_login, address)
                methods = self._call_chain(self.bridge.query_auth_methods, address) if can_login else []
                return LoginEligibility(can_login=bool(can_login), auth_methods=methods)
            except (ChainUnavailable, ConfigurationError) as exc:
                logger.warning("ledger eligibility check failed (%s); answering from the off-chain store", exc)

        user = get_user_by_wallet(db, address)
        if not user:
            return LoginEligibility(can_login=False)
        return LoginEligibility(can_login=True, auth_methods=self._offchain_auth_methods(db, user))

    def _offchain_auth_methods(self, db: Session, user: User) -> list[str]:
        methods = []
        if user.password_hash:
            methods.append("password")
        if self.ceremonies.list_credentials(db, user.id):
            methods.append("biometric")
        methods.append("wallet")
        return methods

    def _fallback_login(self, db: Session, username: str, password: str) -> AuthResult:
        logger.warning("identity ledger unavailable; degraded password login for %s", username)
        user = get_user_by_username(db, username, self.features) or get_user_by_email(db, placeholder_email(username))
        if not user or not user.password_hash or not verify_password(password, user.password_hash):
            raise InvalidCredentials()
        with _transaction(db):
            result = self._start_session(db, user, mode="fallback", action="login", data={"degraded": True})
        return result

    def _upsert_ledger_user(self, db: Session, username: str, email: str, password: str,
                            address: str | None, status: str, *, verify_existing: bool = True) -> User:
        """Locate or create the off-chain row for a ledger identity.

        Keyed by account address first, then by username/placeholder email.
        Safe to repeat: a retry with the same password resolves the same row.
        """
        user = get_user_by_wallet(db, address) if address else None
        if user is not None and not self._same_identity(user, username, email):
            logger.error("ledger account %s is already linked to another user; not reusing it", address)
            user = None
            address = None
        if user is None:
            user = get_user_by_username(db, username, self.features) or get_user_by_email(db, email)

        if user is None:
            return create_user(
                db,
                email=email,
                password_hash=hash_password(password),
                wallet_address=address,
                username=username,
                chain_status=status,
                features=self.features,
            )

        if verify_existing and (not user.password_hash or not verify_password(password, user.password_hash)):
            raise AlreadyExists("Username already registered")
        if not user.password_hash:
            user.password_hash = hash_password(password)
        if address and not user.wallet_address and not get_user_by_wallet(db, address):
            user.wallet_address = address
        if status == "synced" or not user.wallet_address:
            set_chain_status(user, status, self.features)
        db.flush()
        return user

    def _same_identity(self, user: User, username: str, email: str) -> bool:
        if user.email == email:
            return True
        if self.features.username_column and user.username:
            return user.username.lower() == username.lower()
        return False

    # ---- sessions ----

    def refresh(self, db: Session, refresh_token: str) -> TokenPair:
        with _transaction(db):
            tokens = self.sessions.refresh(db, refresh_token)
        return tokens

    def logout(self, db: Session, refresh_token: str) -> bool:
        with _transaction(db):
            removed = self.sessions.invalidate(db, refresh_token)
        return removed

    def logout_all(self, db: Session, user_id) -> int:
        with _transaction(db):
            removed = self.sessions.invalidate_all(db, user_id)
            audit(db, user_id, "auth", str(user_id), "logout_all", {"sessions_revoked": removed})
        return removed

    def get_sessions(self, db: Session, user_id) -> list[AuthSession]:
        return self.sessions.get_sessions(db, user_id)

    def sweep_expired(self, db: Session) -> int:
        with _transaction(db):
            removed = self.sessions.sweep_expired(db)
        return removed


def build_auth_service(engine: Engine) -> AuthService:
    bridge = ContractIdentityBridge() if settings.CHAIN_ENABLED else None
    return AuthService(
        SessionManager(),
        BiometricCeremonyManager(InMemoryChallengeStore(ttl_seconds=settings.CHALLENGE_TTL_SECONDS)),
        bridge,
        features=detect_schema_features(engine),
    )
