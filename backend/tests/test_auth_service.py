import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
import sqlalchemy as sa
from substrateinterface.exceptions import ContractReadFailedException

from authentify.core.errors import (
    AlreadyExists,
    ChainRejected,
    InvalidCredentials,
    InvalidToken,
    SessionNotFound,
    ValidationFailed,
    WeakPassword,
)
from authentify.core.security import identity_commitment
from authentify.models.audit_log import AuditLog
from authentify.models.auth_session import AuthSession
from authentify.models.user import User
from authentify.services.auth import AuthService
from authentify.services.chain import ChainConnection, ContractIdentityBridge
from authentify.services.users import SchemaFeatures
from tests.fakes import (
    FakeContract,
    FakeLedger,
    FakeSubstrate,
    credential_id,
    fake_address,
    read_result,
    unreachable,
)

PASSWORD = "Secure123!"


@pytest.fixture
def make_service(sessions, ceremonies):
    executors = []

    def factory(bridge=None, **kwargs):
        executor = ThreadPoolExecutor(max_workers=2)
        executors.append(executor)
        return AuthService(sessions, ceremonies, bridge, executor=executor, **kwargs)

    yield factory
    for executor in executors:
        executor.shutdown(wait=False)


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def ledger():
    return FakeLedger()


def _count(db, model) -> int:
    return db.execute(sa.select(sa.func.count()).select_from(model)).scalar_one()


# ---- password ----


def test_password_registration_issues_session(db, service):
    result = service.register_with_password(db, "New@Example.com", PASSWORD)
    assert result.user.email == "new@example.com"
    assert result.mode == "password"
    assert result.session.user_id == result.user.id
    assert _count(db, AuthSession) == 1
    assert db.execute(sa.select(AuditLog.action)).scalars().all() == ["register"]


def test_duplicate_email_registration(db, service):
    service.register_with_password(db, "dup@example.com", PASSWORD)
    with pytest.raises(AlreadyExists):
        service.register_with_password(db, "DUP@example.com", "Another123")
    assert _count(db, User) == 1


def test_weak_password_reason_is_surfaced(db, service):
    with pytest.raises(WeakPassword) as err:
        service.register_with_password(db, "weak@example.com", "password")
    assert "uppercase" in err.value.message
    assert _count(db, User) == 0


def test_login_with_password(db, service):
    registered = service.register_with_password(db, "login@example.com", PASSWORD)
    result = service.login_with_password(db, " Login@Example.com ", PASSWORD)
    assert result.user.id == registered.user.id
    assert result.user.last_login_at is not None
    assert _count(db, AuthSession) == 2


@pytest.mark.parametrize(
    "email, password",
    [
        ("login@example.com", "Wrong1234"),
        ("nobody@example.com", PASSWORD),
        ("not-an-email", PASSWORD),
    ],
)
def test_login_failures_are_generic(db, service, email, password):
    service.register_with_password(db, "login@example.com", PASSWORD)
    with pytest.raises(InvalidCredentials) as err:
        service.login_with_password(db, email, password)
    assert err.value.message == "Invalid credentials"


def test_passwordless_user_cannot_password_login(db, service):
    service.begin_biometric_registration(db, "bio@example.com", "Bio")
    with pytest.raises(InvalidCredentials):
        service.login_with_password(db, "bio@example.com", PASSWORD)


def test_change_password_invalidates_every_session(db, service):
    user = service.register_with_password(db, "cp@example.com", PASSWORD).user
    service.login_with_password(db, "cp@example.com", PASSWORD)

    assert service.change_password(db, user.id, PASSWORD, "Changed456") == 2
    assert service.get_sessions(db, user.id) == []
    with pytest.raises(InvalidCredentials):
        service.login_with_password(db, "cp@example.com", PASSWORD)
    assert service.login_with_password(db, "cp@example.com", "Changed456").user.id == user.id


def test_change_password_requires_current(db, service):
    user = service.register_with_password(db, "cp@example.com", PASSWORD).user
    with pytest.raises(InvalidCredentials):
        service.change_password(db, user.id, "Wrong1234", "Changed456")
    assert len(service.get_sessions(db, user.id)) == 1


def test_update_wallet_address_is_unique(db, service):
    a = service.register_with_password(db, "a@example.com", PASSWORD).user
    b = service.register_with_password(db, "b@example.com", PASSWORD).user
    address = fake_address("wallet")

    assert service.update_wallet_address(db, a.id, address).wallet_address == address
    with pytest.raises(AlreadyExists):
        service.update_wallet_address(db, b.id, address)
    with pytest.raises(ValidationFailed):
        service.update_wallet_address(db, b.id, "0x1234")
    assert service.get_user(db, b.id).wallet_address is None


def test_current_user_from_access_token(db, service):
    result = service.register_with_password(db, "me@example.com", PASSWORD)
    assert service.current_user(db, result.tokens.access_token).id == result.user.id
    with pytest.raises(InvalidToken):
        service.current_user(db, result.tokens.refresh_token)


# ---- biometric ----


def _enroll(db, service, email="bio@example.com", cid=None, counter=1):
    options = service.begin_biometric_registration(db, email, "Bio")
    return service.complete_biometric_registration(
        db, email, {"id": cid or credential_id(1), "challenge": options["challenge"], "counter": counter}
    )


def test_biometric_registration_issues_session(db, service):
    result = _enroll(db, service)
    assert result.verified
    assert result.auth.mode == "biometric"
    assert result.credential.credential_id == credential_id(1)
    assert _count(db, AuthSession) == 1


def test_biometric_login(db, service):
    user = _enroll(db, service).auth.user
    options = service.begin_biometric_login(db, "bio@example.com")
    result = service.complete_biometric_login(
        db, "bio@example.com", {"id": credential_id(1), "challenge": options["challenge"], "counter": 2}
    )
    assert result.verified
    assert result.auth.user.id == user.id
    assert result.credential.counter == 2


def test_failed_biometric_login_issues_nothing(db, service):
    _enroll(db, service)
    service.begin_biometric_login(db, "bio@example.com")
    result = service.complete_biometric_login(
        db, "bio@example.com", {"id": credential_id(1), "challenge": "stale", "counter": 2}
    )
    assert result.verified is False
    assert result.auth is None
    assert result.reason
    assert _count(db, AuthSession) == 1


def test_delete_biometric_credential(db, service):
    user = _enroll(db, service).auth.user
    assert service.delete_biometric_credential(db, user.id, credential_id(1))
    assert service.list_biometric_credentials(db, user.id) == []


# ---- identity ledger ----


def test_fallback_registration_then_login(db, service):
    registered = service.register_with_contract(db, "alice", PASSWORD)
    assert registered.mode == "fallback"
    assert registered.transaction_hash is None
    assert registered.user.email == "alice@authentify.local"
    assert registered.user.chain_status == "pending"

    result = service.login_with_contract(db, "alice", PASSWORD)
    assert result.mode == "fallback"
    assert result.user.id == registered.user.id

    with pytest.raises(InvalidCredentials):
        service.login_with_contract(db, "alice", "wrong")


def test_fallback_login_without_off_chain_user(db, service):
    with pytest.raises(InvalidCredentials):
        service.login_with_contract(db, "alice", PASSWORD)


def test_unavailable_ledger_uses_fallback(db, make_service, ledger):
    ledger.available = False
    service = make_service(ledger)
    service.register_with_contract(db, "alice", PASSWORD)
    assert service.login_with_contract(db, "alice", PASSWORD).mode == "fallback"
    assert "register_on_chain" not in ledger.calls
    assert "authenticate_on_chain" not in ledger.calls


def test_ledger_registration_and_login(db, make_service, ledger):
    service = make_service(ledger)
    registered = service.register_with_contract(db, "alice", PASSWORD, "google", "g-42")
    assert registered.mode == "chain"
    assert registered.transaction_hash.startswith("0x")
    assert registered.user.wallet_address == fake_address("alice")
    assert registered.user.chain_status == "synced"
    assert ledger.identities["alice"]["password_hash"] == identity_commitment("alice", PASSWORD)
    assert ledger.identities["alice"]["social_provider"] == "google"

    result = service.login_with_contract(db, "alice", PASSWORD)
    assert result.mode == "chain"
    assert result.user.id == registered.user.id
    assert _count(db, User) == 1


def test_first_login_after_chain_registration_creates_user(db, make_service, ledger):
    ledger.register_on_chain("carol", identity_commitment("carol", PASSWORD), "social", "")
    service = make_service(ledger)

    result = service.login_with_contract(db, "carol", PASSWORD)
    assert result.mode == "chain"
    assert result.user.wallet_address == fake_address("carol")
    assert result.user.email == "carol@authentify.local"
    assert _count(db, User) == 1


def test_ledger_mismatch_does_not_fall_back(db, make_service, ledger):
    ledger.available = False
    service = make_service(ledger)
    service.register_with_contract(db, "alice", PASSWORD)

    # The off-chain row would accept this password; the ledger's verdict wins.
    ledger.available = True
    with pytest.raises(InvalidCredentials):
        service.login_with_contract(db, "alice", PASSWORD)


def test_ledger_rejection_is_invalid_credentials(db, make_service, ledger):
    ledger.authenticate_error = ChainRejected("Contract returned AccountLocked", reason="AccountLocked")
    service = make_service(ledger)
    with pytest.raises(InvalidCredentials) as err:
        service.login_with_contract(db, "alice", PASSWORD)
    assert err.value.message == "Invalid credentials"


def test_ledger_connectivity_error_falls_back(db, make_service, ledger):
    service = make_service(ledger)
    service.register_with_contract(db, "alice", PASSWORD)

    ledger.authenticate_error = unreachable()
    result = service.login_with_contract(db, "alice", PASSWORD)
    assert result.mode == "fallback"


def test_failed_chain_registration_still_registers_off_chain(db, make_service, ledger):
    ledger.register_error = unreachable()
    service = make_service(ledger)

    result = service.register_with_contract(db, "alice", PASSWORD)
    assert result.mode == "fallback"
    assert result.transaction_hash is None
    assert result.user.chain_status == "pending"
    assert result.user.wallet_address is None
    assert _count(db, User) == 1


def test_chain_timeout_is_treated_as_unavailable(db, make_service, ledger):
    ledger.block = threading.Event()
    service = make_service(ledger, chain_timeout=0.05)
    try:
        result = service.register_with_contract(db, "alice", PASSWORD)
    finally:
        ledger.block.set()
    assert result.mode == "fallback"
    assert result.user.chain_status == "pending"


def test_contract_registration_is_idempotent(db, service):
    first = service.register_with_contract(db, "alice", PASSWORD)
    again = service.register_with_contract(db, "Alice", PASSWORD)
    assert again.user.id == first.user.id
    assert _count(db, User) == 1

    with pytest.raises(AlreadyExists):
        service.register_with_contract(db, "alice", "Different123")


def test_contract_registration_validates_input(db, service):
    with pytest.raises(ValidationFailed):
        service.register_with_contract(db, "a!", PASSWORD)
    with pytest.raises(WeakPassword):
        service.register_with_contract(db, "alice", "short")


def test_fallback_without_username_column(db, make_service):
    service = make_service(features=SchemaFeatures(username_column=False, chain_status_column=False))
    registered = service.register_with_contract(db, "dave", PASSWORD)
    assert service.login_with_contract(db, "dave", PASSWORD).user.id == registered.user.id


def test_auth_methods_from_ledger_and_store(db, make_service, ledger):
    service = make_service(ledger)
    user = service.register_with_contract(db, "alice", PASSWORD, "github", "gh-1").user
    assert service.get_auth_methods(db, user.wallet_address) == ["password", "github", "wallet"]

    ledger.available = False
    assert service.get_auth_methods(db, user.wallet_address) == ["password", "wallet"]
    assert service.get_auth_methods(db, fake_address("nobody")) == []


def test_trapped_contract_falls_back_to_off_chain(db, make_service):
    contract = FakeContract()
    trapped = ContractReadFailedException({"Module": {"error": "ContractTrapped"}})
    contract.results["register_identity"] = trapped
    contract.results["authenticate"] = trapped
    bridge = ContractIdentityBridge(
        connector=lambda: ChainConnection(substrate=FakeSubstrate(), contract=contract, keypair=object())
    )
    service = make_service(bridge)

    registered = service.register_with_contract(db, "alice", PASSWORD)
    assert registered.mode == "fallback"
    assert registered.user.chain_status == "pending"
    assert contract.execs == []

    result = service.login_with_contract(db, "alice", PASSWORD)
    assert result.mode == "fallback"
    assert result.user.id == registered.user.id


def test_unexpected_ledger_error_is_treated_as_unavailable(db, make_service, ledger):
    ledger.register_error = RuntimeError("decoder blew up")
    service = make_service(ledger)
    registered = service.register_with_contract(db, "alice", PASSWORD)
    assert registered.mode == "fallback"
    assert _count(db, User) == 1

    ledger.authenticate_error = KeyError("account")
    assert service.login_with_contract(db, "alice", PASSWORD).mode == "fallback"


# ---- sessions ----


def test_refresh_logout_and_sweep(db, service):
    result = service.register_with_password(db, "s@example.com", PASSWORD)
    pair = service.refresh(db, result.tokens.refresh_token)
    with pytest.raises(SessionNotFound):
        service.refresh(db, result.tokens.refresh_token)

    assert service.logout(db, pair.refresh_token) is True
    assert service.logout(db, pair.refresh_token) is False
    assert service.sweep_expired(db) == 0


def test_logout_all(db, service):
    user = service.register_with_password(db, "s@example.com", PASSWORD).user
    service.login_with_password(db, "s@example.com", PASSWORD)
    assert service.logout_all(db, user.id) == 2
    assert service.get_sessions(db, user.id) == []


# ---- password reset ----


def test_password_reset_flow(db, service):
    registered = service.register_with_password(db, "reset@example.com", PASSWORD)
    token = service.request_password_reset(db, "Reset@Example.com")
    assert token

    result = service.reset_password(db, token, "Renewed789")
    assert result.user.id == registered.user.id
    # Earlier sessions are revoked; only the one just started remains.
    assert [s.id for s in service.get_sessions(db, registered.user.id)] == [result.session.id]

    assert service.login_with_password(db, "reset@example.com", "Renewed789").user.id == registered.user.id
    with pytest.raises(InvalidCredentials):
        service.login_with_password(db, "reset@example.com", PASSWORD)

    actions = db.execute(sa.select(AuditLog.action)).scalars().all()
    assert "password_reset_requested" in actions
    assert "password_reset" in actions


def test_reset_token_is_single_use(db, service):
    service.register_with_password(db, "once@example.com", PASSWORD)
    token = service.request_password_reset(db, "once@example.com")
    service.reset_password(db, token, "Renewed789")
    with pytest.raises(InvalidToken):
        service.reset_password(db, token, "Another789")


def test_reset_request_for_unknown_email_returns_nothing(db, service):
    assert service.request_password_reset(db, "ghost@example.com") is None
    assert service.request_password_reset(db, "not-an-email") is None
    assert _count(db, AuditLog) == 0


def test_access_token_cannot_reset_password(db, service):
    result = service.register_with_password(db, "tok@example.com", PASSWORD)
    with pytest.raises(InvalidToken):
        service.reset_password(db, result.tokens.access_token, "Renewed789")
    with pytest.raises(InvalidToken):
        service.reset_password(db, "garbage", "Renewed789")


def test_reset_rejects_weak_password(db, service):
    service.register_with_password(db, "weakreset@example.com", PASSWORD)
    token = service.request_password_reset(db, "weakreset@example.com")
    with pytest.raises(WeakPassword):
        service.reset_password(db, token, "short")
    assert service.login_with_password(db, "weakreset@example.com", PASSWORD).mode == "password"


# ---- login eligibility ----


def test_can_user_login_from_ledger(db, make_service, ledger):
    service = make_service(ledger)
    address = service.register_with_contract(db, "alice", PASSWORD, "google", "g-1").user.wallet_address

    eligibility = service.can_user_login(db, address)
    assert eligibility.can_login is True
    assert eligibility.auth_methods == ["password", "google", "wallet"]

    ledger.identities["alice"]["is_locked"] = True
    eligibility = service.can_user_login(db, address)
    assert eligibility.can_login is False
    assert eligibility.auth_methods == []


def test_can_user_login_from_store(db, service):
    wallet = fake_address("erin")
    service.register_with_password(db, "erin@example.com", PASSWORD, wallet)

    eligibility = service.can_user_login(db, wallet)
    assert eligibility.can_login is True
    assert eligibility.auth_methods == ["password", "wallet"]

    assert service.can_user_login(db, fake_address("nobody")).can_login is False
    with pytest.raises(ValidationFailed):
        service.can_user_login(db, "not-an-address")
