"""
Identity ledger bridge.

Talks to the ``authentify`` ink! contract through substrate-interface. Every
state-changing call is dry-run first; the dry run's gas requirement is
inflated by a fixed multiplier before the signed extrinsic is submitted.

Connectivity problems surface as ``ChainUnavailable``; explicit contract
errors surface as ``ChainRejected``. Callers decide what each means.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from substrateinterface import ContractInstance, Keypair, SubstrateInterface
from substrateinterface.exceptions import (
    ContractExecFailedException,
    ContractMetadataParseException,
    ContractReadFailedException,
    SubstrateRequestException,
)
from websocket import WebSocketException

from authentify.core.config import settings
from authentify.core.errors import ChainRejected, ChainUnavailable, ConfigurationError

logger = logging.getLogger("authentify.chain")

_CONNECTIVITY_ERRORS = (ConnectionError, TimeoutError, OSError, WebSocketException, SubstrateRequestException)

# Contract errors meaning "the credentials do not match a ledger identity"
REJECTION_REASONS = {"IdentityNotFound", "InvalidCredentials", "AccountLocked"}


@dataclass(frozen=True)
class ChainReceipt:
    extrinsic_hash: str
    block_hash: str | None = None


@dataclass(frozen=True)
class ChainConnection:
    substrate: Any
    contract: Any
    keypair: Any


class IdentityLedger(Protocol):
    def is_available(self) -> bool:
        ...

    def register_on_chain(
        self, username: str, password_commitment: str, social_id_hash: str, social_provider: str
    ) -> ChainReceipt:
        ...

    def authenticate_on_chain(self, username: str, password_commitment: str) -> str | None:
        ...

    def query_auth_methods(self, account_address: str) -> list[str]:
        ...

    def can_user_login(self, account_address: str) -> bool:
        ...

    def close(self) -> None:
        ...


def connect_substrate(
    url: str | None = None,
    contract_address: str | None = None,
    metadata_path: str | None = None,
    signer_uri: str | None = None,
) -> ChainConnection:
    substrate = SubstrateInterface(url=url or settings.SUBSTRATE_WS_ENDPOINT)
    try:
        contract = ContractInstance.create_from_address(
            contract_address=contract_address or settings.CONTRACT_ADDRESS,
            metadata_file=metadata_path or settings.CONTRACT_METADATA_PATH,
            substrate=substrate,
        )
    except FileNotFoundError as exc:
        substrate.close()
        raise ConfigurationError(f"Contract metadata not found at {metadata_path or settings.CONTRACT_METADATA_PATH}") from exc
    except ContractMetadataParseException as exc:
        substrate.close()
        raise ConfigurationError(f"Contract metadata is invalid: {exc}") from exc
    keypair = Keypair.create_from_uri(signer_uri or settings.SERVICE_ACCOUNT_SEED)
    logger.info("connected to %s as %s", substrate.url, keypair.ss58_address)
    return ChainConnection(substrate=substrate, contract=contract, keypair=keypair)


def inflate_gas(gas_required, multiplier: float):
    if isinstance(gas_required, dict):
        return {k: int(math.ceil(int(v) * multiplier)) for k, v in gas_required.items()}
    return int(math.ceil(int(gas_required) * multiplier))


def unwrap_contract_result(value):
    """Peel ink! ``Result`` layers (``{"Ok": ...}`` / ``{"Err": ...}``).

    Returns the innermost ``Ok`` value; raises ``ChainRejected`` on ``Err``.
    """
    while isinstance(value, dict) and len(value) == 1 and ("Ok" in value or "Err" in value):
        if "Err" in value:
            err = value["Err"]
            if isinstance(err, dict):
                reason = next(iter(err), None)
            else:
                reason = str(err)
            raise ChainRejected(f"Contract returned {reason}", reason=reason)
        value = value["Ok"]
    return value


class ContractIdentityBridge:
    def __init__(
        self,
        *,
        connector: Callable[[], ChainConnection] = connect_substrate,
        gas_multiplier: float | None = None,
    ):
        self._connector = connector
        self.gas_multiplier = gas_multiplier or settings.CHAIN_GAS_MULTIPLIER
        self._conn: ChainConnection | None = None
        self._lock = threading.Lock()

    # ---- connection ----

    def _connection(self) -> ChainConnection:
        with self._lock:
            if self._conn is not None:
                return self._conn
        # Connect outside the lock; if two threads race, the first one stored wins.
        try:
            conn = self._connector()
        except _CONNECTIVITY_ERRORS as exc:
            raise ChainUnavailable(f"Cannot reach chain: {exc}") from exc
        except ContractMetadataParseException as exc:
            raise ConfigurationError(f"Contract metadata is invalid: {exc}") from exc
        with self._lock:
            if self._conn is None:
                self._conn = conn
                return conn
            winner = self._conn
        conn.substrate.close()
        return winner

    def _drop_connection(self) -> None:
        with self._lock:
            conn, self._conn = self._conn, None
        if conn is not None:
            try:
                conn.substrate.close()
            except Exception:
                logger.debug("error closing substrate connection", exc_info=True)

    def is_available(self) -> bool:
        try:
            conn = self._connection()
            conn.substrate.get_chain_head()
            return True
        except ChainUnavailable:
            return False
        except _CONNECTIVITY_ERRORS as exc:
            logger.warning("chain liveness check failed: %s", exc)
            self._drop_connection()
            return False

    def close(self) -> None:
        self._drop_connection()

    # ---- contract calls ----

    def _read(self, method: str, args: dict):
        conn = self._connection()
        try:
            return conn.contract.read(conn.keypair, method, args=args)
        except ContractReadFailedException as exc:
            # Trapped or out-of-gas dry run: the node answered, the call did not.
            logger.warning("contract query %s failed: %s", method, exc)
            raise ChainUnavailable(f"Contract query {method} failed: {exc}") from exc
        except _CONNECTIVITY_ERRORS as exc:
            self._drop_connection()
            raise ChainUnavailable(f"Contract query {method} failed: {exc}") from exc

    def register_on_chain(
        self, username: str, password_commitment: str, social_id_hash: str, social_provider: str
    ) -> ChainReceipt:
        args = {
            "username": username,
            "password_hash": password_commitment,
            "social_id_hash": social_id_hash,
            "social_provider": social_provider,
        }
        dry_run = self._read("register_identity", args)
        # Surface contract-level validation errors before paying for the extrinsic.
        unwrap_contract_result(dry_run.contract_result_data.value)
        gas_limit = inflate_gas(dry_run.gas_required, self.gas_multiplier)

        conn = self._connection()
        try:
            receipt = conn.contract.exec(conn.keypair, "register_identity", args=args, gas_limit=gas_limit)
        except ContractExecFailedException as exc:
            logger.warning("register_identity dispatch failed: %s", exc)
            raise ChainUnavailable(f"register_identity submission failed: {exc}") from exc
        except _CONNECTIVITY_ERRORS as exc:
            self._drop_connection()
            raise ChainUnavailable(f"register_identity submission failed: {exc}") from exc

        if not receipt.is_success:
            raise ChainRejected(f"register_identity failed: {receipt.error_message}", reason="ExtrinsicFailed")
        logger.info("identity registered on chain extrinsic=%s", receipt.extrinsic_hash)
        return ChainReceipt(extrinsic_hash=receipt.extrinsic_hash, block_hash=getattr(receipt, "block_hash", None))

    def authenticate_on_chain(self, username: str, password_commitment: str) -> str | None:
        result = self._read("authenticate", {"username": username, "password_hash": password_commitment})
        try:
            account = unwrap_contract_result(result.contract_result_data.value)
        except ChainRejected as exc:
            if exc.reason in REJECTION_REASONS:
                return None
            raise
        return str(account) if account else None

    def get_identity(self, account_address: str) -> dict | None:
        result = self._read("get_identity", {"account": account_address})
        identity = unwrap_contract_result(result.contract_result_data.value)
        return identity or None

    def can_user_login(self, account_address: str) -> bool:
        """True when the account has a ledger identity that is not locked out."""
        identity = self.get_identity(account_address)
        return bool(identity) and not identity.get("is_locked", False)

    def query_auth_methods(self, account_address: str) -> list[str]:
        identity = self.get_identity(account_address)
        if not identity:
            return []
        methods = []
        if identity.get("password_hash"):
            methods.append("password")
        provider = (identity.get("social_provider") or "").strip()
        if provider:
            methods.append(provider)
        methods.append("wallet")
        return methods
