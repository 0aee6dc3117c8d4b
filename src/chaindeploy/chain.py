# chain.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Mapping

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .create2 import DETERMINISTIC_DEPLOYMENT_PROXY, derive, init_code_hash, salt_bytes
from .errors import ConfigError, DeployError, UnknownAccount

logger = logging.getLogger(__name__)


class TransactionFailed(DeployError):
    pass


@dataclass(frozen=True)
class DeploymentReceipt:
    address: str
    transaction_hash: str | None
    block_number: int | None = None


class ChainClient:
    """
    What the engine needs from a chain: an existence check and a way to
    submit a deterministic deployment. Gas, nonces and retries belong here,
    not in the orchestrator.
    """

    def has_code(self, address: str) -> bool:
        raise NotImplementedError

    def deploy_deterministic(
        self,
        account: LocalAccount,
        salt: bytes,
        init_code: bytes,
        factory: str = DETERMINISTIC_DEPLOYMENT_PROXY,
    ) -> DeploymentReceipt:
        raise NotImplementedError


class Web3ChainClient(ChainClient):
    """
    web3-backed client. Safe to share between worker threads: sends from one
    account are serialized and nonces are handed out locally, so two deploys
    in flight never reuse a nonce.
    """

    def __init__(self, w3: Web3, *, receipt_timeout: int = 180):
        self.w3 = w3
        self.receipt_timeout = receipt_timeout
        self._guard = threading.Lock()
        self._send_locks: Dict[str, threading.Lock] = {}
        self._next_nonce: Dict[str, int] = {}

    @classmethod
    def from_rpc(cls, rpc_url: str, **kwargs) -> Web3ChainClient:
        w3 = Web3(Web3.HTTPProvider(rpc_url))
        if not w3.is_connected():
            raise ConfigError(f"Could not connect to the RPC URL at {rpc_url}")
        logger.info("Connected to %s (chain id %s)", rpc_url, w3.eth.chain_id)
        return cls(w3, **kwargs)

    def chain_id(self) -> int:
        return self.w3.eth.chain_id

    def has_code(self, address: str) -> bool:
        code = self.w3.eth.get_code(Web3.to_checksum_address(address))
        return len(code) > 0

    def deploy_deterministic(
        self,
        account: LocalAccount,
        salt: bytes,
        init_code: bytes,
        factory: str = DETERMINISTIC_DEPLOYMENT_PROXY,
    ) -> DeploymentReceipt:
        """
        Send salt ++ init_code to the CREATE2 proxy and wait for the receipt.

        The resulting address is known up front; the receipt is only trusted
        once code shows up there.
        """
        salt = salt_bytes(salt)
        factory = Web3.to_checksum_address(factory)
        expected = derive(salt, init_code_hash(init_code), factory)

        if not self.has_code(factory):
            raise TransactionFailed(
                f"Deterministic deployment proxy {factory} is not deployed on chain {self.chain_id()}"
            )

        tx = {
            "from": account.address,
            "to": factory,
            "data": salt + init_code,
            "value": 0,
            "chainId": self.chain_id(),
            "gasPrice": self.w3.eth.gas_price,
        }
        tx_hash = self._send(account, tx)
        logger.info("Deployment transaction sent: %s (expecting %s)", Web3.to_hex(tx_hash), expected)

        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt["status"] != 1:
            raise TransactionFailed(f"Deployment transaction {Web3.to_hex(tx_hash)} reverted")
        if not self.has_code(expected):
            raise TransactionFailed(f"Transaction {Web3.to_hex(tx_hash)} mined but no code at {expected}")

        return DeploymentReceipt(
            address=expected,
            transaction_hash=Web3.to_hex(tx_hash),
            block_number=receipt["blockNumber"],
        )

    def _send_lock(self, address: str) -> threading.Lock:
        with self._guard:
            return self._send_locks.setdefault(address.lower(), threading.Lock())

    def _send(self, account: LocalAccount, tx: dict):
        # The lock covers nonce pick through broadcast. The node's pending
        # count can lag a just-sent transaction, so the local counter wins.
        key = account.address.lower()
        with self._send_lock(key):
            nonce = max(
                self.w3.eth.get_transaction_count(account.address, "pending"),
                self._next_nonce.get(key, 0),
            )
            tx = dict(tx, nonce=nonce)
            tx["gas"] = self.w3.eth.estimate_gas(tx)
            signed = account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            self._next_nonce[key] = nonce + 1
        return tx_hash


class NamedAccounts:
    """Logical role names ("deployer", ...) -> signing accounts for one network."""

    def __init__(self, network: str, accounts: Mapping[str, LocalAccount]):
        self.network = network
        self._accounts: Dict[str, LocalAccount] = dict(accounts)

    @classmethod
    def from_keys(cls, network: str, keys: Mapping[str, str]) -> NamedAccounts:
        return cls(network, {role: Account.from_key(key) for role, key in keys.items()})

    def get(self, role: str) -> LocalAccount:
        try:
            return self._accounts[role]
        except KeyError:
            raise UnknownAccount(role, self.network) from None

    def address(self, role: str) -> str:
        return self.get(role).address

    def roles(self) -> list[str]:
        return sorted(self._accounts)
