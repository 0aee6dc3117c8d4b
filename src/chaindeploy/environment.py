# environment.py
from __future__ import annotations

import logging
from typing import Any, Sequence

from .artifacts import ArtifactStore
from .chain import ChainClient, NamedAccounts
from .create2 import DETERMINISTIC_DEPLOYMENT_PROXY, derive, init_code_hash, pad_salt
from .errors import AddressDerivationError, UnknownStep
from .ledger import DeploymentLedger
from .model import DeployResult, LedgerEntry

logger = logging.getLogger(__name__)


class DeployEnvironment:
    """
    Everything a step action can touch during a run: the network, its chain
    client, named accounts, compiled artifacts and the ledger (read-only here).
    """

    def __init__(
        self,
        network: str,
        chain: ChainClient,
        accounts: NamedAccounts,
        artifacts: ArtifactStore,
        ledger: DeploymentLedger,
        *,
        default_role: str = "deployer",
        factory: str = DETERMINISTIC_DEPLOYMENT_PROXY,
    ):
        self.network = network
        self.chain = chain
        self.accounts = accounts
        self.artifacts = artifacts
        self.ledger = ledger
        self.default_role = default_role
        self.factory = factory

    def get(self, step_name: str) -> LedgerEntry:
        """Recorded deployment of another step on this network."""
        entry = self.ledger.get(step_name)
        if entry is None:
            raise UnknownStep(step_name)
        return entry

    def named_account(self, role: str | None = None) -> str:
        return self.accounts.address(role or self.default_role)

    def predict_address(self, contract: str, *, args: Sequence[Any] = (), salt=None) -> str:
        artifact = self.artifacts.load(contract)
        return derive(pad_salt(salt), init_code_hash(artifact.init_code(args)), self.factory)

    def deploy(
        self,
        contract: str,
        *,
        args: Sequence[Any] = (),
        salt=None,
        from_role: str | None = None,
    ) -> DeployResult:
        """
        Deploy `contract` through the CREATE2 proxy.

        The address is computed first; if code already lives there nothing is
        sent and the result is marked as not freshly deployed.
        """
        args = tuple(args)
        artifact = self.artifacts.load(contract)
        salt_b = pad_salt(salt)
        init_code = artifact.init_code(args)
        address = derive(salt_b, init_code_hash(init_code), self.factory)

        if self.chain.has_code(address):
            logger.info("reusing %s at %s", contract, address)
            return DeployResult(address=address, freshly_deployed=False, constructor_args=args, contract=contract)

        account = self.accounts.get(from_role or self.default_role)
        logger.info("deploying %s from %s (expected address %s)", contract, account.address, address)
        receipt = self.chain.deploy_deterministic(account, salt_b, init_code, self.factory)

        if receipt.address.lower() != address.lower():
            raise AddressDerivationError(
                f"{contract} landed at {receipt.address}, expected {address}"
            )

        logger.info("deployed %s at %s (tx %s)", contract, receipt.address, receipt.transaction_hash)
        return DeployResult(
            address=receipt.address,
            freshly_deployed=True,
            constructor_args=args,
            transaction_hash=receipt.transaction_hash,
            contract=contract,
        )
