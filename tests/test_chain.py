import threading
import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from chaindeploy.artifacts import ArtifactStore
from chaindeploy.chain import NamedAccounts, TransactionFailed, Web3ChainClient
from chaindeploy.create2 import DETERMINISTIC_DEPLOYMENT_PROXY, derive, init_code_hash, pad_salt
from chaindeploy.dsl import contract_step
from chaindeploy.environment import DeployEnvironment
from chaindeploy.model import RunState, StepStatus
from chaindeploy.orchestrator import Orchestrator
from chaindeploy.registry import StepRegistry

DEPLOYER = "0x00000000000000000000000000000000000000aA"
INIT_CODE = bytes.fromhex("6080604052")


class FakeEth:
    """
    Just enough of `w3.eth` for deployments. The nonce count only moves when
    a transaction is mined, and a nonce already in flight is rejected, like a
    real node would.
    """

    def __init__(self):
        self.chain_id = 31337
        self.gas_price = 1
        self.code = {DETERMINISTIC_DEPLOYMENT_PROXY.lower(): b"\x60"}
        self.mined = {}
        self.sent = []
        self.receipt_status = 1
        self.creates_code = True
        self._lock = threading.Lock()

    def get_code(self, address):
        return self.code.get(address.lower(), b"")

    def get_transaction_count(self, address, block_identifier="latest"):
        time.sleep(0.02)
        return self.mined.get(address.lower(), 0)

    def estimate_gas(self, tx):
        return 100_000

    def send_raw_transaction(self, raw):
        with self._lock:
            sender = raw["from"].lower()
            in_flight = {t["nonce"] for t in self.sent if t["from"].lower() == sender}
            if raw["nonce"] < self.mined.get(sender, 0) or raw["nonce"] in in_flight:
                raise ValueError(f"nonce too low: {raw['nonce']}")
            self.sent.append(raw)
            return len(self.sent).to_bytes(32, "big")

    def wait_for_transaction_receipt(self, tx_hash, timeout=None):
        with self._lock:
            tx = self.sent[int.from_bytes(tx_hash, "big") - 1]
            sender = tx["from"].lower()
            self.mined[sender] = self.mined.get(sender, 0) + 1
            if self.receipt_status == 1 and self.creates_code:
                data = tx["data"]
                self.code[derive(data[:32], init_code_hash(data[32:]), tx["to"]).lower()] = b"\x60"
            return {"status": self.receipt_status, "blockNumber": len(self.sent)}


@pytest.fixture
def eth():
    return FakeEth()


@pytest.fixture
def client(eth):
    return Web3ChainClient(MagicMock(eth=eth))


@pytest.fixture
def account():
    acct = MagicMock(address=DEPLOYER)
    acct.sign_transaction.side_effect = lambda tx: SimpleNamespace(raw_transaction=dict(tx))
    return acct


def test_has_code(client, eth):
    assert client.has_code("0x" + "22" * 20) is False
    eth.code[("0x" + "22" * 20)] = b"\x60"
    assert client.has_code("0x" + "22" * 20) is True


def test_deploy_sends_salt_and_init_code_to_proxy(client, eth, account):
    salt = pad_salt("0x7061796d61676963")
    receipt = client.deploy_deterministic(account, salt, INIT_CODE)

    assert receipt.address == derive(salt, init_code_hash(INIT_CODE), DETERMINISTIC_DEPLOYMENT_PROXY)
    assert receipt.transaction_hash == "0x" + "00" * 31 + "01"
    assert receipt.block_number == 1

    (tx,) = eth.sent
    assert tx["to"].lower() == DETERMINISTIC_DEPLOYMENT_PROXY.lower()
    assert tx["data"] == salt + INIT_CODE
    assert tx["nonce"] == 0
    assert tx["value"] == 0
    assert tx["chainId"] == 31337
    assert tx["gas"] == 100_000


def test_missing_proxy_fails_before_sending(client, eth, account):
    del eth.code[DETERMINISTIC_DEPLOYMENT_PROXY.lower()]
    with pytest.raises(TransactionFailed, match="not deployed"):
        client.deploy_deterministic(account, pad_salt("0x01"), INIT_CODE)
    assert eth.sent == []
    account.sign_transaction.assert_not_called()


def test_reverted_transaction(client, eth, account):
    eth.receipt_status = 0
    with pytest.raises(TransactionFailed, match="reverted"):
        client.deploy_deterministic(account, pad_salt("0x01"), INIT_CODE)


def test_mined_without_code_at_expected_address(client, eth, account):
    eth.creates_code = False
    with pytest.raises(TransactionFailed, match="no code"):
        client.deploy_deterministic(account, pad_salt("0x01"), INIT_CODE)


def test_nonce_counter_runs_ahead_of_a_lagging_node(client, eth, account):
    eth.wait_for_transaction_receipt = MagicMock(return_value={"status": 1, "blockNumber": 1})
    eth.creates_code = False

    # receipts never mine here, so the node keeps reporting nonce 0
    for salt in ("0x01", "0x02"):
        with pytest.raises(TransactionFailed, match="no code"):
            client.deploy_deterministic(account, pad_salt(salt), INIT_CODE)

    assert [tx["nonce"] for tx in eth.sent] == [0, 1]


def test_parallel_deploys_from_one_account_get_distinct_nonces(client, eth, account, artifacts_dir, ledger):
    env = DeployEnvironment(
        "testnet",
        client,
        NamedAccounts("testnet", {"deployer": account}),
        ArtifactStore(artifacts_dir),
        ledger,
    )
    registry = StepRegistry([
        contract_step("WalletA", "Wallet", salt="0x01"),
        contract_step("WalletB", "Wallet", salt="0x02"),
    ])

    report = Orchestrator(registry, ledger, client, environment=env, max_workers=2).run()

    assert report.state == RunState.COMPLETED, report.error
    assert report.status_of("WalletA") == StepStatus.DEPLOYED
    assert report.status_of("WalletB") == StepStatus.DEPLOYED
    assert sorted(tx["nonce"] for tx in eth.sent) == [0, 1]
