import hashlib
import json
import threading

import pytest

from chaindeploy.chain import ChainClient, DeploymentReceipt
from chaindeploy.create2 import derive, init_code_hash
from chaindeploy.ledger import MemoryLedger
from chaindeploy.model import DeployResult, Step


def addr(name: str) -> str:
    return "0x" + hashlib.sha256(name.encode()).hexdigest()[:40]


class FakeChain(ChainClient):
    """In-memory chain: a set of addresses with code, plus a log of deployments."""

    def __init__(self):
        self.code = set()
        self.deployed = []
        self._lock = threading.Lock()

    def has_code(self, address):
        return address.lower() in self.code

    def put_code(self, address):
        with self._lock:
            self.code.add(address.lower())

    def wipe(self):
        self.code.clear()

    def deploy_deterministic(self, account, salt, init_code, factory):
        address = derive(salt, init_code_hash(init_code), factory)
        self.put_code(address)
        self.deployed.append((address, bytes(init_code)))
        return DeploymentReceipt(address=address, transaction_hash="0x" + "ab" * 32, block_number=1)


class Calls:
    """Thread-safe record of which actions ran and what they were given."""

    def __init__(self):
        self.items = []
        self._lock = threading.Lock()

    def add(self, name, deps):
        with self._lock:
            self.items.append((name, dict(deps)))

    @property
    def names(self):
        return [n for n, _ in self.items]

    def deps_of(self, name):
        for n, deps in self.items:
            if n == name:
                return deps
        raise KeyError(name)

    def clear(self):
        self.items.clear()


def make_step(name, chain, calls, needs=(), *, tags=(), fail=None, verify=True, on_run=None):
    """
    Step whose action "deploys" to a deterministic fake address.

    `fail` may be a callable returning True while the action should raise.
    """
    def action(env, deps):
        calls.add(name, deps)
        if on_run is not None:
            on_run(name, deps)
        if fail is not None and fail():
            raise RuntimeError(f"{name} exploded")
        address = addr(name)
        chain.put_code(address)
        args = tuple(d.address for _, d in sorted(deps.items()))
        return DeployResult(address=address, freshly_deployed=True, constructor_args=args, contract=name)

    return Step(name=name, action=action, dependencies=frozenset(needs), tags=frozenset(tags), verify=verify)


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def calls():
    return Calls()


@pytest.fixture
def ledger():
    return MemoryLedger("testnet")


def _write_artifact(root, contract, *, bytecode, ctor_inputs, build_info="abc123"):
    source = f"contracts/{contract}.sol"
    d = root / source
    d.mkdir(parents=True, exist_ok=True)
    abi = []
    if ctor_inputs is not None:
        abi.append({"type": "constructor", "inputs": ctor_inputs, "stateMutability": "nonpayable"})
    (d / f"{contract}.json").write_text(json.dumps({
        "contractName": contract,
        "sourceName": source,
        "abi": abi,
        "bytecode": bytecode,
    }))
    (d / f"{contract}.dbg.json").write_text(json.dumps({"buildInfo": f"../../build-info/{build_info}.json"}))


@pytest.fixture
def artifacts_dir(tmp_path):
    root = tmp_path / "artifacts"
    _write_artifact(root, "Wallet", bytecode="0x6080604052", ctor_inputs=None)
    _write_artifact(
        root,
        "WalletFactory",
        bytecode="0x608060405234",
        ctor_inputs=[{"name": "wallet", "type": "address", "internalType": "address"}],
    )
    info = root / "build-info"
    info.mkdir(parents=True, exist_ok=True)
    (info / "abc123.json").write_text(json.dumps({
        "solcLongVersion": "0.8.20+commit.a1b79de6",
        "input": {"language": "Solidity", "sources": {}},
    }))
    return root
