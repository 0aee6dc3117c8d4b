import json
import threading

import pytest

from chaindeploy.ledger import FileLedger, MemoryLedger, make_entry
from chaindeploy.model import DeployResult

ADDRESS = "0x4D1A2e2bB4F88F0250f26Ffff098B0b30B26BF38"


def result(address=ADDRESS, fresh=True, args=()):
    return DeployResult(address=address, freshly_deployed=fresh, constructor_args=args, transaction_hash="0xabc")


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryLedger("sepolia")
    return FileLedger("sepolia", tmp_path / "deployments")


def test_get_missing_returns_none(store):
    assert store.get("Wallet") is None


def test_put_then_get(store):
    store.record("Wallet", result(args=("0x01", 5)))
    entry = store.get("Wallet")
    assert entry.address == ADDRESS
    assert entry.network == "sepolia"
    assert entry.last_run_freshly_deployed is True
    assert tuple(entry.constructor_args) == ("0x01", 5)
    assert entry.transaction_hash == "0xabc"


def test_put_overwrites_wholesale(store):
    store.record("Wallet", result(fresh=True, args=("0x01",)))
    store.record("Wallet", result(fresh=False))
    entry = store.get("Wallet")
    assert entry.last_run_freshly_deployed is False
    assert tuple(entry.constructor_args) == ()
    assert len(store.entries()) == 1


def test_put_rejects_mismatched_key(store):
    entry = make_entry("Wallet", "sepolia", result())
    with pytest.raises(ValueError):
        store.put("WalletFactory", entry)


def test_put_rejects_other_network(store):
    entry = make_entry("Wallet", "mainnet", result())
    with pytest.raises(ValueError):
        store.put("Wallet", entry)


def test_delete_is_explicit(store):
    store.record("Wallet", result())
    assert store.delete("Wallet") is True
    assert store.get("Wallet") is None
    assert store.delete("Wallet") is False


def test_entry_to_result_is_never_fresh(store):
    store.record("Wallet", result(fresh=True))
    assert store.get("Wallet").to_result().freshly_deployed is False


def test_concurrent_writes_are_serialized(store):
    def writer(i):
        store.record(f"Step{i}", result())

    threads = [threading.Thread(target=writer, args=(i,)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(e.step_name for e in store.entries()) == sorted(f"Step{i}" for i in range(20))


# ---------------------------------------------------------------------------
# File layout
# ---------------------------------------------------------------------------

def test_file_layout_is_per_network(tmp_path):
    root = tmp_path / "deployments"
    FileLedger("sepolia", root).record("Wallet", result(address=ADDRESS))
    FileLedger("mainnet", root).record("Wallet", result(address="0x" + "11" * 20))

    stored = json.loads((root / "sepolia" / "Wallet.json").read_text())
    assert stored["address"] == ADDRESS
    assert stored["freshly_deployed"] is True
    assert isinstance(stored["timestamp"], int)

    assert FileLedger("mainnet", root).get("Wallet").address == "0x" + "11" * 20
    assert not list((root / "sepolia").glob("*.tmp"))


def test_file_ledger_survives_reopen(tmp_path):
    FileLedger("sepolia", tmp_path).record("Wallet", result())
    assert FileLedger("sepolia", tmp_path).get("Wallet").address == ADDRESS


def test_file_ledger_rejects_path_like_names(tmp_path):
    store = FileLedger("sepolia", tmp_path)
    with pytest.raises(ValueError):
        store.get("../escape")
    with pytest.raises(ValueError):
        FileLedger("../other", tmp_path)


def test_bytes_and_struct_args_come_back_unchanged(store):
    args = (b"\x01\x02", (ADDRESS, 7, b"\xff"), [1, 2], "0x01")
    store.record("Vault", result(args=args))
    assert store.get("Vault").to_result().constructor_args == args


def test_bytes_args_are_stored_as_hex(tmp_path):
    FileLedger("sepolia", tmp_path).record("Vault", result(args=(b"\xab\xcd", (1, 2))))
    stored = json.loads((tmp_path / "sepolia" / "Vault.json").read_text())
    assert stored["constructor_args"] == [{"bytes": "0xabcd"}, {"tuple": [1, 2]}]


def test_reading_an_unknown_network_creates_nothing(tmp_path):
    store = FileLedger("sepolia", tmp_path)
    assert store.entries() == []
    assert store.get("Wallet") is None
    assert not (tmp_path / "sepolia").exists()
