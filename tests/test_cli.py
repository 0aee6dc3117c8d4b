import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from conftest import FakeChain

from chaindeploy.cli import cli
from chaindeploy.ledger import FileLedger
from chaindeploy.model import DeployResult

DEPLOY_SCRIPT = """
from chaindeploy import address_of, contract_step, deployment

def steps():
    return deployment(
        contract_step("Wallet", salt="0x7061796d61676963"),
        contract_step("WalletFactory", args=[address_of("Wallet")], salt="0x7061796d61676963"),
    )
"""

CYCLIC_SCRIPT = """
from chaindeploy import contract_step

STEPS = [contract_step("A", needs=["B"]), contract_step("B", needs=["A"])]
"""


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for var in ("RPC_URL", "LOCALHOST_RPC_URL", "CHAINDEPLOY_LEDGER_DIR", "ARTIFACTS_DIR", "ETHERSCAN_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    (tmp_path / "deploy.py").write_text(DEPLOY_SCRIPT)
    return tmp_path


def test_plan_prints_stages(workdir):
    result = CliRunner().invoke(cli, ["plan", "--tags", "WalletFactory"])
    assert result.exit_code == 0, result.output
    assert "Stage 1: Wallet" in result.output
    assert "Stage 2: WalletFactory" in result.output


def test_plan_with_cycle_exits_nonzero(workdir):
    (workdir / "cyclic.py").write_text(CYCLIC_SCRIPT)
    result = CliRunner().invoke(cli, ["plan", "--script", "cyclic.py"])
    assert result.exit_code == 1
    assert "cycle" in result.output.lower()


def test_missing_script(workdir):
    result = CliRunner().invoke(cli, ["plan", "--script", "nope.py"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_deploy_twice_against_fake_chain(workdir, artifacts_dir, monkeypatch):
    monkeypatch.setenv("DEPLOYER_PRIVATE_KEY", "0x" + "11" * 32)
    chain = FakeChain()
    args = ["deploy", "--network", "localhost", "--tags", "WalletFactory", "--artifacts-dir", str(artifacts_dir)]

    with patch("chaindeploy.cli.Web3ChainClient.from_rpc", return_value=chain):
        first = CliRunner().invoke(cli, args)
        second = CliRunner().invoke(cli, args)

    assert first.exit_code == 0, first.output
    assert "WalletFactory: FRESHLY-DEPLOYED" in first.output
    assert "verification-skipped" in first.output
    assert second.exit_code == 0, second.output
    assert "WalletFactory: SKIPPED-ALREADY-DEPLOYED" in second.output
    assert len(chain.deployed) == 2

    stored = json.loads((workdir / "deployments" / "localhost" / "WalletFactory.json").read_text())
    wallet = json.loads((workdir / "deployments" / "localhost" / "Wallet.json").read_text())
    assert stored["constructor_args"] == [wallet["address"]]


def test_deploy_without_deployer_key_fails(workdir, artifacts_dir, monkeypatch):
    monkeypatch.delenv("DEPLOYER_PRIVATE_KEY", raising=False)
    monkeypatch.delenv("LOCALHOST_DEPLOYER_PRIVATE_KEY", raising=False)
    with patch("chaindeploy.cli.Web3ChainClient.from_rpc", return_value=FakeChain()):
        result = CliRunner().invoke(
            cli, ["deploy", "--network", "localhost", "--artifacts-dir", str(artifacts_dir)],
        )
    assert result.exit_code == 1
    assert "FAILED" in result.output


def test_ledger_show_and_forget(workdir):
    store = FileLedger("sepolia", workdir / "deployments")
    store.record("Wallet", DeployResult(address="0x" + "11" * 20, freshly_deployed=True))

    shown = CliRunner().invoke(cli, ["ledger", "show", "--network", "sepolia", "--ledger-dir", "deployments"])
    assert shown.exit_code == 0
    assert "Wallet: 0x" + "11" * 20 in shown.output

    forgot = CliRunner().invoke(
        cli, ["ledger", "forget", "Wallet", "--network", "sepolia", "--ledger-dir", "deployments", "--yes"],
    )
    assert forgot.exit_code == 0
    assert store.get("Wallet") is None

    again = CliRunner().invoke(
        cli, ["ledger", "forget", "Wallet", "--network", "sepolia", "--ledger-dir", "deployments", "--yes"],
    )
    assert again.exit_code == 1


def test_ledger_show_does_not_create_directories(workdir):
    result = CliRunner().invoke(cli, ["ledger", "show", "--network", "sepoila", "--ledger-dir", "deployments"])
    assert result.exit_code == 0
    assert "No deployments recorded" in result.output
    assert not (workdir / "deployments" / "sepoila").exists()


def test_ledger_commands_reject_bad_network_names_cleanly(workdir):
    shown = CliRunner().invoke(cli, ["ledger", "show", "--network", "../x", "--ledger-dir", "deployments"])
    assert shown.exit_code == 1
    assert "not usable as a directory" in shown.output
    assert not isinstance(shown.exception, ValueError)

    forgot = CliRunner().invoke(cli, ["ledger", "forget", "Wallet", "--network", "../x", "--yes"])
    assert forgot.exit_code == 1
    assert "not usable as a directory" in forgot.output
