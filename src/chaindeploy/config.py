# config.py
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional

from dotenv import load_dotenv

from .artifacts import DEFAULT_ARTIFACTS_DIR
from .errors import ConfigError
from .ledger import DEFAULT_LEDGER_DIR
from .verify import DEFAULT_TIMEOUT

LOCAL_NETWORKS = frozenset({"hardhat", "localhost", "anvil", "ganache", "development"})
LOCAL_RPC_URL = "http://127.0.0.1:8545"


def env_prefix(network: str) -> str:
    """'base-sepolia' -> 'BASE_SEPOLIA'"""
    return re.sub(r"[^A-Za-z0-9]+", "_", network).strip("_").upper()


@dataclass(frozen=True)
class Settings:
    network: str
    rpc_url: str
    account_keys: Dict[str, str] = field(default_factory=dict, repr=False)
    etherscan_api_url: Optional[str] = None
    etherscan_api_key: Optional[str] = field(default=None, repr=False)
    verify_timeout: float = DEFAULT_TIMEOUT
    ledger_dir: Path = Path(DEFAULT_LEDGER_DIR)
    artifacts_dir: Path = Path(DEFAULT_ARTIFACTS_DIR)

    @property
    def is_local(self) -> bool:
        return self.network in LOCAL_NETWORKS

    @property
    def can_verify(self) -> bool:
        return not self.is_local and bool(self.etherscan_api_url and self.etherscan_api_key)


def _first(env: Mapping[str, str], *names: str) -> Optional[str]:
    for n in names:
        v = env.get(n)
        if v:
            return v
    return None


def load_settings(
    network: str,
    *,
    roles: Iterable[str] = ("deployer",),
    env: Optional[Mapping[str, str]] = None,
    dotenv_path: str | Path | None = None,
) -> Settings:
    """
    Read settings for `network` from the environment (after loading .env).

    Per-network variables win over global ones:
      SEPOLIA_RPC_URL > RPC_URL
      SEPOLIA_DEPLOYER_PRIVATE_KEY > DEPLOYER_PRIVATE_KEY
    Roles without a key are left out; asking for them later raises UnknownAccount.
    """
    if env is None:
        load_dotenv(dotenv_path)
        env = os.environ

    if not network:
        raise ConfigError("network name is required")
    prefix = env_prefix(network)

    rpc_url = _first(env, f"{prefix}_RPC_URL", "RPC_URL")
    if not rpc_url:
        if network not in LOCAL_NETWORKS:
            raise ConfigError(f"No RPC URL for network '{network}' (set {prefix}_RPC_URL)")
        rpc_url = LOCAL_RPC_URL

    keys: Dict[str, str] = {}
    for role in roles:
        role_prefix = env_prefix(role)
        key = _first(env, f"{prefix}_{role_prefix}_PRIVATE_KEY", f"{role_prefix}_PRIVATE_KEY")
        if key:
            keys[role] = key

    raw_timeout = env.get("VERIFY_TIMEOUT")
    try:
        verify_timeout = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT
    except ValueError:
        raise ConfigError(f"VERIFY_TIMEOUT must be a number of seconds, got {raw_timeout!r}") from None
    if verify_timeout <= 0:
        raise ConfigError("VERIFY_TIMEOUT must be positive")

    return Settings(
        network=network,
        rpc_url=rpc_url,
        account_keys=keys,
        etherscan_api_url=_first(env, f"{prefix}_ETHERSCAN_API_URL", "ETHERSCAN_API_URL"),
        etherscan_api_key=_first(env, f"{prefix}_ETHERSCAN_API_KEY", "ETHERSCAN_API_KEY"),
        verify_timeout=verify_timeout,
        ledger_dir=Path(env.get("CHAINDEPLOY_LEDGER_DIR") or DEFAULT_LEDGER_DIR),
        artifacts_dir=Path(env.get("ARTIFACTS_DIR") or DEFAULT_ARTIFACTS_DIR),
    )
