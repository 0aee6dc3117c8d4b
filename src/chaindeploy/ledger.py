# ledger.py
from __future__ import annotations

import json
import logging
import os
import re
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

from .model import DeployResult, LedgerEntry

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Deployment ledger
# ---------------------------------------------------------------------
# One record per (network, step name):
#
#   root/
#     <network>/
#       <step>.json   {address, freshly_deployed, timestamp, constructor_args, ...}
#
# Records are overwritten wholesale, never appended. The orchestrator never
# deletes; `delete` exists for the `ledger forget` admin command.
# ---------------------------------------------------------------------

DEFAULT_LEDGER_DIR = "deployments"

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_.\-]+$")


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False, default=str)


def make_entry(step_name: str, network: str, result: DeployResult, *, now: int | None = None) -> LedgerEntry:
    return LedgerEntry(
        step_name=step_name,
        network=network,
        address=result.address,
        last_run_freshly_deployed=result.freshly_deployed,
        timestamp=int(time.time()) if now is None else now,
        constructor_args=tuple(result.constructor_args),
        transaction_hash=result.transaction_hash,
    )


class DeploymentLedger:
    """
    Ledger interface bound to one network.

    Subclasses implement _read/_write/_remove/_names; locking lives here so
    every store gets serialized writes.
    """

    def __init__(self, network: str):
        if not network:
            raise ValueError("ledger needs a network identifier")
        self.network = network
        self._lock = threading.Lock()

    def get(self, step_name: str) -> Optional[LedgerEntry]:
        return self._read(step_name)

    def put(self, step_name: str, entry: LedgerEntry) -> None:
        if entry.step_name != step_name:
            raise ValueError(f"entry for '{entry.step_name}' stored under '{step_name}'")
        if entry.network != self.network:
            raise ValueError(
                f"entry for network '{entry.network}' stored in '{self.network}' ledger"
            )
        with self._lock:
            self._write(step_name, entry)
        logger.debug("ledger[%s] %s -> %s", self.network, step_name, entry.address)

    def record(self, step_name: str, result: DeployResult) -> LedgerEntry:
        entry = make_entry(step_name, self.network, result)
        self.put(step_name, entry)
        return entry

    def delete(self, step_name: str) -> bool:
        """Administrative removal. Returns False if nothing was recorded."""
        with self._lock:
            return self._remove(step_name)

    def entries(self) -> List[LedgerEntry]:
        out = []
        for name in sorted(self._names()):
            entry = self._read(name)
            if entry is not None:
                out.append(entry)
        return out

    # ---- storage hooks ----
    def _read(self, step_name: str) -> Optional[LedgerEntry]:
        raise NotImplementedError

    def _write(self, step_name: str, entry: LedgerEntry) -> None:
        raise NotImplementedError

    def _remove(self, step_name: str) -> bool:
        raise NotImplementedError

    def _names(self) -> List[str]:
        raise NotImplementedError


class MemoryLedger(DeploymentLedger):
    """Process-local ledger for tests and dry runs."""

    def __init__(self, network: str):
        super().__init__(network)
        self._data: Dict[str, LedgerEntry] = {}

    def _read(self, step_name: str) -> Optional[LedgerEntry]:
        return self._data.get(step_name)

    def _write(self, step_name: str, entry: LedgerEntry) -> None:
        self._data[step_name] = entry

    def _remove(self, step_name: str) -> bool:
        return self._data.pop(step_name, None) is not None

    def _names(self) -> List[str]:
        return list(self._data)


class FileLedger(DeploymentLedger):
    """
    JSON-file ledger. A write is durable once put() returns:
    the record goes to a temp file, is fsynced, then renamed over the old one.
    """

    def __init__(self, network: str, root: str | Path = DEFAULT_LEDGER_DIR):
        super().__init__(network)
        if not _SAFE_NAME.match(network):
            raise ValueError(f"network name not usable as a directory: {network!r}")
        self.root = Path(root).resolve()
        self.dir = self.root / network

    def path_for(self, step_name: str) -> Path:
        if not _SAFE_NAME.match(step_name):
            raise ValueError(f"step name not usable as a file name: {step_name!r}")
        return self.dir / f"{step_name}.json"

    def _read(self, step_name: str) -> Optional[LedgerEntry]:
        p = self.path_for(step_name)
        if not p.exists():
            return None
        data = json.loads(p.read_text(encoding="utf-8"))
        data.setdefault("step", step_name)
        data.setdefault("network", self.network)
        return LedgerEntry.from_dict(data)

    def _write(self, step_name: str, entry: LedgerEntry) -> None:
        p = self.path_for(step_name)
        self.dir.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(".json.tmp")
        try:
            with tmp.open("w", encoding="utf-8") as f:
                f.write(_json_dumps_stable(entry.to_dict()))
                f.flush()
                os.fsync(f.fileno())
            tmp.replace(p)
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)

    def _remove(self, step_name: str) -> bool:
        p = self.path_for(step_name)
        if not p.exists():
            return False
        p.unlink()
        return True

    def _names(self) -> List[str]:
        if not self.dir.is_dir():
            return []
        return [p.stem for p in self.dir.glob("*.json")]
