# artifacts.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from eth_abi import encode

from .errors import ArtifactNotFound

DEFAULT_ARTIFACTS_DIR = "artifacts"


def _abi_type(param: Dict[str, Any]) -> str:
    """ABI type string for one input, expanding tuples: (address,uint256)[]."""
    t = param["type"]
    if not t.startswith("tuple"):
        return t
    inner = ",".join(_abi_type(c) for c in param.get("components", []))
    return f"({inner}){t[len('tuple'):]}"


def _strip_0x(s: str) -> str:
    return s[2:] if s[:2] in ("0x", "0X") else s


@dataclass
class Artifact:
    """A compiled contract as emitted by hardhat (artifacts/<source>/<Name>.json)."""
    contract_name: str
    source_name: str
    abi: List[Dict[str, Any]]
    bytecode: str
    path: Path
    _build_info: Optional[Dict[str, Any]] = field(default=None, repr=False)

    @classmethod
    def from_file(cls, path: Path) -> Artifact:
        data = json.loads(path.read_text(encoding="utf-8"))
        return cls(
            contract_name=data["contractName"],
            source_name=data.get("sourceName", ""),
            abi=data.get("abi", []),
            bytecode=data.get("bytecode", "0x"),
            path=path,
        )

    def constructor_types(self) -> List[str]:
        for item in self.abi:
            if item.get("type") == "constructor":
                return [_abi_type(i) for i in item.get("inputs", [])]
        return []

    def encode_constructor_args(self, args: Sequence[Any]) -> bytes:
        types = self.constructor_types()
        if len(types) != len(args):
            raise ValueError(
                f"{self.contract_name} constructor takes {len(types)} argument(s), got {len(args)}"
            )
        if not types:
            return b""
        return encode(types, list(args))

    def init_code(self, args: Sequence[Any] = ()) -> bytes:
        code = bytes.fromhex(_strip_0x(self.bytecode))
        if not code:
            raise ValueError(f"{self.contract_name} has no creation bytecode (abstract or interface?)")
        return code + self.encode_constructor_args(args)

    @property
    def fully_qualified_name(self) -> str:
        return f"{self.source_name}:{self.contract_name}"

    def build_info(self) -> Dict[str, Any]:
        """
        Compiler input + version, via the sibling <Name>.dbg.json pointer.
        Needed only for source verification.
        """
        if self._build_info is None:
            dbg = self.path.with_name(f"{self.contract_name}.dbg.json")
            if not dbg.exists():
                raise ArtifactNotFound(self.contract_name, str(dbg))
            pointer = json.loads(dbg.read_text(encoding="utf-8"))["buildInfo"]
            info_path = (dbg.parent / pointer).resolve()
            if not info_path.exists():
                raise ArtifactNotFound(self.contract_name, str(info_path))
            self._build_info = json.loads(info_path.read_text(encoding="utf-8"))
        return self._build_info


class ArtifactStore:
    """Looks up artifacts by contract name under a hardhat artifacts directory."""

    def __init__(self, root: str | Path = DEFAULT_ARTIFACTS_DIR):
        self.root = Path(root).resolve()
        self._cache: Dict[str, Artifact] = {}

    def load(self, contract: str) -> Artifact:
        if contract in self._cache:
            return self._cache[contract]

        candidates = sorted(
            p for p in self.root.rglob(f"{contract}.json")
            if "build-info" not in p.parts
        ) if self.root.exists() else []
        if not candidates:
            raise ArtifactNotFound(contract, str(self.root))
        if len(candidates) > 1:
            raise ValueError(
                f"Ambiguous artifact name '{contract}': "
                f"{[str(c.relative_to(self.root)) for c in candidates]}"
            )

        artifact = Artifact.from_file(candidates[0])
        self._cache[contract] = artifact
        return artifact
