# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class DeployResult:
    """What a step produced: where the contract lives and how it was built."""
    address: str
    freshly_deployed: bool
    constructor_args: Tuple[Any, ...] = ()
    transaction_hash: str | None = None
    contract: str | None = None


# action(env, deps) -> DeployResult, deps maps dependency step name -> result
StepAction = Callable[[Any, Mapping[str, DeployResult]], DeployResult]


@dataclass(frozen=True)
class Step:
    """
    One named, idempotent deployment unit.

    `dependencies` are tags: a step name, or a group tag carried by other steps.
    A step is always selectable by its own name; `tags` adds extra group tags.
    """
    name: str
    action: StepAction
    dependencies: FrozenSet[str] = frozenset()
    tags: FrozenSet[str] = frozenset()
    verify: bool = True

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Step name must be a non-empty string")
        # accept any iterable of names but store frozensets
        object.__setattr__(self, "dependencies", frozenset(self.dependencies))
        object.__setattr__(self, "tags", frozenset(self.tags))

    @property
    def all_tags(self) -> FrozenSet[str]:
        return self.tags | {self.name}


# Constructor args as JSON. bytes and tuples (struct args) have no JSON
# form of their own, so they are wrapped in a one-key object.
def encode_arg(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return {"bytes": "0x" + bytes(value).hex()}
    if isinstance(value, tuple):
        return {"tuple": [encode_arg(v) for v in value]}
    if isinstance(value, list):
        return [encode_arg(v) for v in value]
    return value


def decode_arg(value: Any) -> Any:
    if isinstance(value, dict) and len(value) == 1:
        if "bytes" in value:
            return bytes.fromhex(value["bytes"][2:])
        if "tuple" in value:
            return tuple(decode_arg(v) for v in value["tuple"])
    if isinstance(value, list):
        return [decode_arg(v) for v in value]
    return value


@dataclass(frozen=True)
class LedgerEntry:
    step_name: str
    network: str
    address: str
    last_run_freshly_deployed: bool
    timestamp: int
    constructor_args: Tuple[Any, ...] = ()
    transaction_hash: str | None = None

    def to_result(self) -> DeployResult:
        """A cached entry as seen by dependents: never freshly deployed."""
        return DeployResult(
            address=self.address,
            freshly_deployed=False,
            constructor_args=tuple(self.constructor_args),
            transaction_hash=self.transaction_hash,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step_name,
            "network": self.network,
            "address": self.address,
            "freshly_deployed": self.last_run_freshly_deployed,
            "timestamp": self.timestamp,
            "constructor_args": [encode_arg(a) for a in self.constructor_args],
            "transaction_hash": self.transaction_hash,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LedgerEntry:
        return cls(
            step_name=data["step"],
            network=data["network"],
            address=data["address"],
            last_run_freshly_deployed=bool(data.get("freshly_deployed", False)),
            timestamp=int(data.get("timestamp", 0)),
            constructor_args=tuple(decode_arg(a) for a in data.get("constructor_args") or ()),
            transaction_hash=data.get("transaction_hash"),
        )


@dataclass(frozen=True)
class ExecutionPlan:
    """Step names in dependency order, plus the parallel layers they came from."""
    order: Tuple[str, ...]
    layers: Tuple[Tuple[str, ...], ...]

    def __iter__(self):
        return iter(self.order)

    def __len__(self) -> int:
        return len(self.order)


class RunState(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    PENDING = "pending"
    SKIPPED = "skipped-already-deployed"
    DEPLOYED = "freshly-deployed"
    FAILED = "failed"


@dataclass(frozen=True)
class VerificationOutcome:
    step_name: str
    address: str
    verified: bool
    reason: str = ""
    skipped: bool = False

    @property
    def label(self) -> str:
        if self.skipped:
            return "verification-skipped"
        if self.verified:
            return "verified"
        return f"verification-failed: {self.reason}"


@dataclass
class StepReport:
    name: str
    status: StepStatus = StepStatus.PENDING
    address: str | None = None
    error: str | None = None
    verification: Optional[VerificationOutcome] = None


@dataclass
class RunReport:
    """
    Outcome of one orchestrator run.

    `results` only holds steps that finished (deployed or skipped); `steps`
    holds a report for every planned step in plan order.
    """
    network: str
    plan: ExecutionPlan
    state: RunState = RunState.PLANNING
    results: Dict[str, DeployResult] = field(default_factory=dict)
    steps: Dict[str, StepReport] = field(default_factory=dict)
    verifications: List[VerificationOutcome] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.state == RunState.COMPLETED

    def status_of(self, name: str) -> StepStatus:
        return self.steps[name].status

    def warnings(self) -> List[str]:
        return [
            f"{v.step_name}: {v.label}"
            for v in self.verifications
            if not v.verified and not v.skipped
        ]

    def raise_for_failure(self) -> None:
        if self.error is not None:
            raise self.error
