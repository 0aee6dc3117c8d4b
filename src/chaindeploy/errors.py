# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence


class DeployError(Exception):
    """Base class for every error chaindeploy raises on purpose."""


# ----------------------------------------------------------------------
# Planning (fatal, nothing has touched the chain yet)
# ----------------------------------------------------------------------

@dataclass
class UnknownStep(DeployError):
    name: str
    referenced_by: str | None = None
    known: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        msg = f"Unknown step or tag '{self.name}'"
        if self.referenced_by:
            msg += f" (dependency of '{self.referenced_by}')"
        if self.known:
            msg += f". Known steps: {sorted(self.known)}"
        return msg


@dataclass
class DuplicateStep(DeployError):
    name: str

    def __str__(self) -> str:
        return f"Step '{self.name}' is already registered"


@dataclass
class CyclicDependency(DeployError):
    stuck: Sequence[str]

    def __str__(self) -> str:
        return f"Dependency cycle detected. Unresolvable steps: {sorted(self.stuck)}"


# ----------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------

@dataclass
class StepExecutionFailed(DeployError):
    step_name: str
    cause: BaseException

    def __str__(self) -> str:
        return f"Step '{self.step_name}' failed: {type(self.cause).__name__}: {self.cause}"


@dataclass
class InvalidSalt(DeployError):
    salt: object
    reason: str

    def __str__(self) -> str:
        return f"Invalid salt {self.salt!r}: {self.reason}"


class AddressDerivationError(DeployError):
    pass


@dataclass
class VerificationError(DeployError):
    """Raised inside verifiers only; always turned into a failed outcome."""
    address: str
    reason: str

    def __str__(self) -> str:
        return f"Verification of {self.address} failed: {self.reason}"


# ----------------------------------------------------------------------
# Collaborators / configuration
# ----------------------------------------------------------------------

@dataclass
class UnknownAccount(DeployError):
    role: str
    network: str

    def __str__(self) -> str:
        return f"No account configured for role '{self.role}' on network '{self.network}'"


@dataclass
class ArtifactNotFound(DeployError):
    contract: str
    searched: str

    def __str__(self) -> str:
        return f"No compiled artifact for '{self.contract}' under {self.searched}"


class ConfigError(DeployError):
    pass
