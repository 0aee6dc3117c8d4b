# dsl.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Union

from .model import DeployResult, Step, StepAction


# ---------------------------------------------------------------------
# Constructor argument references
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Ref:
    """Placeholder for another step's deployed address inside constructor args."""
    step: str

    def resolve(self, deps: Mapping[str, DeployResult]) -> str:
        try:
            return deps[self.step].address
        except KeyError:
            raise KeyError(
                f"address_of({self.step!r}) used but '{self.step}' is not a resolved dependency"
            ) from None


def address_of(step: str) -> Ref:
    return Ref(step)


ArgsSpec = Union[Sequence[Any], Callable[[Mapping[str, DeployResult]], Sequence[Any]], None]


def _refs_in(args: ArgsSpec) -> List[str]:
    if args is None or callable(args):
        return []
    return [a.step for a in args if isinstance(a, Ref)]


def _resolve_args(args: ArgsSpec, deps: Mapping[str, DeployResult]) -> List[Any]:
    if args is None:
        return []
    if callable(args):
        return list(args(deps))
    return [a.resolve(deps) if isinstance(a, Ref) else a for a in args]


# ---------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------

def deploy_contract(
    contract: str,
    *,
    args: ArgsSpec = None,
    salt=None,
    from_role: str | None = None,
) -> StepAction:
    """
    Action that deploys `contract` deterministically via env.deploy().

    `args` is a list (may contain address_of(...) refs) or a callable
    taking the dependency results and returning the list.
    """
    def action(env, deps: Mapping[str, DeployResult]) -> DeployResult:
        return env.deploy(
            contract,
            args=_resolve_args(args, deps),
            salt=salt,
            from_role=from_role,
        )

    action.__name__ = f"deploy_{contract}"
    return action


# ---------------------------------------------------------------------
# Functional helpers
# ---------------------------------------------------------------------

def step(
    name: str,
    action: StepAction,
    *,
    needs: Optional[Iterable[str]] = None,
    tags: Optional[Iterable[str]] = None,
    verify: bool = True,
) -> Step:
    return Step(
        name=name,
        action=action,
        dependencies=frozenset(needs or ()),
        tags=frozenset(tags or ()),
        verify=verify,
    )


def contract_step(
    name: str,
    contract: str | None = None,
    *,
    args: ArgsSpec = None,
    needs: Optional[Iterable[str]] = None,
    tags: Optional[Iterable[str]] = None,
    salt=None,
    from_role: str | None = None,
    verify: bool = True,
) -> Step:
    """
    The common case: one step deploys one contract.

        contract_step("WalletFactory", args=[address_of("Wallet")], salt="0x7061796d61676963")

    Steps named in address_of(...) are added to `needs` automatically.
    """
    deps = set(needs or ()) | set(_refs_in(args))
    return step(
        name,
        deploy_contract(contract or name, args=args, salt=salt, from_role=from_role),
        needs=deps,
        tags=tags,
        verify=verify,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class StepBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._tags: list[str] = []
        self._action: Optional[StepAction] = None
        self._verify = True

    def depends_on(self, *names: str):
        self._needs.extend(names)
        return self

    def tagged(self, *tags: str):
        self._tags.extend(tags)
        return self

    def deploys(self, contract: str | None = None, *args: Any, salt=None, from_role: str | None = None):
        self._action = deploy_contract(contract or self.name, args=list(args), salt=salt, from_role=from_role)
        self._needs.extend(_refs_in(args))
        return self

    def runs(self, action: StepAction):
        self._action = action
        return self

    def skip_verification(self):
        self._verify = False
        return self

    def build(self) -> Step:
        if self._action is None:
            raise ValueError(f"Step '{self.name}' has no action (call .deploys() or .runs())")
        return step(self.name, self._action, needs=self._needs, tags=self._tags, verify=self._verify)


def build(name: str) -> StepBuilder:
    """Convenience: build('Wallet').deploys().build()"""
    return StepBuilder(name)


def deployment(*steps: Step) -> List[Step]:
    """
    Deploy script helper:

        def steps():
            return deployment(
                contract_step("Wallet"),
                contract_step("WalletFactory", args=[address_of("Wallet")]),
            )
    """
    return list(steps)
