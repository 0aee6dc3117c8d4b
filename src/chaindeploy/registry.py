# registry.py
from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Set

from .errors import CyclicDependency, DuplicateStep, UnknownStep
from .model import Step

ALL = "all"


class StepRegistry:
    """
    Every known step, by name, plus an index of group tags.

    Dependencies are resolved lazily (at closure time) so steps can be
    registered in any order.
    """

    def __init__(self, steps: Iterable[Step] = ()):
        self._steps: Dict[str, Step] = {}
        self.register_all(steps)

    def register(self, step: Step) -> Step:
        if step.name in self._steps:
            raise DuplicateStep(step.name)
        if step.name in step.dependencies:
            raise CyclicDependency([step.name])
        self._steps[step.name] = step
        return step

    def register_all(self, steps: Iterable[Step]) -> None:
        for s in steps:
            self.register(s)

    def resolve(self, name: str) -> Step:
        try:
            return self._steps[name]
        except KeyError:
            raise UnknownStep(name, known=list(self._steps)) from None

    def resolve_tag(self, tag: str, *, referenced_by: str | None = None) -> List[Step]:
        """A step name resolves to that step; a group tag to every step carrying it."""
        if tag in self._steps:
            return [self._steps[tag]]
        tagged = [s for s in self._steps.values() if tag in s.tags]
        if not tagged:
            raise UnknownStep(tag, referenced_by=referenced_by, known=list(self._steps))
        return sorted(tagged, key=lambda s: s.name)

    def dependencies_of(self, step: Step) -> List[Step]:
        out: Dict[str, Step] = {}
        for tag in sorted(step.dependencies):
            for dep in self.resolve_tag(tag, referenced_by=step.name):
                out[dep.name] = dep
        return list(out.values())

    def transitive_closure(self, names: Iterable[str]) -> Set[Step]:
        """
        Requested tags plus everything they depend on, directly or not.

        The sentinel "all" selects every registered step.
        """
        requested = list(names)
        if ALL in requested:
            requested = [n for n in requested if n != ALL] + list(self._steps)

        seen: Dict[str, Step] = {}
        stack: List[Step] = []
        for tag in requested:
            stack.extend(self.resolve_tag(tag))

        while stack:
            step = stack.pop()
            if step.name in seen:
                continue
            seen[step.name] = step
            stack.extend(d for d in self.dependencies_of(step) if d.name not in seen)

        return set(seen.values())

    def names(self) -> List[str]:
        return sorted(self._steps)

    def __contains__(self, name: object) -> bool:
        return name in self._steps

    def __iter__(self) -> Iterator[Step]:
        return iter(self._steps.values())

    def __len__(self) -> int:
        return len(self._steps)
