"""Dependency resolution for tool batches.

The resolver assigns stable ids, repairs dependency references and produces
a deterministic execution order. Bad input never raises: every repair is
reported as a warning and logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence

from .types import ExecutionMode, ToolInvocation, new_invocation_id

__all__ = [
    "ResolutionPlan",
    "DependencyResolver",
    "regenerate_duplicate_ids",
    "chain_sequential",
    "resolve",
    "validate",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ResolutionPlan:
    """Outcome of resolving a batch.

    Attributes:
        declared: Repaired invocations in declaration order.
        ordered: Repaired invocations in execution order.
        levels: Readiness groups; every dependency of a group sits in an
            earlier group. Cycle members form the last group.
        warnings: Repairs applied to the batch.
        cycle_ids: Ids of invocations that could not be ordered.
    """

    declared: list[ToolInvocation] = field(default_factory=list)
    ordered: list[ToolInvocation] = field(default_factory=list)
    levels: list[list[ToolInvocation]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    cycle_ids: list[str] = field(default_factory=list)

    @property
    def has_cycle(self) -> bool:
        return bool(self.cycle_ids)


# -----------------------------------------------------------------------------
# Batch repairs
# -----------------------------------------------------------------------------


def regenerate_duplicate_ids(
    invocations: Iterable[ToolInvocation],
    id_factory: Callable[[], str] = new_invocation_id,
) -> list[str]:
    """Give every repeated id a fresh one, in place. Returns warnings."""
    warnings: list[str] = []
    seen: set[str] = set()
    for invocation in invocations:
        if not invocation.id or invocation.id in seen:
            old_id = invocation.id
            new_id = id_factory()
            while new_id in seen:
                new_id = id_factory()
            invocation.id = new_id
            if old_id:
                warnings.append(f"Duplicate tool id '{old_id}' replaced with '{new_id}'")
        seen.add(invocation.id)
    return warnings


def chain_sequential(invocations: Sequence[ToolInvocation]) -> None:
    """Make every invocation without a dependency depend on its predecessor, in place.

    An invocation the predecessor already waits on (directly or through a
    chain) is left alone so chaining never introduces a cycle.
    """
    by_id = {invocation.id: invocation for invocation in invocations}
    previous: ToolInvocation | None = None
    for invocation in invocations:
        if previous is not None and not invocation.depends_on:
            if invocation.id not in _ancestors(previous, by_id):
                invocation.depends_on = previous.id
        previous = invocation


def _ancestors(invocation: ToolInvocation, by_id: dict[str, ToolInvocation]) -> set[str]:
    seen: set[str] = set()
    current = invocation.depends_on
    while current and current not in seen:
        seen.add(current)
        parent = by_id.get(current)
        current = parent.depends_on if parent is not None else None
    return seen


def _condition_edges(invocations: Sequence[ToolInvocation], *, later_only: bool = False) -> None:
    """Hold a guarded invocation until the result its condition inspects exists.

    With ``later_only`` only sources declared after the guarded invocation get
    an edge; earlier sources are already ordered by sequential chaining.
    """
    position = {invocation.id: index for index, invocation in enumerate(invocations)}
    for index, invocation in enumerate(invocations):
        condition = invocation.condition
        if invocation.depends_on or condition is None:
            continue
        source = position.get(condition.source_id)
        if source is None or source == index:
            continue
        if later_only and source < index:
            continue
        invocation.depends_on = condition.source_id


def _drop_bad_references(invocations: Sequence[ToolInvocation]) -> list[str]:
    warnings: list[str] = []
    known = {invocation.id for invocation in invocations}
    for invocation in invocations:
        target = invocation.depends_on
        if not target:
            invocation.depends_on = None
            continue
        if target == invocation.id:
            warnings.append(f"Tool '{invocation.id}' depends on itself; dependency dropped")
            invocation.depends_on = None
        elif target not in known:
            warnings.append(
                f"Tool '{invocation.id}' depends on unknown tool '{target}'; dependency dropped"
            )
            invocation.depends_on = None
    return warnings


# -----------------------------------------------------------------------------
# Resolver
# -----------------------------------------------------------------------------


class DependencyResolver:
    """Orders a batch of invocations by their ``depends_on`` edges.

    The caller's invocations are never mutated; every method works on copies.
    """

    def __init__(self, *, id_factory: Callable[[], str] = new_invocation_id) -> None:
        self._id_factory = id_factory

    def validate(self, invocations: Sequence[ToolInvocation]) -> list[str]:
        """Return the warnings resolving ``invocations`` would produce."""
        return self.resolve_plan(invocations, ExecutionMode.PARALLEL).warnings

    def resolve(self, invocations: Sequence[ToolInvocation], mode: ExecutionMode | str) -> list[ToolInvocation]:
        """Return repaired copies of ``invocations`` in execution order."""
        return self.resolve_plan(invocations, mode).ordered

    def resolve_plan(
        self,
        invocations: Sequence[ToolInvocation],
        mode: ExecutionMode | str,
    ) -> ResolutionPlan:
        """Repair and linearize a batch.

        Args:
            invocations: Batch in declaration order.
            mode: Batch mode; ``SEQUENTIAL`` chains invocations that declare
                no dependency onto their predecessor.

        Returns:
            The resolution plan.
        """
        mode = ExecutionMode.coerce(mode)
        batch = [invocation.copy() for invocation in invocations]
        plan = ResolutionPlan()

        plan.warnings.extend(regenerate_duplicate_ids(batch, self._id_factory))
        if mode is ExecutionMode.SEQUENTIAL:
            _condition_edges(batch, later_only=True)
            chain_sequential(batch)
        else:
            _condition_edges(batch)
        plan.warnings.extend(_drop_bad_references(batch))
        plan.declared = batch

        scheduled: set[str] = set()
        remaining = list(batch)
        while remaining:
            ready = [
                invocation
                for invocation in remaining
                if not invocation.depends_on or invocation.depends_on in scheduled
            ]
            if not ready:
                break
            plan.levels.append(ready)
            plan.ordered.extend(ready)
            scheduled.update(invocation.id for invocation in ready)
            ready_ids = {invocation.id for invocation in ready}
            remaining = [invocation for invocation in remaining if invocation.id not in ready_ids]

        if remaining:
            plan.cycle_ids = [invocation.id for invocation in remaining]
            leftover = set(plan.cycle_ids)
            for invocation in remaining:
                if invocation.depends_on in leftover:
                    invocation.depends_on = None
            plan.levels.append(remaining)
            plan.ordered.extend(remaining)
            plan.warnings.append(
                "Dependency cycle detected between tools "
                + ", ".join(f"'{item}'" for item in plan.cycle_ids)
                + "; running them in declaration order"
            )

        for warning in plan.warnings:
            LOGGER.warning(warning)
        return plan


_DEFAULT_RESOLVER = DependencyResolver()


def resolve(invocations: Sequence[ToolInvocation], mode: ExecutionMode | str) -> list[ToolInvocation]:
    """Resolve with a default resolver."""
    return _DEFAULT_RESOLVER.resolve(invocations, mode)


def validate(invocations: Sequence[ToolInvocation]) -> list[str]:
    """Validate with a default resolver."""
    return _DEFAULT_RESOLVER.validate(invocations)
