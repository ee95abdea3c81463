"""Stage DAG primitives: StageSpec and StageGraph.

A pipeline is a directed acyclic graph of stages. ``StageGraph.waves()``
sorts it into topological layers; stages inside a layer have no dependency
relation and may run concurrently.
"""

from __future__ import annotations

import sys
from collections import defaultdict
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum, auto

from deploydag.core.domain.run import StageAction
from deploydag.core.retry import RetryConfig
from deploydag.core.triggers import TriggerPredicate, always

_EMPTY_SET: frozenset[str] = frozenset()


class Color(Enum):
    """Colors for DFS cycle detection algorithm."""

    WHITE = auto()  # Unvisited
    GRAY = auto()  # In recursion stack
    BLACK = auto()  # Completely processed


class StageGraphError(Exception):
    """Base exception for StageGraph structural errors."""

    __slots__ = ()


class CycleDetectedError(StageGraphError):
    __slots__ = ()


class MissingDependencyError(StageGraphError):
    __slots__ = ()


class DuplicateStageError(StageGraphError):
    __slots__ = ()


@dataclass(frozen=True, slots=True)
class StageSpec:
    """Immutable definition of one pipeline stage.

    Supports fluent chaining via ``.after()``::

        deploy_qa = StageSpec("deploy-qa", environment="qa").after("validate")
    """

    name: str
    environment: str
    action: StageAction = StageAction.DEPLOY
    deps: frozenset[str] = field(default_factory=frozenset)
    trigger: TriggerPredicate = always
    trigger_description: str = "always"
    retry: RetryConfig = field(default_factory=RetryConfig)
    timeout: float | None = None
    rollback_on_failure: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", sys.intern(self.name))
        object.__setattr__(self, "deps", frozenset(sys.intern(d) for d in self.deps))

    def after(self, *stage_names: str) -> StageSpec:
        """Return a copy of this stage that also depends on ``stage_names``."""
        return replace(self, deps=self.deps | frozenset(stage_names))

    def __repr__(self) -> str:
        deps = f", deps={sorted(self.deps)}" if self.deps else ""
        return f"StageSpec('{self.name}', {self.action.value} -> {self.environment}{deps})"


class StageGraph:
    """A DAG of StageSpec instances with cycle detection and wave sorting."""

    def __init__(self, stages: list[StageSpec] | None = None) -> None:
        self.stages: dict[str, StageSpec] = {}
        self._forward_edges: defaultdict[str, set[str]] = defaultdict(set)
        self._waves_cache: list[list[str]] | None = None
        for stage in stages or []:
            self.add(stage)

    @staticmethod
    def detect_cycle(graph: Mapping[str, set[str] | frozenset[str]]) -> str | None:
        """Detect cycles in a dependency graph using DFS with three-state coloring.

        >>> StageGraph.detect_cycle({"a": {"b"}, "b": {"c"}, "c": {"a"}})
        'Cycle detected: a -> b -> c -> a'
        >>> StageGraph.detect_cycle({"a": {"b"}, "b": set()}) is None
        True
        """
        colors = dict.fromkeys(graph, Color.WHITE)

        def dfs(node: str, path: list[str]) -> str | None:
            if colors[node] == Color.GRAY:
                cycle = path[path.index(node) :] + [node]
                return f"Cycle detected: {' -> '.join(cycle)}"
            if colors[node] == Color.BLACK:
                return None

            colors[node] = Color.GRAY
            path.append(node)
            for dep in sorted(graph.get(node, _EMPTY_SET)):
                if dep in colors and (result := dfs(dep, path)):
                    return result
            path.pop()
            colors[node] = Color.BLACK
            return None

        for node in graph:
            if colors[node] == Color.WHITE and (result := dfs(node, [])):
                return result
        return None

    def add(self, stage: StageSpec) -> StageGraph:
        """Add a stage. Dependencies are checked later by ``validate()``."""
        if stage.name in self.stages:
            raise DuplicateStageError(f"Stage '{stage.name}' already exists in the pipeline")
        self.stages[stage.name] = stage
        self._forward_edges[stage.name]  # ensure key exists
        for dep in stage.deps:
            self._forward_edges[dep].add(stage.name)
        self._waves_cache = None
        return self

    def get_dependencies(self, stage_name: str) -> frozenset[str]:
        if stage_name not in self.stages:
            raise KeyError(f"Stage '{stage_name}' not found in pipeline")
        return self.stages[stage_name].deps

    def get_dependents(self, stage_name: str) -> set[str]:
        if stage_name not in self.stages:
            raise KeyError(f"Stage '{stage_name}' not found in pipeline")
        return set(self._forward_edges.get(stage_name, _EMPTY_SET))

    def validate(self) -> None:
        """Check for missing dependencies and cycles.

        Raises
        ------
        MissingDependencyError
            If a stage depends on a stage that does not exist.
        CycleDetectedError
            If the dependency graph has a cycle.
        """
        missing = [
            f"Stage '{name}' depends on missing stage '{dep}'"
            for name, stage in self.stages.items()
            for dep in sorted(stage.deps)
            if dep not in self.stages
        ]
        if missing:
            raise MissingDependencyError("; ".join(missing))

        graph = {name: stage.deps for name, stage in self.stages.items()}
        if cycle_message := self.detect_cycle(graph):
            raise CycleDetectedError(cycle_message)

    def waves(self) -> list[list[str]]:
        """Compute execution waves by topological sorting (cached).

        For ``validate -> deploy-qa -> deploy-uat`` plus ``validate -> lint``
        this returns ``[["validate"], ["deploy-qa", "lint"], ["deploy-uat"]]``.

        Raises
        ------
        CycleDetectedError
            If no stage with zero in-degree remains.
        """
        if self._waves_cache is not None:
            return self._waves_cache

        in_degrees = {name: len(stage.deps) for name, stage in self.stages.items()}
        waves: list[list[str]] = []
        while in_degrees:
            current_wave = [name for name, degree in in_degrees.items() if degree == 0]
            if not current_wave:
                raise CycleDetectedError(
                    f"No stages with zero in-degree found. Remaining stages: {list(in_degrees)}"
                )
            waves.append(sorted(current_wave))
            for name in current_wave:
                del in_degrees[name]
                for dependent in self._forward_edges.get(name, _EMPTY_SET):
                    if dependent in in_degrees:
                        in_degrees[dependent] -= 1

        self._waves_cache = waves
        return waves

    def __len__(self) -> int:
        return len(self.stages)

    def __contains__(self, stage_name: object) -> bool:
        return stage_name in self.stages

    def __iter__(self) -> Iterator[StageSpec]:
        return iter(self.stages.values())

    def __repr__(self) -> str:
        return f"StageGraph({len(self.stages)} stages: {list(self.stages)})"
