"""Trigger events and stage trigger predicates.

Branch gating is expressed as typed predicates over a :class:`RunContext`
instead of string comparisons spread through CI configuration::

    condition = TriggerCondition(branches=["develop", "release/*"])
    predicate = condition.compile()
    predicate(context)  # True when the run's branch matches
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from deploydag.core.domain.run import StageStatus

_BRANCH_REF_PREFIX = "refs/heads/"


class TriggerEvent(BaseModel):
    """A push or pull-request event that starts a run."""

    model_config = ConfigDict(frozen=True)

    branch: str = Field(min_length=1)
    revision: str = Field(min_length=1)
    actor: str = "unknown"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> TriggerEvent:
        """Build an event from a webhook-style payload.

        Accepts either the flat ``{branch, revision, actor}`` shape or a
        git-hosting push payload (``ref``, ``after``, ``pusher``/``sender``).

        >>> TriggerEvent.from_payload(
        ...     {"ref": "refs/heads/develop", "after": "abc123", "sender": {"login": "kim"}}
        ... ).branch
        'develop'
        """
        branch = payload.get("branch") or payload.get("ref", "")
        if branch.startswith(_BRANCH_REF_PREFIX):
            branch = branch[len(_BRANCH_REF_PREFIX) :]
        revision = payload.get("revision") or payload.get("after") or payload.get("sha", "")
        actor = payload.get("actor")
        if actor is None:
            sender = payload.get("sender") or {}
            pusher = payload.get("pusher") or {}
            actor = sender.get("login") or pusher.get("name") or "unknown"
        return cls(branch=branch, revision=revision, actor=actor)


@dataclass(slots=True)
class RunContext:
    """What a trigger predicate may look at."""

    event: TriggerEvent
    stage_status: Mapping[str, StageStatus] = field(default_factory=dict)
    approvals: frozenset[str] = frozenset()

    @property
    def branch(self) -> str:
        return self.event.branch

    def upstream_succeeded(self, *stages: str) -> bool:
        return all(self.stage_status.get(s) is StageStatus.SUCCEEDED for s in stages)


TriggerPredicate = Callable[[RunContext], bool]


def always(_context: RunContext) -> bool:
    """Default trigger: the stage runs whenever its upstream stages succeed."""
    return True


class TriggerCondition(BaseModel):
    """Declarative trigger, as written under a stage's ``when:`` key.

    Empty lists mean "no constraint". Patterns use shell-style globbing.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    branches: list[str] = Field(default_factory=list)
    exclude_branches: list[str] = Field(default_factory=list)
    actors: list[str] = Field(default_factory=list)

    def matches(self, context: RunContext) -> bool:
        branch = context.branch
        if self.branches and not any(fnmatchcase(branch, p) for p in self.branches):
            return False
        if any(fnmatchcase(branch, p) for p in self.exclude_branches):
            return False
        if self.actors and context.event.actor not in self.actors:
            return False
        return True

    def compile(self) -> TriggerPredicate:
        return self.matches

    def describe(self) -> str:
        parts = []
        if self.branches:
            parts.append(f"branch in {self.branches}")
        if self.exclude_branches:
            parts.append(f"branch not in {self.exclude_branches}")
        if self.actors:
            parts.append(f"actor in {self.actors}")
        return " and ".join(parts) or "always"


def branch_is(*branches: str) -> TriggerPredicate:
    """Shorthand predicate for exact branch names."""
    return TriggerCondition(branches=list(branches)).compile()
