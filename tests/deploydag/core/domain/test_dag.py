"""Tests for deploydag.core.domain.dag module."""

import pytest

from deploydag.core.domain.dag import (
    CycleDetectedError,
    DuplicateStageError,
    MissingDependencyError,
    StageGraph,
    StageSpec,
)
from deploydag.core.domain.run import StageAction
from deploydag.core.triggers import always


class TestStageSpec:
    def test_defaults(self) -> None:
        stage = StageSpec("deploy-qa", environment="qa")
        assert stage.action is StageAction.DEPLOY
        assert stage.deps == frozenset()
        assert stage.trigger is always
        assert stage.retry.max_attempts == 3
        assert stage.timeout is None
        assert not stage.rollback_on_failure

    def test_after_adds_dependencies(self) -> None:
        base = StageSpec("deploy-uat", environment="uat")
        chained = base.after("deploy-qa").after("validate")
        assert chained.deps == frozenset({"deploy-qa", "validate"})
        assert base.deps == frozenset()

    def test_frozen(self) -> None:
        stage = StageSpec("validate", environment="qa")
        with pytest.raises(AttributeError):
            stage.name = "other"  # type: ignore[misc]

    def test_repr(self) -> None:
        stage = StageSpec("deploy-qa", environment="qa").after("validate")
        assert repr(stage) == "StageSpec('deploy-qa', deploy -> qa, deps=['validate'])"


class TestStageGraph:
    @pytest.fixture
    def graph(self) -> StageGraph:
        return StageGraph([
            StageSpec("validate", "qa", action=StageAction.VALIDATE),
            StageSpec("deploy-qa", "qa").after("validate"),
            StageSpec("lint", "qa").after("validate"),
            StageSpec("deploy-uat", "uat").after("deploy-qa"),
            StageSpec("deploy-prod", "prod").after("deploy-uat", "lint"),
        ])

    def test_waves(self, graph: StageGraph) -> None:
        assert graph.waves() == [
            ["validate"],
            ["deploy-qa", "lint"],
            ["deploy-uat"],
            ["deploy-prod"],
        ]

    def test_waves_cached_until_add(self, graph: StageGraph) -> None:
        first = graph.waves()
        assert graph.waves() is first
        graph.add(StageSpec("smoke", "prod").after("deploy-prod"))
        assert graph.waves()[-1] == ["smoke"]

    def test_dependencies_and_dependents(self, graph: StageGraph) -> None:
        assert graph.get_dependencies("deploy-prod") == frozenset({"deploy-uat", "lint"})
        assert graph.get_dependents("validate") == {"deploy-qa", "lint"}
        with pytest.raises(KeyError):
            graph.get_dependents("missing")

    def test_validate_ok(self, graph: StageGraph) -> None:
        graph.validate()

    def test_duplicate_stage(self, graph: StageGraph) -> None:
        with pytest.raises(DuplicateStageError):
            graph.add(StageSpec("validate", "qa"))

    def test_missing_dependency(self) -> None:
        graph = StageGraph([StageSpec("deploy-qa", "qa").after("validate")])
        with pytest.raises(MissingDependencyError, match="missing stage 'validate'"):
            graph.validate()

    def test_cycle(self) -> None:
        graph = StageGraph([
            StageSpec("a", "qa").after("c"),
            StageSpec("b", "qa").after("a"),
            StageSpec("c", "qa").after("b"),
        ])
        with pytest.raises(CycleDetectedError, match="Cycle detected"):
            graph.validate()
        with pytest.raises(CycleDetectedError):
            graph.waves()

    def test_detect_cycle_self_loop(self) -> None:
        assert StageGraph.detect_cycle({"a": {"a"}}) == "Cycle detected: a -> a"

    def test_container_protocol(self, graph: StageGraph) -> None:
        assert len(graph) == 5
        assert "lint" in graph
        assert "smoke" not in graph
        assert [s.name for s in graph][0] == "validate"
