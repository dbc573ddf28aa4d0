"""Tests for agents/graph.py -- dependency graph, ordering and cycles."""

import pytest

from agents.graph import AgentGraph
from errors import CyclicDependencyError
from models.schemas import ConfigurationDocument

from tests.conftest import agent_source, make_agent, make_document, three_agent_document, user_source


def _graph(agents: list[dict]) -> AgentGraph:
    return AgentGraph.from_document(ConfigurationDocument.model_validate(make_document(agents)))


class TestEdges:
    def test_chain_dependencies(self) -> None:
        graph = _graph(three_agent_document()["agents"])
        assert graph.dependencies(1) == []
        assert graph.dependencies(2) == [1]
        assert graph.dependencies(3) == [1, 2]
        assert graph.dependents(1) == [2, 3]

    def test_unselected_source_is_not_an_edge(self) -> None:
        graph = _graph(
            [
                make_agent(1, "{user_input}"),
                make_agent(2, "{user_input}", sources=[user_source(), agent_source(1, selected=False)]),
            ]
        )
        assert graph.dependencies(2) == []

    def test_unknown_agent_reference_is_ignored(self) -> None:
        graph = _graph([make_agent(1, "{agent_9_output}", sources=[agent_source(9)])])
        assert graph.dependencies(1) == []

    def test_transitive_dependents(self) -> None:
        graph = _graph(
            [
                make_agent(1, "a"),
                make_agent(2, "b", sources=[agent_source(1)]),
                make_agent(3, "c", sources=[agent_source(2)]),
                make_agent(4, "d"),
            ]
        )
        assert graph.transitive_dependents(1) == [2, 3]
        assert graph.transitive_dependents(4) == []


class TestOrdering:
    def test_topological_order_of_chain(self) -> None:
        assert _graph(three_agent_document()["agents"]).topological_order() == [1, 2, 3]

    def test_declared_order_breaks_ties(self) -> None:
        graph = _graph(
            [
                make_agent(5, "a"),
                make_agent(2, "b"),
                make_agent(9, "c", sources=[agent_source(2)]),
                make_agent(1, "d"),
            ]
        )
        assert graph.topological_order() == [5, 2, 9, 1]

    def test_dependency_declared_later_runs_first(self) -> None:
        graph = _graph(
            [
                make_agent(1, "a", sources=[agent_source(2)]),
                make_agent(2, "b"),
            ]
        )
        assert graph.topological_order() == [2, 1]

    def test_order_is_stable(self) -> None:
        agents = three_agent_document()["agents"]
        assert _graph(agents).topological_order() == _graph(agents).topological_order()

    def test_layers(self) -> None:
        graph = _graph(
            [
                make_agent(1, "a"),
                make_agent(2, "b"),
                make_agent(3, "c", sources=[agent_source(1), agent_source(2)]),
            ]
        )
        assert graph.layers() == [[1, 2], [3]]


class TestCycles:
    def test_two_agent_cycle_names_both(self) -> None:
        with pytest.raises(CyclicDependencyError) as exc_info:
            _graph(
                [
                    make_agent(1, "a"),
                    make_agent(2, "b", sources=[agent_source(3)]),
                    make_agent(3, "c", sources=[agent_source(2)]),
                ]
            )
        assert sorted(exc_info.value.agent_ids) == [2, 3]
        assert exc_info.value.to_dict()["code"] == "cyclic_dependency"

    def test_self_reference_is_a_cycle(self) -> None:
        with pytest.raises(CyclicDependencyError) as exc_info:
            _graph([make_agent(1, "a", sources=[agent_source(1)])])
        assert exc_info.value.agent_ids == [1]

    def test_longer_cycle(self) -> None:
        with pytest.raises(CyclicDependencyError) as exc_info:
            _graph(
                [
                    make_agent(1, "a", sources=[agent_source(3)]),
                    make_agent(2, "b", sources=[agent_source(1)]),
                    make_agent(3, "c", sources=[agent_source(2)]),
                ]
            )
        assert sorted(exc_info.value.agent_ids) == [1, 2, 3]
