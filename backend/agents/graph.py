"""Agent dependency graph.

Builds the dependency graph between agents from their selected context
sources: agent B depends on agent A iff one of B's selected sources is A's
output. The user input is an implicit, always-available root and never takes
part in the graph.

Cycles are detected when the graph is built, so a document with a cycle is
rejected before any agent runs.
"""

import heapq
from collections.abc import Iterable

import structlog

from errors import CyclicDependencyError
from models.schemas import AgentSpec, ConfigurationDocument

logger = structlog.get_logger(__name__)


class AgentGraph:
    """Dependency graph over the agents of one document.

    Edges point from an agent to the agents whose output it consumes.
    References to agent ids that are not declared in the document are
    ignored here; validation reports them.

    Raises:
        CyclicDependencyError: On construction, if any agent depends on
            itself directly or transitively.
    """

    def __init__(self, agents: Iterable[AgentSpec]) -> None:
        self._agents: list[AgentSpec] = list(agents)
        self._position: dict[int, int] = {a.id: i for i, a in enumerate(self._agents)}
        self._dependencies: dict[int, list[int]] = {}
        self._dependents: dict[int, list[int]] = {a.id: [] for a in self._agents}

        for agent in self._agents:
            deps = [d for d in agent.upstream_agent_ids if d in self._position]
            self._dependencies[agent.id] = deps
            for dep in deps:
                self._dependents[dep].append(agent.id)

        self._check_cycles()

    @classmethod
    def from_document(cls, document: ConfigurationDocument) -> "AgentGraph":
        return cls(document.agents)

    @property
    def agent_ids(self) -> list[int]:
        """Agent ids in declared order."""
        return [a.id for a in self._agents]

    def dependencies(self, agent_id: int) -> list[int]:
        """Agents whose output ``agent_id`` consumes."""
        return list(self._dependencies[agent_id])

    def dependents(self, agent_id: int) -> list[int]:
        """Agents that consume the output of ``agent_id`` directly."""
        return list(self._dependents[agent_id])

    def transitive_dependents(self, agent_id: int) -> list[int]:
        """Every agent downstream of ``agent_id``, in topological order."""
        seen: set[int] = set()
        stack = list(self._dependents[agent_id])
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._dependents[current])
        return [a for a in self.topological_order() if a in seen]

    def topological_order(self) -> list[int]:
        """Kahn's algorithm; ties go to the agent declared first."""
        remaining = {a: len(deps) for a, deps in self._dependencies.items()}
        ready = [(self._position[a], a) for a, count in remaining.items() if count == 0]
        heapq.heapify(ready)

        order: list[int] = []
        while ready:
            _, agent_id = heapq.heappop(ready)
            order.append(agent_id)
            for dependent in self._dependents[agent_id]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, (self._position[dependent], dependent))
        return order

    def layers(self) -> list[list[int]]:
        """Group agents into layers that can run in parallel.

        Every dependency of an agent in layer N lies in a layer before N.
        """
        depth: dict[int, int] = {}
        for agent_id in self.topological_order():
            deps = self._dependencies[agent_id]
            depth[agent_id] = 1 + max((depth[d] for d in deps), default=-1)

        layers: list[list[int]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
        for agent_id in self.agent_ids:
            layers[depth[agent_id]].append(agent_id)
        return layers

    def _check_cycles(self) -> None:
        """Depth-first search with an in-progress set."""
        done: set[int] = set()
        in_progress: list[int] = []

        def visit(agent_id: int) -> None:
            if agent_id in done:
                return
            if agent_id in in_progress:
                cycle = in_progress[in_progress.index(agent_id):]
                logger.warning("agent_cycle_detected", agent_ids=cycle)
                raise CyclicDependencyError(cycle)
            in_progress.append(agent_id)
            for dep in self._dependencies[agent_id]:
                visit(dep)
            in_progress.pop()
            done.add(agent_id)

        for agent in self._agents:
            visit(agent.id)
