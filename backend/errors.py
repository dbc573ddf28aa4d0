"""Error taxonomy for the pipeline core.

Every error derives from PipelineError and carries enough structured detail
(offending agent ids, field paths, versions) for a caller to render an
actionable message via ``to_dict()`` without inspecting internals.

Structural errors (UnknownVersionError, CyclicDependencyError,
DocumentValidationError) abort a run before any generation call is made.
GenerationError and RunCancelledError are contained to individual agents and
are recorded on their runtime state rather than raised out of the orchestrator.
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from versioning.migration import MigrationPlan


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    code = "pipeline_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> dict[str, Any]:
        """Structured, JSON-serializable detail for this error."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details()}


class UnknownVersionError(PipelineError):
    """A document declares a schema version the registry cannot resolve."""

    code = "unknown_version"

    def __init__(
        self,
        version: str | None,
        known_versions: list[str] | None = None,
        reason: str | None = None,
    ) -> None:
        self.version = version
        self.known_versions = list(known_versions or [])
        self.reason = reason or "version is not registered"
        super().__init__(f"Unsupported configuration version {version!r}: {self.reason}")

    def details(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "known_versions": self.known_versions,
            "reason": self.reason,
        }


class MigrationIncompleteError(PipelineError):
    """A mandatory field mapping could not produce a value.

    The partial plan is attached so the caller can decide whether to supply
    values (via user changes) or abort.
    """

    code = "migration_incomplete"

    def __init__(self, plan: "MigrationPlan", missing_paths: list[str]) -> None:
        self.plan = plan
        self.missing_paths = list(missing_paths)
        super().__init__(
            f"Migration to {plan.target_version} is missing required values: "
            + ", ".join(self.missing_paths)
        )

    def details(self) -> dict[str, Any]:
        return {
            "source_version": self.plan.source_version,
            "target_version": self.plan.target_version,
            "missing_paths": self.missing_paths,
        }


class MigrationRejectedError(PipelineError):
    """The reviewer rejected a pending migration plan."""

    code = "migration_rejected"

    def __init__(self, source_version: str, reason: str | None = None) -> None:
        self.source_version = source_version
        self.reason = reason
        message = f"Migration from {source_version} was rejected"
        if reason:
            message += f": {reason}"
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {"source_version": self.source_version, "reason": self.reason}


class MigrationRequiredError(PipelineError):
    """A document must be migrated before it can be executed."""

    code = "migration_required"

    def __init__(self, version: str | None, current_version: str) -> None:
        self.version = version
        self.current_version = current_version
        super().__init__(
            f"Configuration version {version!r} must be migrated to {current_version} before running"
        )

    def details(self) -> dict[str, Any]:
        return {"version": self.version, "current_version": self.current_version}


class CyclicDependencyError(PipelineError):
    """Agents reference each other's outputs in a cycle."""

    code = "cyclic_dependency"

    def __init__(self, agent_ids: list[int]) -> None:
        self.agent_ids = list(agent_ids)
        chain = " -> ".join(str(a) for a in [*self.agent_ids, self.agent_ids[0]])
        super().__init__(f"Cyclic context dependency between agents: {chain}")

    def details(self) -> dict[str, Any]:
        return {"agent_ids": self.agent_ids}


class DocumentValidationError(PipelineError):
    """A configuration document failed structural or semantic validation."""

    code = "validation_error"

    def __init__(self, errors: list[str], warnings: list[str] | None = None) -> None:
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__("Configuration is invalid: " + "; ".join(self.errors))

    def details(self) -> dict[str, Any]:
        return {"errors": self.errors, "warnings": self.warnings}


class GenerationError(PipelineError):
    """The generation collaborator failed to produce text."""

    code = "generation_error"

    def __init__(
        self,
        message: str,
        agent_id: int | None = None,
        cause: str | None = None,
    ) -> None:
        self.agent_id = agent_id
        self.cause = cause
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {"agent_id": self.agent_id, "cause": self.cause}


class OutputParseError(GenerationError):
    """Generated text does not satisfy the agent's declared output format."""

    code = "output_parse_error"


class RunCancelledError(PipelineError):
    """A run was cancelled while an agent was in flight."""

    code = "cancelled"

    def __init__(self, run_id: str, agent_id: int | None = None) -> None:
        self.run_id = run_id
        self.agent_id = agent_id
        super().__init__(f"Run {run_id} was cancelled")

    def details(self) -> dict[str, Any]:
        return {"run_id": self.run_id, "agent_id": self.agent_id}


class InvalidTransitionError(PipelineError):
    """An agent was asked to move to a state not reachable from its current one."""

    code = "invalid_transition"

    def __init__(self, agent_id: int, from_state: str, to_state: str) -> None:
        self.agent_id = agent_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Agent {agent_id} cannot move from {from_state} to {to_state}"
        )

    def details(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "from_state": self.from_state,
            "to_state": self.to_state,
        }


class RunNotFoundError(PipelineError):
    """No run is registered under the given id."""

    code = "run_not_found"

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")

    def details(self) -> dict[str, Any]:
        return {"run_id": self.run_id}


class ConfigurationNotFoundError(PipelineError):
    """The persistence collaborator has no document under the given id."""

    code = "configuration_not_found"

    def __init__(self, config_id: str) -> None:
        self.config_id = config_id
        super().__init__(f"Configuration not found: {config_id}")

    def details(self) -> dict[str, Any]:
        return {"config_id": self.config_id}
