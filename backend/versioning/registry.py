"""Schema version registry.

The registry holds the known configuration schema versions and the migration
steps registered between them. It answers one question for a loaded document:
is it current, can it be migrated (and along which versions), or is it
unsupported.

Versions form a directed graph: an edge ``a -> b`` exists iff a MigrationStep
is registered from ``a`` to ``b``. A multi-version migration is the
composition of the steps along the shortest path; ties are broken by
registration order so the chosen path is stable.
"""

from collections import deque
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from errors import MigrationRequiredError, UnknownVersionError
from versioning import paths
from versioning.transforms import is_registered

logger = structlog.get_logger(__name__)


class _RuleModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class FieldMapping(_RuleModel):
    """Move (and optionally transform) the value at ``old_path`` to ``new_path``.

    Attributes:
        old_path: Path read from the step's input document.
        new_path: Path written in the step's output document.
        transformation: Name of a registered pure transformation, or None.
        requires_user_input: The mapped value is a best-effort guess that a
            reviewer must confirm.
        required: A value must be produced; a missing source with no default
            makes the migration incomplete.
        default: Written when the source is absent (``None`` means no default).
    """

    old_path: str
    new_path: str
    transformation: str | None = None
    requires_user_input: bool = False
    required: bool = False
    default: Any = None

    @model_validator(mode="after")
    def _check_paths(self) -> "FieldMapping":
        old_wildcards = paths.wildcard_count(self.old_path)
        new_wildcards = paths.wildcard_count(self.new_path)
        if old_wildcards != new_wildcards:
            raise ValueError(
                f"Mapping {self.old_path} -> {self.new_path} must use the same "
                "number of array wildcards on both sides"
            )
        if not is_registered(self.transformation):
            raise ValueError(f"Unknown transformation: {self.transformation}")
        return self


class FieldDefault(_RuleModel):
    """A field introduced by a step, filled in wherever it is absent."""

    path: str
    value: Any


class MigrationStep(_RuleModel):
    """Rules for migrating a document from one exact version to the next."""

    from_version: str
    to_version: str
    description: str = ""
    field_mappings: list[FieldMapping] = Field(default_factory=list)
    removed_fields: list[str] = Field(default_factory=list)
    defaults: list[FieldDefault] = Field(default_factory=list)
    tag_mappings: dict[str, str] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.from_version}_to_{self.to_version}"

    @property
    def deprecated_fields(self) -> list[str]:
        """Paths that no longer exist after this step."""
        fields = [m.old_path for m in self.field_mappings if m.old_path != m.new_path]
        fields.extend(self.removed_fields)
        return list(dict.fromkeys(fields))

    @property
    def new_fields(self) -> list[str]:
        """Paths introduced by this step."""
        fields = [m.new_path for m in self.field_mappings if m.old_path != m.new_path]
        fields.extend(d.path for d in self.defaults)
        return list(dict.fromkeys(fields))


class CompatibilityStatus(StrEnum):
    CURRENT = "current"
    MIGRATABLE = "migratable"


class CompatibilityResult(BaseModel):
    """Resolution of a declared version against the registry.

    ``path`` lists every version traversed, starting with the declared version
    and ending with the target. It is empty when the status is CURRENT.
    """

    model_config = ConfigDict(frozen=True)

    version: str
    status: CompatibilityStatus
    path: list[str] = Field(default_factory=list)

    @property
    def is_current(self) -> bool:
        return self.status == CompatibilityStatus.CURRENT

    @property
    def target_version(self) -> str | None:
        return self.path[-1] if self.path else None


class CompatibilityReport(BaseModel):
    """Non-raising compatibility summary for a raw document."""

    compatible: bool
    requires_migration: bool
    current_version: str
    detected_version: str | None = None
    migration_path: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


def detect_version(document: Mapping[str, Any]) -> str | None:
    """Return the schema version a raw document declares.

    Current documents carry ``schemaVersion``; older ones kept the version in
    ``header.version``.
    """
    version = document.get("schemaVersion") or document.get("schema_version")
    if version is None:
        header = document.get("header")
        if isinstance(header, Mapping):
            version = header.get("version")
    return str(version) if version is not None else None


class VersionRegistry:
    """Known schema versions and the migration steps between them.

    Example:
        registry = VersionRegistry("0.7.1", compatible_versions=["0.7.0"])
        registry.register_version("0.6.0")
        registry.register_step(step_0_6_to_0_7)
        registry.resolve("0.6.0").path  # ["0.6.0", "0.7.0"]
    """

    def __init__(self, current_version: str, compatible_versions: list[str] | None = None) -> None:
        self.current_version = current_version
        self.compatible_versions: list[str] = list(compatible_versions or [])
        self._versions: list[str] = []
        self._steps: dict[tuple[str, str], MigrationStep] = {}
        self._edges: dict[str, list[str]] = {}

        self.register_version(current_version)
        for version in self.compatible_versions:
            self.register_version(version)

    @property
    def versions(self) -> list[str]:
        return list(self._versions)

    @property
    def steps(self) -> list[MigrationStep]:
        return list(self._steps.values())

    def register_version(self, version: str) -> None:
        if version not in self._versions:
            self._versions.append(version)
            self._edges.setdefault(version, [])

    def register_step(self, step: MigrationStep) -> None:
        """Register a single-step migration; both versions become known.

        Raises:
            ValueError: If a step is already registered for the same edge.
        """
        edge = (step.from_version, step.to_version)
        if edge in self._steps:
            raise ValueError(f"Migration step already registered: {step.key}")
        self.register_version(step.from_version)
        self.register_version(step.to_version)
        self._steps[edge] = step
        self._edges[step.from_version].append(step.to_version)
        logger.debug("migration_step_registered", step=step.key)

    def get_step(self, from_version: str, to_version: str) -> MigrationStep:
        try:
            return self._steps[(from_version, to_version)]
        except KeyError:
            raise UnknownVersionError(
                from_version,
                self.versions,
                reason=f"no migration step registered to {to_version}",
            ) from None

    def steps_for_path(self, path: list[str]) -> list[MigrationStep]:
        return [self.get_step(a, b) for a, b in zip(path, path[1:], strict=False)]

    def is_current(self, version: str) -> bool:
        return version == self.current_version or version in self.compatible_versions

    def resolve(self, version: str | None) -> CompatibilityResult:
        """Classify a declared version.

        Returns:
            CURRENT for the current version or a listed compatible version,
            otherwise MIGRATABLE with the shortest version path.

        Raises:
            UnknownVersionError: If the version is missing, unregistered, or
                has no migration path to the current schema.
        """
        if version is None:
            raise UnknownVersionError(None, self.versions, reason="document declares no version")

        if self.is_current(version):
            return CompatibilityResult(version=version, status=CompatibilityStatus.CURRENT)

        if version not in self._edges:
            raise UnknownVersionError(version, self.versions)

        path = self._shortest_path(version)
        if path is None:
            raise UnknownVersionError(
                version,
                self.versions,
                reason=f"no migration path to {self.current_version}",
            )
        return CompatibilityResult(
            version=version,
            status=CompatibilityStatus.MIGRATABLE,
            path=path,
        )

    def require_current(self, version: str | None) -> CompatibilityResult:
        """Resolve a version that is about to be executed.

        Raises:
            UnknownVersionError: If the version cannot be resolved.
            MigrationRequiredError: If the version resolves but is not current.
        """
        result = self.resolve(version)
        if not result.is_current:
            raise MigrationRequiredError(version, self.current_version)
        return result

    def check_compatibility(self, document: Mapping[str, Any]) -> CompatibilityReport:
        """Report on a raw document without raising."""
        version = detect_version(document)
        report: dict[str, Any] = {
            "current_version": self.current_version,
            "detected_version": version,
        }
        try:
            result = self.resolve(version)
        except UnknownVersionError as e:
            return CompatibilityReport(
                compatible=False,
                requires_migration=False,
                warnings=[e.message],
                **report,
            )

        if result.is_current:
            return CompatibilityReport(compatible=True, requires_migration=False, **report)

        warnings: list[str] = []
        for step in self.steps_for_path(result.path):
            warnings.extend(step.warnings)
        return CompatibilityReport(
            compatible=True,
            requires_migration=True,
            migration_path=result.path,
            warnings=warnings,
            **report,
        )

    def _shortest_path(self, start: str) -> list[str] | None:
        """Breadth-first search from ``start`` to any current version."""
        previous: dict[str, str | None] = {start: None}
        queue: deque[str] = deque([start])
        while queue:
            node = queue.popleft()
            if node != start and self.is_current(node):
                path = [node]
                while (parent := previous[path[-1]]) is not None:
                    path.append(parent)
                return list(reversed(path))
            for neighbor in self._edges.get(node, []):
                if neighbor not in previous:
                    previous[neighbor] = node
                    queue.append(neighbor)
        return None
