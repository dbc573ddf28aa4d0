"""Migration engine.

Transforms a raw configuration document across schema versions by applying
the field-mapping rules of each registered step along a version path. The
engine is stateless: ``migrate`` is a pure function of (document, path) apart
from the ``modified`` timestamp, which is taken once from an injected clock.

Migration happens in two phases so a reviewer can intervene:

1. ``migrate`` builds a frozen MigrationPlan containing the structurally
   migrated candidate document, the pending (reviewer-confirmed) mappings,
   warnings, and the composed tag mappings.
2. ``finalize`` applies the reviewer's field overrides, runs the tag-mapping
   pass over free text, validates, and returns a new ConfigurationDocument.
"""

import copy
import re
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from agents.validation import validate_document
from errors import DocumentValidationError, MigrationIncompleteError, MigrationRejectedError
from models.runtime import ApprovalAction, ApprovalDecision
from models.schemas import ConfigurationDocument
from versioning import paths
from versioning.registry import FieldMapping, MigrationStep, VersionRegistry, detect_version
from versioning.transforms import apply_transformation

logger = structlog.get_logger(__name__)

Clock = Callable[[], str]

# Free-text fields rewritten by the tag-mapping pass
TAG_TEXT_PATHS: tuple[str, ...] = (
    "agents[].task.promptTemplate",
    "agents[].task.instructions[]",
    "agents[].role.description",
)


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


class MigrationPlan(BaseModel):
    """Immutable result of migrating a document along a version path.

    Attributes:
        source_version: Version the document declared.
        target_version: Version the candidate document is stamped with.
        path: Every version traversed, source first.
        field_mappings: All mapping rules of the traversed steps, in order.
        pending_changes: Applied mappings a reviewer must confirm.
        warnings: Human-readable notices about lossy or ambiguous changes.
        tag_mappings: Old tag -> new tag, composed across steps.
        deprecated_fields: Paths removed along the way.
        new_fields: Paths introduced along the way.
        missing_paths: Concrete paths of mandatory values that could not be produced.
        migrated_document: Candidate document before the tag-mapping pass.
    """

    model_config = ConfigDict(frozen=True)

    source_version: str
    target_version: str
    path: list[str]
    field_mappings: list[FieldMapping] = Field(default_factory=list)
    pending_changes: list[FieldMapping] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    tag_mappings: dict[str, str] = Field(default_factory=dict)
    deprecated_fields: list[str] = Field(default_factory=list)
    new_fields: list[str] = Field(default_factory=list)
    missing_paths: list[str] = Field(default_factory=list)
    migrated_document: dict[str, Any] = Field(default_factory=dict)

    @property
    def requires_user_approval(self) -> bool:
        return bool(self.pending_changes or self.tag_mappings)

    @property
    def is_complete(self) -> bool:
        return not self.missing_paths


def compose_tag_mappings(maps: list[dict[str, str]]) -> dict[str, str]:
    """Chain per-step tag maps so an old tag maps straight to its final form."""
    composed: dict[str, str] = {}
    for step_map in maps:
        for old_tag, new_tag in composed.items():
            composed[old_tag] = step_map.get(new_tag, new_tag)
        for old_tag, new_tag in step_map.items():
            composed.setdefault(old_tag, new_tag)
    return composed


def rewrite_tags(text: str, tag_mappings: Mapping[str, str]) -> str:
    """Replace whole-word occurrences of each old tag in one pass.

    Longer tags are tried first so ``Agent10_Output`` is never rewritten as
    ``Agent1_Output`` followed by ``0``.
    """
    tags = sorted((t for t in tag_mappings if t), key=len, reverse=True)
    if not tags or not text:
        return text
    pattern = re.compile(
        r"(?<![A-Za-z0-9_])(" + "|".join(re.escape(t) for t in tags) + r")(?![A-Za-z0-9_])"
    )
    return pattern.sub(lambda m: tag_mappings[m.group(1)], text)


def apply_tag_mappings(document: Mapping[str, Any], tag_mappings: Mapping[str, str]) -> dict[str, Any]:
    """Return a copy of ``document`` with tags rewritten in free-text fields."""
    updated = copy.deepcopy(dict(document))
    if not tag_mappings:
        return updated
    for path in TAG_TEXT_PATHS:
        for indices, value in list(paths.iter_values(updated, path)):
            if isinstance(value, str):
                paths.set_value(updated, path, rewrite_tags(value, tag_mappings), indices)
    return updated


class MigrationEngine:
    """Applies registered migration steps to raw documents.

    Args:
        registry: Version registry providing steps and the current version.
        clock: Returns the ISO timestamp written to ``modified``.
    """

    def __init__(self, registry: VersionRegistry, clock: Clock | None = None) -> None:
        self.registry = registry
        self._clock = clock or utc_now_iso

    def plan(self, document: Mapping[str, Any]) -> MigrationPlan | None:
        """Resolve the document's version and migrate it if needed.

        Returns:
            None when the document is already current, otherwise the plan.

        Raises:
            UnknownVersionError: If the version cannot be resolved.
            MigrationIncompleteError: If mandatory values are missing.
        """
        result = self.registry.resolve(detect_version(document))
        if result.is_current:
            return None
        return self.migrate(document, result.path)

    def migrate(self, document: Mapping[str, Any], path: list[str]) -> MigrationPlan:
        """Migrate ``document`` along ``path`` (a list of versions).

        The input document is never mutated.

        Raises:
            UnknownVersionError: If a step along the path is not registered.
            MigrationIncompleteError: If a required mapping produced no value.
        """
        steps = self.registry.steps_for_path(path)
        source_version = path[0] if path else (detect_version(document) or "")
        target_version = self._stamp_version(path[-1] if path else source_version)

        log = logger.bind(source_version=source_version, target_version=target_version)
        log.info("migration_started", path=path)

        current: dict[str, Any] = copy.deepcopy(dict(document))
        mappings: list[FieldMapping] = []
        pending: list[FieldMapping] = []
        warnings: list[str] = []
        deprecated: list[str] = []
        new_fields: list[str] = []
        missing: list[str] = []

        for step in steps:
            current, applied, step_missing = self._apply_step(current, step)
            mappings.extend(step.field_mappings)
            pending.extend(m for m in applied if m.requires_user_input)
            warnings.extend(step.warnings)
            deprecated.extend(step.deprecated_fields)
            new_fields.extend(step.new_fields)
            missing.extend(step_missing)
            log.debug("migration_step_applied", step=step.key, applied=len(applied))

        current["schemaVersion"] = target_version
        current["compatibleVersions"] = list(self.registry.compatible_versions)
        current["modified"] = self._clock()

        plan = MigrationPlan(
            source_version=source_version,
            target_version=target_version,
            path=list(path),
            field_mappings=mappings,
            pending_changes=pending,
            warnings=warnings,
            tag_mappings=compose_tag_mappings([s.tag_mappings for s in steps]),
            deprecated_fields=list(dict.fromkeys(deprecated)),
            new_fields=list(dict.fromkeys(new_fields)),
            missing_paths=missing,
            migrated_document=current,
        )

        if missing:
            log.warning("migration_incomplete", missing_paths=missing)
            raise MigrationIncompleteError(plan, missing)

        log.info(
            "migration_planned",
            pending_changes=len(pending),
            requires_user_approval=plan.requires_user_approval,
        )
        return plan

    def finalize(self, plan: MigrationPlan, decision: ApprovalDecision) -> ConfigurationDocument:
        """Turn an approved plan into a new ConfigurationDocument.

        Reviewer ``user_changes`` (path -> value) are applied on top of the
        candidate document and take precedence over every mapped value,
        including mandatory ones. The tag-mapping pass then runs with the
        reviewer's map if one was given, otherwise the plan's.

        Raises:
            MigrationRejectedError: If the decision rejects the migration.
            DocumentValidationError: If a change cannot be applied or the
                result is not a valid document.
        """
        if decision.action == ApprovalAction.REJECT:
            logger.info("migration_rejected", source_version=plan.source_version)
            raise MigrationRejectedError(plan.source_version, decision.reason)

        candidate = copy.deepcopy(plan.migrated_document)
        unreachable = paths.apply_updates(candidate, decision.user_changes)
        if unreachable:
            raise DocumentValidationError(
                [f"{p}: path does not exist in the migrated document" for p in unreachable]
            )

        tag_mappings = plan.tag_mappings if decision.tag_mappings is None else decision.tag_mappings
        candidate = apply_tag_mappings(candidate, tag_mappings)
        candidate["schemaVersion"] = plan.target_version

        report = validate_document(candidate)
        if not report.valid:
            raise DocumentValidationError(report.errors, report.warnings)

        logger.info(
            "migration_finalized",
            source_version=plan.source_version,
            target_version=plan.target_version,
            user_changes=len(decision.user_changes),
        )
        return ConfigurationDocument.model_validate(candidate)

    def _stamp_version(self, version: str) -> str:
        # Compatible versions are stamped as the current one
        return self.registry.current_version if self.registry.is_current(version) else version

    def _apply_step(
        self,
        source: dict[str, Any],
        step: MigrationStep,
    ) -> tuple[dict[str, Any], list[FieldMapping], list[str]]:
        """Apply one step; return (output, applied mappings, missing paths).

        Mappings read from ``source`` and write into a fresh copy, so a rule
        never observes another rule's output within the same step.
        """
        output = copy.deepcopy(source)
        for deprecated_path in step.deprecated_fields:
            paths.delete_value(output, deprecated_path)

        applied: list[FieldMapping] = []
        missing: list[str] = []
        for mapping in step.field_mappings:
            hit = False
            for indices, value in paths.iter_values(source, mapping.old_path):
                if value is paths.MISSING or value is None:
                    if mapping.default is not None:
                        value = copy.deepcopy(mapping.default)
                    elif mapping.required:
                        missing.append(paths.concrete_path(mapping.old_path, indices))
                        continue
                    else:
                        continue
                else:
                    value = apply_transformation(mapping.transformation, copy.deepcopy(value))
                    hit = True
                paths.set_value(output, mapping.new_path, value, indices)
            if hit:
                applied.append(mapping)

        for field_default in step.defaults:
            paths.set_default(output, field_default.path, field_default.value)

        return output, applied, missing
