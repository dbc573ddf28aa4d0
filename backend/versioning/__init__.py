"""Configuration schema versioning.

This package provides the version registry, the migration engine that moves
raw documents between schema versions, and the built-in rule tables.
"""

from versioning.builtin import CURRENT_VERSION, build_default_registry
from versioning.migration import (
    MigrationEngine,
    MigrationPlan,
    apply_tag_mappings,
    compose_tag_mappings,
)
from versioning.registry import (
    CompatibilityReport,
    CompatibilityResult,
    CompatibilityStatus,
    FieldDefault,
    FieldMapping,
    MigrationStep,
    VersionRegistry,
    detect_version,
)

__all__ = [
    # Registry
    "CompatibilityReport",
    "CompatibilityResult",
    "CompatibilityStatus",
    "FieldDefault",
    "FieldMapping",
    "MigrationStep",
    "VersionRegistry",
    "detect_version",
    # Migration
    "MigrationEngine",
    "MigrationPlan",
    "apply_tag_mappings",
    "compose_tag_mappings",
    # Built-in rules
    "CURRENT_VERSION",
    "build_default_registry",
]
