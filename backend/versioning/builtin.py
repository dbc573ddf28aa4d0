"""Built-in schema versions and migration rules.

Version history of the configuration document:

- 0.5.0: flat agents with a free-form ``type``; version in ``header.version``.
- 0.6.0: ``type`` replaced by ``category``; tags renamed to ``Agent<n>_Output``.
- 0.7.0: agents split into ``role`` and ``task``; version moves to
  ``schemaVersion``; context sources gain a ``selected`` flag.
- 0.7.1: current. Shape-compatible with 0.7.0.
"""

from versioning.registry import FieldDefault, FieldMapping, MigrationStep, VersionRegistry

CURRENT_VERSION = "0.7.1"
COMPATIBLE_VERSIONS = ["0.7.0"]
LEGACY_VERSIONS = ["0.5.0", "0.6.0"]

# Highest agent number covered by the built-in tag maps
MAX_TAGGED_AGENTS = 7

DEFAULT_MODEL = "claude-3"


def _step_0_5_0_to_0_6_0() -> MigrationStep:
    tags = {"UserInput": "User_Input"}
    for n in range(1, MAX_TAGGED_AGENTS + 1):
        tags[f"Agent{n}Result"] = f"Agent{n}_Output"

    return MigrationStep(
        from_version="0.5.0",
        to_version="0.6.0",
        description="Replace agent types with role categories",
        field_mappings=[
            FieldMapping(
                old_path="agents[].type",
                new_path="agents[].category",
                transformation="type_to_category",
                requires_user_input=True,
            ),
        ],
        tag_mappings=tags,
        warnings=[
            "Agent types have been replaced with role categories",
            "Some agent configurations may need manual review",
        ],
    )


def _step_0_6_0_to_0_7_0() -> MigrationStep:
    tags = {"User_Input": "user_input"}
    for n in range(1, MAX_TAGGED_AGENTS + 1):
        tags[f"Agent{n}_Output"] = f"agent_{n}_output"

    return MigrationStep(
        from_version="0.6.0",
        to_version="0.7.0",
        description="Split agents into role and task, move the header to the document root",
        field_mappings=[
            FieldMapping(
                old_path="header.description",
                new_path="description",
                default="",
            ),
            FieldMapping(old_path="header.created", new_path="created"),
            FieldMapping(
                old_path="agents[].name",
                new_path="agents[].role.title",
                transformation="direct",
                required=True,
            ),
            FieldMapping(
                old_path="agents[].description",
                new_path="agents[].role.description",
                default="",
            ),
            FieldMapping(
                old_path="agents[].category",
                new_path="agents[].role.category",
                transformation="category_mapping",
                requires_user_input=True,
                default="analyst",
            ),
            FieldMapping(
                old_path="agents[].promptTemplate",
                new_path="agents[].task.promptTemplate",
                transformation="direct",
                required=True,
            ),
            FieldMapping(
                old_path="agents[].maxTokens",
                new_path="agents[].task.maxTokens",
                transformation="direct",
                default=2000,
            ),
            FieldMapping(
                old_path="agents[].temperature",
                new_path="agents[].task.temperature",
                transformation="direct",
                default=0.7,
            ),
            FieldMapping(
                old_path="settings.defaultLLM",
                new_path="settings.defaultModel",
                default=DEFAULT_MODEL,
            ),
        ],
        removed_fields=["header"],
        defaults=[
            FieldDefault(path="agents[].task.outputFormat", value="markdown"),
            FieldDefault(path="agents[].task.instructions", value=[]),
            FieldDefault(path="agents[].contextSources[].selected", value=True),
        ],
        tag_mappings=tags,
        warnings=[
            "Context source selection has been enhanced - please review context configurations",
            "Task configuration now includes additional settings - defaults will be applied",
            "Agent roles have been restructured - please verify role assignments",
        ],
    )


def build_default_registry() -> VersionRegistry:
    """Create a registry holding every built-in version and step."""
    registry = VersionRegistry(CURRENT_VERSION, compatible_versions=COMPATIBLE_VERSIONS)
    for version in LEGACY_VERSIONS:
        registry.register_version(version)
    registry.register_step(_step_0_5_0_to_0_6_0())
    registry.register_step(_step_0_6_0_to_0_7_0())
    return registry
