"""Named pure transformations applied by field-mapping rules.

A transformation receives a single source value and returns the value to
write. Transformations must be pure: no clocks, randomness, I/O or reads of
global mutable state, so that a migration is a function of its input alone.
"""

from collections.abc import Callable
from typing import Any

from models.schemas import RoleCategory

Transformation = Callable[[Any], Any]

_TRANSFORMATIONS: dict[str, Transformation] = {}

DEFAULT_CATEGORY = RoleCategory.ANALYST.value

# Legacy (0.5.x) agent types -> role categories
TYPE_TO_CATEGORY: dict[str, str] = {
    "product": RoleCategory.STRATEGIST.value,
    "research": RoleCategory.RESEARCHER.value,
    "design": RoleCategory.DESIGNER.value,
    "analysis": RoleCategory.ANALYST.value,
    "writing": RoleCategory.AUTHOR.value,
    "technical": RoleCategory.ARCHITECT.value,
}


def register_transformation(name: str) -> Callable[[Transformation], Transformation]:
    """Decorator registering a transformation under ``name``."""

    def decorator(func: Transformation) -> Transformation:
        if name in _TRANSFORMATIONS:
            raise ValueError(f"Transformation already registered: {name}")
        _TRANSFORMATIONS[name] = func
        return func

    return decorator


def get_transformation(name: str | None) -> Transformation:
    """Look up a transformation; ``None`` means the identity.

    Raises:
        KeyError: If no transformation is registered under ``name``.
    """
    if name is None:
        return _TRANSFORMATIONS["direct"]
    try:
        return _TRANSFORMATIONS[name]
    except KeyError:
        raise KeyError(f"Unknown transformation: {name}") from None


def is_registered(name: str | None) -> bool:
    return name is None or name in _TRANSFORMATIONS


def apply_transformation(name: str | None, value: Any) -> Any:
    return get_transformation(name)(value)


@register_transformation("direct")
def direct(value: Any) -> Any:
    return value


@register_transformation("category_mapping")
def category_mapping(value: Any) -> str:
    """Normalize a free-form category string onto a known role category."""
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in RoleCategory._value2member_map_:
            return normalized
    return DEFAULT_CATEGORY


@register_transformation("type_to_category")
def type_to_category(value: Any) -> str:
    """Map a legacy agent type onto a role category."""
    if isinstance(value, str):
        return TYPE_TO_CATEGORY.get(value.strip().lower(), DEFAULT_CATEGORY)
    return DEFAULT_CATEGORY
