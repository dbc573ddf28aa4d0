"""Dotted / indexed path access into raw configuration documents.

Paths address values inside plain dict/list documents:

    header.version              -> doc["header"]["version"]
    agents[0].task              -> doc["agents"][0]["task"]
    agents[].role.title         -> every doc["agents"][i]["role"]["title"]
    agents[].contextSources[].selected

``[]`` is a wildcard over every element of a list. Reading a wildcard path
yields one match per instance together with the wildcard indices of that
instance, so a value read from ``agents[].name`` at indices ``(2,)`` can be
written to ``agents[].role.title`` at the same indices.

All functions operate on the document passed in; callers that need
copy-on-write semantics deep-copy first.
"""

import copy
from collections.abc import Iterator, Mapping
from functools import lru_cache
from typing import Any


class _Wildcard:
    def __repr__(self) -> str:
        return "[]"


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


WILDCARD: Any = _Wildcard()
MISSING: Any = _Missing()

Token = str | int | _Wildcard


class PathError(ValueError):
    """A path is malformed or cannot be written."""


@lru_cache(maxsize=512)
def parse_path(path: str) -> tuple[Token, ...]:
    """Split a path string into key, index and wildcard tokens.

    Raises:
        PathError: If the path is empty or has malformed brackets.
    """
    if not path or not path.strip():
        raise PathError("Path must not be empty")

    tokens: list[Token] = []
    for segment in path.split("."):
        if not segment:
            raise PathError(f"Empty segment in path {path!r}")
        name, bracket, rest = segment.partition("[")
        if name:
            tokens.append(name)
        if not bracket:
            continue
        rest = "[" + rest
        while rest:
            if not rest.startswith("[") or "]" not in rest:
                raise PathError(f"Malformed brackets in path {path!r}")
            inner, _, rest = rest[1:].partition("]")
            if inner == "":
                tokens.append(WILDCARD)
            elif inner.isdigit():
                tokens.append(int(inner))
            else:
                raise PathError(f"Invalid index {inner!r} in path {path!r}")
    if not tokens:
        raise PathError(f"Path {path!r} has no addressable segments")
    return tuple(tokens)


def wildcard_count(path: str) -> int:
    return sum(1 for token in parse_path(path) if token is WILDCARD)


def format_tokens(tokens: tuple[Token, ...]) -> str:
    parts: list[str] = []
    for token in tokens:
        if token is WILDCARD:
            parts.append("[]")
        elif isinstance(token, int):
            parts.append(f"[{token}]")
        else:
            parts.append(f".{token}" if parts else str(token))
    return "".join(parts)


def concrete_path(path: str, indices: tuple[int, ...]) -> str:
    """Fill the wildcards of ``path`` with ``indices``, left to right.

    Wildcards beyond the supplied indices are left as ``[]``.
    """
    return format_tokens(_fill(parse_path(path), indices, strict=False))


def _fill(
    tokens: tuple[Token, ...],
    indices: tuple[int, ...],
    strict: bool = True,
) -> tuple[Token, ...]:
    remaining = list(indices)
    filled: list[Token] = []
    for token in tokens:
        if token is WILDCARD and remaining:
            filled.append(remaining.pop(0))
        elif token is WILDCARD and strict:
            raise PathError(
                f"Not enough indices to fill {format_tokens(tokens)!r}: {indices!r}"
            )
        else:
            filled.append(token)
    return tuple(filled)


def _parents(
    node: Any,
    tokens: tuple[Token, ...],
    indices: tuple[int, ...],
    create: bool,
) -> Iterator[tuple[Any, Token, tuple[int, ...]]]:
    """Yield (container, final_token, indices) for every instance whose parent exists."""
    if len(tokens) == 1:
        yield node, tokens[0], indices
        return

    head, rest = tokens[0], tokens[1:]

    if head is WILDCARD:
        if isinstance(node, list):
            for i, item in enumerate(node):
                yield from _parents(item, rest, (*indices, i), create)
        return

    if isinstance(head, int):
        if isinstance(node, list) and 0 <= head < len(node):
            yield from _parents(node[head], rest, indices, create)
        return

    if not isinstance(node, dict):
        return
    if node.get(head) is None:
        # Intermediate dicts are only created when nothing below needs a list.
        if not create or any(not isinstance(t, str) for t in rest):
            return
        node[head] = {}
    yield from _parents(node[head], rest, indices, create)


def iter_values(document: Any, path: str) -> Iterator[tuple[tuple[int, ...], Any]]:
    """Yield ``(indices, value)`` for every instance of ``path``.

    A leaf that is absent under an existing parent yields MISSING. Wildcard
    lists that are themselves absent yield no instances at all, since there is
    nothing to map. A path without wildcards always yields exactly one match.
    """
    tokens = parse_path(path)
    found = False
    for container, last, indices in _parents(document, tokens, (), create=False):
        if last is WILDCARD:
            if isinstance(container, list):
                for i, item in enumerate(container):
                    found = True
                    yield (*indices, i), item
            continue
        found = True
        yield indices, _read(container, last)

    if not found and WILDCARD not in tokens:
        yield (), MISSING


def set_value(
    document: Any,
    path: str,
    value: Any,
    indices: tuple[int, ...] = (),
) -> None:
    """Write ``value`` at the instance of ``path`` selected by ``indices``.

    Missing intermediate objects are created. Lists are never created or
    extended.

    Raises:
        PathError: If the instance cannot be reached.
    """
    tokens = _fill(parse_path(path), indices)
    written = False
    for container, last, _ in _parents(document, tokens, (), create=True):
        _write(container, last, value, tokens)
        written = True
    if not written:
        raise PathError(f"Cannot reach {format_tokens(tokens)!r} to write a value")


def set_all(document: Any, path: str, value: Any) -> int:
    """Write ``value`` at every instance of ``path``; return how many were written."""
    count = 0
    for container, last, _ in _parents(document, parse_path(path), (), create=True):
        if last is WILDCARD:
            raise PathError(f"Cannot assign to a wildcard leaf: {path!r}")
        _write(container, last, value, parse_path(path))
        count += 1
    return count


def set_default(document: Any, path: str, value: Any) -> list[str]:
    """Set ``value`` wherever the leaf of ``path`` is absent.

    Returns:
        The concrete paths that received the default.
    """
    written: list[str] = []
    tokens = parse_path(path)
    for container, last, indices in _parents(document, tokens, (), create=True):
        if isinstance(container, dict) and isinstance(last, str) and last not in container:
            container[last] = copy.deepcopy(value)
            written.append(concrete_path(path, indices))
    return written


def delete_value(document: Any, path: str) -> list[str]:
    """Remove the leaf of ``path`` at every instance; return removed concrete paths."""
    removed: list[str] = []
    for container, last, indices in _parents(document, parse_path(path), (), create=False):
        if isinstance(container, dict) and isinstance(last, str) and last in container:
            del container[last]
            removed.append(concrete_path(path, indices))
    return removed


def apply_updates(document: Any, updates: Mapping[str, Any]) -> list[str]:
    """Apply a path -> value mapping in insertion order.

    Each value is deep-copied before it is written.

    Returns:
        The paths that matched no instance in ``document``, in order.
    """
    unreachable: list[str] = []
    for path, value in updates.items():
        try:
            written = set_all(document, path, copy.deepcopy(value))
        except PathError:
            written = 0
        if not written:
            unreachable.append(path)
    return unreachable


def _read(container: Any, token: Token) -> Any:
    if isinstance(token, int):
        if isinstance(container, list) and 0 <= token < len(container):
            return container[token]
        return MISSING
    if isinstance(container, dict) and token in container:
        return container[token]
    return MISSING


def _write(container: Any, token: Token, value: Any, tokens: tuple[Token, ...]) -> None:
    if isinstance(token, int):
        if isinstance(container, list) and 0 <= token < len(container):
            container[token] = value
            return
    elif isinstance(token, str) and isinstance(container, dict):
        container[token] = value
        return
    raise PathError(f"Cannot write {format_tokens(tokens)!r}")
