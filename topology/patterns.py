"""EventBridge-style event patterns compiled into a small predicate tree.

A pattern such as::

    {
        "source": ["app.order"],
        "detail-type": ["order"],
        "detail": {"reason": ["PRODUCT_NOT_FOUND"]},
    }

compiles to ``All(Equals(("source",), ...), Equals(("detail-type",), ...),
Equals(("detail", "reason"), ...))``. Keys are AND-ed, the values of one array
are OR-ed. Array elements may be literals or the content filters
``{"exists": bool}`` and ``{"prefix": str}``.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Sequence, Tuple

from topology.errors import PatternError

Path = Tuple[str, ...]

_MISSING = object()


def resolve(document: Mapping[str, Any], path: Path) -> Any:
    """Walk ``path`` through nested mappings, returning ``_MISSING`` if absent."""
    value: Any = document
    for key in path:
        if not isinstance(value, Mapping) or key not in value:
            return _MISSING
        value = value[key]
    return value


def _candidates(value: Any) -> Sequence[Any]:
    # An array in the event matches if any of its elements matches.
    if isinstance(value, (list, tuple)):
        return value
    return (value,)


class Predicate:
    """Base class for pattern nodes."""

    def matches(self, document: Mapping[str, Any]) -> bool:
        raise NotImplementedError


def _typed(value: Any) -> Tuple[bool, Any]:
    # JSON booleans never equal numbers.
    return (type(value) is bool, value)


@dataclass(frozen=True)
class Equals(Predicate):
    path: Path
    values: Tuple[Any, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "_keys", frozenset(_typed(v) for v in self.values))

    def matches(self, document: Mapping[str, Any]) -> bool:
        value = resolve(document, self.path)
        if value is _MISSING:
            return False
        return any(
            _hashable(candidate) and _typed(candidate) in self._keys
            for candidate in _candidates(value)
        )


@dataclass(frozen=True)
class Exists(Predicate):
    path: Path
    present: bool = True

    def matches(self, document: Mapping[str, Any]) -> bool:
        return (resolve(document, self.path) is not _MISSING) == self.present


@dataclass(frozen=True)
class Prefix(Predicate):
    path: Path
    prefix: str

    def matches(self, document: Mapping[str, Any]) -> bool:
        value = resolve(document, self.path)
        if value is _MISSING:
            return False
        return any(
            isinstance(candidate, str) and candidate.startswith(self.prefix)
            for candidate in _candidates(value)
        )


@dataclass(frozen=True)
class AnyOf(Predicate):
    clauses: Tuple[Predicate, ...]

    def matches(self, document: Mapping[str, Any]) -> bool:
        return any(clause.matches(document) for clause in self.clauses)


@dataclass(frozen=True)
class All(Predicate):
    clauses: Tuple[Predicate, ...]

    def matches(self, document: Mapping[str, Any]) -> bool:
        return all(clause.matches(document) for clause in self.clauses)


MATCH_ALL = All(())


def _hashable(value: Any) -> bool:
    try:
        hash(value)
    except TypeError:
        return False
    return True


def _compile_filter(path: Path, content_filter: Mapping[str, Any]) -> Predicate:
    if len(content_filter) != 1:
        raise PatternError(f"Content filter at {'.'.join(path)} must have one key")

    (operator, operand), = content_filter.items()
    if operator == "exists":
        if not isinstance(operand, bool):
            raise PatternError(f"'exists' at {'.'.join(path)} takes a boolean")
        return Exists(path, operand)
    if operator == "prefix":
        if not isinstance(operand, str):
            raise PatternError(f"'prefix' at {'.'.join(path)} takes a string")
        return Prefix(path, operand)
    raise PatternError(f"Unsupported content filter {operator!r} at {'.'.join(path)}")


def _compile_values(path: Path, values: Sequence[Any]) -> Predicate:
    literals = []
    clauses = []
    for value in values:
        if isinstance(value, Mapping):
            clauses.append(_compile_filter(path, value))
        elif isinstance(value, (list, tuple)):
            raise PatternError(f"Nested arrays are not allowed at {'.'.join(path)}")
        else:
            literals.append(value)

    if literals:
        clauses.insert(0, Equals(path, tuple(literals)))
    if len(clauses) == 1:
        return clauses[0]
    # An empty array matches nothing.
    return AnyOf(tuple(clauses))


def _compile(pattern: Mapping[str, Any], prefix: Path) -> Tuple[Predicate, ...]:
    clauses = []
    for key, value in pattern.items():
        path = prefix + (key,)
        if isinstance(value, Mapping):
            clauses.extend(_compile(value, path))
        elif isinstance(value, (list, tuple)):
            clauses.append(_compile_values(path, value))
        else:
            raise PatternError(
                f"Pattern value at {'.'.join(path)} must be an array or an object"
            )
    return tuple(clauses)


def compile_pattern(pattern: Mapping[str, Any]) -> Predicate:
    """Compile an EventBridge-style pattern into a predicate.

    Args:
        pattern: Mapping of field names to arrays of accepted values, or to
            nested mappings for fields under ``detail``.

    Returns:
        A predicate over the event's JSON shape (see ``Event.as_dict``).

    Raises:
        PatternError: If the pattern is malformed.
    """
    if not isinstance(pattern, Mapping):
        raise PatternError("Event pattern must be an object")
    if not pattern:
        raise PatternError("Event pattern must not be empty")
    return All(_compile(pattern, ()))
