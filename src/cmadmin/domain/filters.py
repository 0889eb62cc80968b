"""
WQL filter builder.

Filters are small expression trees rendered to WQL text by a single
serializer (`render_filter`). Values are always escaped on the way out;
field names must be plain identifiers.

    >>> build_predicate("Name", ["A", "B"])
    "((Name = 'A') OR (Name = 'B'))"
    >>> str(field_in("PackageID", ["ABC00001"]) & Comparison("Enabled", "=", True))
    "(((PackageID = 'ABC00001')) AND (Enabled = True))"
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Sequence, Union

from cmadmin.domain.errors import ConfigurationError

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

OPERATORS = ("=", "<>", "!=", "<", ">", "<=", ">=", "LIKE", "NOT LIKE", "ISA")


def escape_string(value: str) -> str:
    """Escape a string for use inside a single-quoted WQL literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def render_literal(value: Any) -> str:
    """Render a Python value as a WQL literal."""
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, str):
        return f"'{escape_string(value)}'"
    raise ConfigurationError(f"Unsupported filter value type: {type(value).__name__}")


def validate_field(field: str) -> str:
    if not field or not _FIELD_RE.match(field.strip()):
        raise ConfigurationError(f"Invalid filter field name: {field!r}")
    return field.strip()


class Expression:
    """Base node of a filter tree."""

    def render(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.render()

    def __and__(self, other: "FilterLike") -> "AllOf":
        return AllOf([self, _as_expression(other)])

    def __or__(self, other: "FilterLike") -> "AnyOf":
        return AnyOf([self, _as_expression(other)])

    def __bool__(self) -> bool:
        return bool(self.render())


class Comparison(Expression):
    """A single `(field OP value)` clause."""

    def __init__(self, field: str, operator: str, value: Any):
        operator = operator.strip().upper()
        if operator not in OPERATORS:
            raise ConfigurationError(f"Unsupported filter operator: {operator}")
        self.field = validate_field(field)
        self.operator = operator
        self.value = value
        # Fail early on values we cannot render.
        render_literal(value)

    def render(self) -> str:
        return f"({self.field} {self.operator} {render_literal(self.value)})"

    def __repr__(self) -> str:
        return f"Comparison({self.field!r}, {self.operator!r}, {self.value!r})"


class RawFilter(Expression):
    """Caller-supplied WQL text, passed through untouched."""

    def __init__(self, text: str):
        self.text = (text or "").strip()

    def render(self) -> str:
        return self.text

    def __repr__(self) -> str:
        return f"RawFilter({self.text!r})"


class _Group(Expression):
    joiner = ""

    def __init__(self, parts: Iterable[Expression]):
        self.parts = [p for p in parts if p]

    def render(self) -> str:
        if not self.parts:
            return ""
        return "(" + f" {self.joiner} ".join(p.render() for p in self.parts) + ")"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.parts!r})"


class AnyOf(_Group):
    joiner = "OR"


class AllOf(_Group):
    joiner = "AND"


FilterLike = Union[str, Expression, None]


def _as_expression(value: FilterLike) -> Expression:
    if isinstance(value, Expression):
        return value
    return RawFilter(value or "")


def field_in(field: str, values: Union[Any, Sequence[Any]], search: bool = False) -> AnyOf:
    """
    Match `field` against one or more values, OR-joined.

    Strings use LIKE when `search` is set, otherwise `=`. Integers always use `=`.
    """
    if isinstance(values, (str, bytes, int, float)) or values is None:
        values = [values]
    values = list(values)
    if not values:
        raise ConfigurationError(f"No values supplied for filter field {field!r}")
    clauses = []
    for value in values:
        if value is None:
            raise ConfigurationError(f"None is not a valid filter value for {field!r}")
        operator = "LIKE" if search and isinstance(value, str) else "="
        clauses.append(Comparison(field, operator, value))
    return AnyOf(clauses)


def build_predicate(field: str, values: Union[Any, Sequence[Any]], search: bool = False) -> str:
    """Render `field_in` straight to WQL text."""
    return field_in(field, values, search=search).render()


def all_of(*parts: FilterLike) -> Expression:
    """AND together the non-empty parts; a single part is returned as is."""
    expressions = [_as_expression(p) for p in parts if p]
    expressions = [e for e in expressions if e]
    if len(expressions) == 1:
        return expressions[0]
    return AllOf(expressions)


def any_of(*parts: FilterLike) -> Expression:
    """OR together the non-empty parts; a single part is returned as is."""
    expressions = [_as_expression(p) for p in parts if p]
    expressions = [e for e in expressions if e]
    if len(expressions) == 1:
        return expressions[0]
    return AnyOf(expressions)


def render_filter(value: FilterLike) -> str:
    """Serialize any accepted filter form to WQL text ("" for no filter)."""
    if value is None:
        return ""
    if isinstance(value, Expression):
        return value.render()
    if isinstance(value, str):
        return value.strip()
    raise ConfigurationError(f"Unsupported filter type: {type(value).__name__}")
