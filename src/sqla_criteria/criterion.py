"""Boolean criterion trees.

A ``Criterion`` is a group node: its ``wheres`` are AND-ed together and its
``ors`` are OR-ed onto that AND group. Children are either ``Leaf``
predicates or nested ``Criterion`` groups, so arbitrary trees can be built::

    left = Criterion("users.group_id", 1).add_where("users.active", True)
    right = Criterion("users.group_id", 2).add_where("users.email", None, NOT_EQUALS)
    criteria.add_where(Criterion().add_or(left).add_or(right))
    # ((... AND ...) OR (... AND ...))
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Any, Final, Union


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

from .exceptions import QueryBuildError


EQUALS: Final[str] = "="
NOT_EQUALS: Final[str] = "!="
GREATER_THAN: Final[str] = ">"
LESS_THAN: Final[str] = "<"
GREATER_THAN_EQUAL: Final[str] = ">="
LESS_THAN_EQUAL: Final[str] = "<="
IS_NULL: Final[str] = "IS NULL"
IS_NOT_NULL: Final[str] = "IS NOT NULL"
LIKE: Final[str] = "LIKE"
ILIKE: Final[str] = "ILIKE"
NOT_LIKE: Final[str] = "NOT LIKE"
NOT_ILIKE: Final[str] = "NOT ILIKE"
IN: Final[str] = "IN"
NOT_IN: Final[str] = "NOT IN"

OPERATORS: Final[frozenset[str]] = frozenset({
    EQUALS,
    NOT_EQUALS,
    GREATER_THAN,
    LESS_THAN,
    GREATER_THAN_EQUAL,
    LESS_THAN_EQUAL,
    IS_NULL,
    IS_NOT_NULL,
    LIKE,
    ILIKE,
    NOT_LIKE,
    NOT_ILIKE,
    IN,
    NOT_IN,
})

LEFT_JOIN: Final[str] = "LEFT JOIN"
INNER_JOIN: Final[str] = "INNER JOIN"
RIGHT_JOIN: Final[str] = "RIGHT JOIN"
JOIN_TYPES: Final[frozenset[str]] = frozenset({LEFT_JOIN, INNER_JOIN, RIGHT_JOIN})

SORT_ASC: Final[str] = "asc"
SORT_DESC: Final[str] = "desc"

COUNT: Final[str] = "COUNT"
COUNT_DISTINCT: Final[str] = "COUNT(DISTINCT"
DISTINCT: Final[str] = "DISTINCT"
MAX: Final[str] = "MAX"
MIN: Final[str] = "MIN"
SUM: Final[str] = "SUM"
AVG: Final[str] = "AVG"
LOWER: Final[str] = "LOWER"
UPPER: Final[str] = "UPPER"
SPECIALS: Final[frozenset[str]] = frozenset({
    COUNT,
    COUNT_DISTINCT,
    DISTINCT,
    MAX,
    MIN,
    SUM,
    AVG,
    LOWER,
    UPPER,
})


def normalize_operator(operator: str) -> str:
    """Return the canonical spelling of *operator*.

    Raises:
        QueryBuildError: If the operator is not whitelisted.
    """
    normalized = " ".join(operator.upper().split())
    if normalized not in OPERATORS:
        raise QueryBuildError(f"Invalid operator {operator!r}")

    return normalized


def validate_special(special: str) -> str:
    if special and special.upper() not in SPECIALS:
        raise QueryBuildError(f"Invalid SQL function {special!r}")

    return special.upper()


def apply_special(special: str, sql: str) -> str:
    """Wrap an already quoted column in a whitelisted SQL function."""
    if not special:
        return sql
    if special == COUNT_DISTINCT:
        return f"COUNT(DISTINCT {sql})"

    return f"{special}({sql})"


@dataclass(frozen=True, slots=True)
class Leaf:
    """A single ``column <operator> value`` predicate."""

    column: str
    value: Any = None
    operator: str = EQUALS
    special: str = ""

    def __post_init__(self) -> None:
        if self.operator not in OPERATORS:
            raise QueryBuildError(f"Invalid operator {self.operator!r}")
        if self.special and self.special not in SPECIALS:
            raise QueryBuildError(f"Invalid SQL function {self.special!r}")


Node = Union[Leaf, "Criterion"]


class Criterion:
    """A group of AND-ed ``wheres`` with optional OR-ed ``ors``."""

    __slots__ = ("ors", "wheres")

    def __init__(
        self,
        column: str | None = None,
        value: Any = None,
        operator: str = EQUALS,
        special: str = "",
    ) -> None:
        self.wheres: list[Node] = []
        self.ors: list[Node] = []
        if column is not None:
            self.add_where(column, value, operator, special)

    def add_where(
        self,
        column: str | Criterion,
        value: Any = None,
        operator: str = EQUALS,
        special: str = "",
    ) -> Self:
        self.wheres.append(_make_node(column, value, operator, special))
        return self

    def add_or(
        self,
        column: str | Criterion,
        value: Any = None,
        operator: str = EQUALS,
        special: str = "",
    ) -> Self:
        self.ors.append(_make_node(column, value, operator, special))
        return self

    def is_empty(self) -> bool:
        return not self.wheres and not self.ors

    def __repr__(self) -> str:
        return f"<Criterion wheres={self.wheres!r} ors={self.ors!r}>"


def _make_node(column: str | Criterion, value: Any, operator: str, special: str) -> Node:
    if isinstance(column, Criterion):
        return column

    return Leaf(column, value, normalize_operator(operator), validate_special(special))
