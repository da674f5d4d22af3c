from __future__ import annotations

import importlib
import re
from collections.abc import Sequence
from typing import Any, Final

import sqlalchemy as sa

from .exceptions import SchemaError
from .schema import column_name


_QUOTES: Final[frozenset[str]] = frozenset({"'", '"', "`"})
# A colon SQLAlchemy's text() would read as a bind parameter.
_BIND_LIKE_COLON: Final[re.Pattern[str]] = re.compile(r"(?<![:\w\\]):(?=\w)")


def class_identifier(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


def resolve_class(ref: type | str) -> type:
    """Resolve a class reference to the class itself.

    String references are either ``"package.module:Qualified.Name"`` or a
    dotted path whose longest importable prefix is the module.

    Raises:
        SchemaError: If the reference cannot be resolved to a class.
    """
    if isinstance(ref, type):
        return ref

    if ":" in ref:
        module_name, _, qualname = ref.partition(":")
        candidates = [(module_name, qualname)]
    else:
        parts = ref.split(".")
        candidates = [
            (".".join(parts[:i]), ".".join(parts[i:])) for i in range(len(parts) - 1, 0, -1)
        ]

    for module_name, qualname in candidates:
        try:
            obj: Any = importlib.import_module(module_name)
        except ImportError:
            continue

        try:
            for attr in qualname.split("."):
                obj = getattr(obj, attr)
        except AttributeError:
            continue

        if isinstance(obj, type):
            return obj

    raise SchemaError(f"Cannot resolve class reference {ref!r}")


def qualify(table: str, column: str) -> str:
    """Return ``table.column`` for a bare or already qualified *column*."""
    return f"{table}.{column_name(column)}"


def split_placeholders(sql: str) -> list[str]:
    """Split *sql* on ``?`` placeholders that are not inside quotes.

    Example:
        >>> split_placeholders("a = ? AND b = '?'")
        ['a = ', " AND b = '?'"]
    """
    segments: list[str] = []
    current: list[str] = []
    quote: str | None = None
    for char in sql:
        if quote is not None:
            current.append(char)
            if char == quote:
                quote = None
        elif char in _QUOTES:
            quote = char
            current.append(char)
        elif char == "?":
            segments.append("".join(current))
            current = []
        else:
            current.append(char)

    segments.append("".join(current))

    return segments


def to_named_binds(sql: str) -> tuple[str, tuple[str, ...]]:
    """Rewrite positional ``?`` placeholders as ``:p0``, ``:p1``, ...

    Literal colons that would otherwise be taken for bind parameters are
    escaped, so the result can be passed to ``sqlalchemy.text`` as is.

    Returns:
        The rewritten SQL and the bind names in positional order.
    """
    segments = [_BIND_LIKE_COLON.sub(r"\\:", segment) for segment in split_placeholders(sql)]
    names = tuple(f"p{i}" for i in range(len(segments) - 1))
    text = segments[0] + "".join(
        f":{name}{segment}" for name, segment in zip(names, segments[1:])
    )

    return text, names


def render_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)

    return "'" + str(value).replace("'", "''") + "'"


def render_sql(sql: str, values: Sequence[Any]) -> str:
    """Interpolate *values* into *sql* for display. Never execute the result."""
    segments = split_placeholders(sql)
    rendered = [segments[0]]
    for i, segment in enumerate(segments[1:]):
        rendered.append(render_value(values[i]) if i < len(values) else "?")
        rendered.append(segment)

    return "".join(rendered)


def fetch_rows(result: sa.CursorResult[Any]) -> Sequence[sa.RowMapping]:
    """Shorthand for ``result.mappings().all()``: ordered column-to-value maps.

    Example::

        rows = fetch_rows(Statement(criteria, context=ctx).execute())
        rows[0]["users0_email"]
    """
    return result.mappings().all()
