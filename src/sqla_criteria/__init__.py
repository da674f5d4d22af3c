"""Criteria-based SQL generation on top of SQLAlchemy connections.

sqla_criteria compiles a ``Criteria`` (a from-table, joins, a boolean
criterion tree, ordering, grouping and pagination) into parameterized SQL
for MySQL, PostgreSQL or SQLite and runs it through a ``Statement``. Table
and column metadata is derived lazily from ``@table`` / ``@entity``
declarations and ``Annotated`` field metadata, and memoized by a
``MetadataCache`` that can persist it in a two-tier store.
"""

from ._version import __version__, __version_tuple__
from .config import Settings
from .context import Context, SqlHit, get_context, init_context
from .core import CompiledQuery, Criteria, JoinSpec, SelectionSpec
from .criterion import (
    EQUALS,
    GREATER_THAN,
    GREATER_THAN_EQUAL,
    ILIKE,
    IN,
    INNER_JOIN,
    IS_NOT_NULL,
    IS_NULL,
    LEFT_JOIN,
    LESS_THAN,
    LESS_THAN_EQUAL,
    LIKE,
    NOT_EQUALS,
    NOT_ILIKE,
    NOT_IN,
    NOT_LIKE,
    RIGHT_JOIN,
    SORT_ASC,
    SORT_DESC,
    Criterion,
    Leaf,
)
from .datastructures import AliasAllocator, frozendict
from .declarations import (
    AnnotationSource,
    Column,
    DeclarativeSource,
    Discriminator,
    Id,
    Relates,
    SubClasses,
    entity,
    table,
)
from .dialect import Dialect
from .exceptions import (
    ConfigError,
    ExecutionError,
    QueryBuildError,
    SchemaError,
    SqlaCriteriaError,
)
from .metadata import MetadataCache, SchemaStore, TwoTierStore
from .schema import ColumnDef, EntityMapping, ForeignColumnDef, RelationDef, TableSchema
from .statement import Statement
from .tools import fetch_rows, render_sql


__all__ = (
    "EQUALS",
    "GREATER_THAN",
    "GREATER_THAN_EQUAL",
    "ILIKE",
    "IN",
    "INNER_JOIN",
    "IS_NOT_NULL",
    "IS_NULL",
    "LEFT_JOIN",
    "LESS_THAN",
    "LESS_THAN_EQUAL",
    "LIKE",
    "NOT_EQUALS",
    "NOT_ILIKE",
    "NOT_IN",
    "NOT_LIKE",
    "RIGHT_JOIN",
    "SORT_ASC",
    "SORT_DESC",
    "AliasAllocator",
    "AnnotationSource",
    "Column",
    "ColumnDef",
    "CompiledQuery",
    "ConfigError",
    "Context",
    "Criteria",
    "Criterion",
    "DeclarativeSource",
    "Dialect",
    "Discriminator",
    "EntityMapping",
    "ExecutionError",
    "ForeignColumnDef",
    "Id",
    "JoinSpec",
    "Leaf",
    "MetadataCache",
    "QueryBuildError",
    "RelationDef",
    "SchemaError",
    "SchemaStore",
    "SelectionSpec",
    "Settings",
    "SqlHit",
    "SqlaCriteriaError",
    "Statement",
    "SubClasses",
    "TableSchema",
    "TwoTierStore",
    "__version__",
    "__version_tuple__",
    "entity",
    "fetch_rows",
    "frozendict",
    "get_context",
    "init_context",
    "render_sql",
    "table",
)
