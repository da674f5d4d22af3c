from __future__ import annotations

import datetime
import decimal
import sys
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NamedTuple


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

from .context import Context, get_context
from .criterion import (
    EQUALS,
    IN,
    IS_NOT_NULL,
    IS_NULL,
    JOIN_TYPES,
    LEFT_JOIN,
    NOT_EQUALS,
    NOT_IN,
    SORT_ASC,
    SORT_DESC,
    Criterion,
    Leaf,
    Node,
    apply_special,
    validate_special,
)
from .declarations import ClassRef
from .exceptions import QueryBuildError
from .schema import TableSchema, column_name
from .tools import qualify


Action = Literal["select", "count", "insert", "update", "delete"]
Sort = str | Sequence[Any] | None

COUNT_ALIAS: Final[str] = "num_col"

_SCALAR_TYPES: Final[tuple[type, ...]] = (
    str,
    bytes,
    int,
    float,
    decimal.Decimal,
    datetime.date,
    datetime.time,
    datetime.timedelta,
    uuid.UUID,
)
_SEQUENCE_TYPES: Final[tuple[type, ...]] = (list, tuple, set, frozenset)


class CompiledQuery(NamedTuple):
    sql: str
    params: tuple[Any, ...]


@dataclass(frozen=True, slots=True)
class JoinSpec:
    """One joined table; ``left_column`` is on the joined-onto side."""

    table: TableSchema
    left_column: str
    right_column: str
    original_column: str
    criteria: tuple[tuple[str, Any], ...] = ()
    join_type: str = LEFT_JOIN


@dataclass(frozen=True, slots=True)
class SelectionSpec:
    column: str
    alias: str = ""
    special: str = ""
    variable: str = ""


class _Assignment(NamedTuple):
    column: str
    value: Any
    variable: str


def _validate_variable(variable: str) -> str:
    if variable and not variable.isidentifier():
        raise QueryBuildError(f"Invalid session variable name {variable!r}")

    return variable


def _validate_sort(sort: Sort) -> Sort:
    if sort is None:
        return None
    if isinstance(sort, str):
        if sort.lower() not in (SORT_ASC, SORT_DESC):
            raise QueryBuildError(f"Invalid sort direction {sort!r}")
        return sort.lower()
    if isinstance(sort, (list, tuple)) and sort:
        return tuple(sort)

    raise QueryBuildError(f"Invalid sort {sort!r}")


def _validate_scalar(column: str, value: Any) -> Any:
    if value is None or isinstance(value, _SCALAR_TYPES):
        return value

    raise QueryBuildError(f"Cannot store a {type(value).__name__} value in column {column!r}")


class Criteria:
    """Query builder compiling a criteria tree into parameterized SQL.

    Columns may be given as ``table.column`` (bare table name or alias),
    as a bare column name found on the from-table or a joined table, or as
    a selection alias. Select and count queries reference tables by alias;
    update and delete use bare column names against the unaliased table.

    Example:
        >>> criteria = Criteria(UsersTable, context=ctx)
        >>> criteria.add_where("users.id", 5).generate_select()
        CompiledQuery(sql='SELECT ... FROM "users" "users0" WHERE ("users0"."id" = ?)', params=(5,))

    Every ``generate_*`` call recomputes ``sql`` and ``values`` from the
    current state, so compiling twice yields identical output.
    """

    __slots__ = (
        "action",
        "context",
        "criteria",
        "distinct",
        "from_table",
        "inserts",
        "joins",
        "limit",
        "offset",
        "ors",
        "selections",
        "sort_groups",
        "sort_orders",
        "sql",
        "updates",
        "values",
    )

    def __init__(
        self,
        table: ClassRef | TableSchema | None = None,
        setup_join_tables: bool = False,
        *,
        context: Context | None = None,
    ) -> None:
        self.context = get_context(context)
        self.from_table: TableSchema | None = None
        self.joins: dict[str, JoinSpec] = {}
        self.criteria: list[Criterion] = []
        self.ors: list[Criterion] = []
        self.selections: dict[str, SelectionSpec] = {}
        self.sort_orders: list[tuple[str, Sort]] = []
        self.sort_groups: list[tuple[str, Sort]] = []
        self.limit: int | None = None
        self.offset: int | None = None
        self.distinct = False
        self.inserts: dict[str, _Assignment] = {}
        self.updates: dict[str, _Assignment] = {}
        self.action: Action = "select"
        self.sql = ""
        self.values: list[Any] = []
        if table is not None:
            self.set_from_table(table, setup_join_tables)

    # Building

    def _schema(self, table: ClassRef | TableSchema) -> TableSchema:
        if isinstance(table, TableSchema):
            return table

        return self.context.metadata.get_table_schema(table)

    def _require_from_table(self) -> TableSchema:
        if self.from_table is None:
            raise QueryBuildError("Cannot use a Criteria without a from table", sql=self.sql)

        return self.from_table

    def set_from_table(
        self, table: ClassRef | TableSchema, setup_join_tables: bool = False
    ) -> Self:
        self.from_table = self._schema(table)
        if setup_join_tables:
            self.setup_join_tables()

        return self

    def add_selection_column(
        self,
        column: str,
        alias: str = "",
        special: str = "",
        variable: str = "",
    ) -> Self:
        """Select *column* instead of every column of every table.

        Args:
            column: Column to select.
            alias: Result column name; defaults to ``alias_column``.
            special: Whitelisted SQL function wrapping the column.
            variable: MySQL session variable the value is assigned to.
        """
        resolved = self.resolve_column(column)
        self.selections[resolved] = SelectionSpec(
            column=resolved,
            alias=alias,
            special=validate_special(special),
            variable=_validate_variable(variable),
        )

        return self

    def add_where(
        self,
        column: str | Criterion,
        value: Any = None,
        operator: str = EQUALS,
        special: str = "",
    ) -> Self:
        self.criteria.append(
            column if isinstance(column, Criterion) else Criterion(column, value, operator, special)
        )
        return self

    def add_or(
        self,
        column: str | Criterion,
        value: Any = None,
        operator: str = EQUALS,
        special: str = "",
    ) -> Self:
        self.ors.append(
            column if isinstance(column, Criterion) else Criterion(column, value, operator, special)
        )
        return self

    def return_criterion(
        self, column: str, value: Any = None, operator: str = EQUALS, special: str = ""
    ) -> Criterion:
        return Criterion(column, value, operator, special)

    def add_join(
        self,
        table: ClassRef | TableSchema,
        foreign_column: str,
        table_column: str,
        criteria: Iterable[tuple[str, Any]] = (),
        join_type: str = LEFT_JOIN,
        on_table: TableSchema | None = None,
    ) -> TableSchema:
        """Join *table* on ``table.foreign_column = table_column``.

        Args:
            table: Table class (or loaded schema) to join.
            foreign_column: Column on the joined table.
            table_column: Column on the from-table, or on *on_table* when given.
            criteria: Extra ``(column, value)`` predicates on the joined table.
            join_type: ``LEFT JOIN``, ``INNER JOIN`` or ``RIGHT JOIN``.
            on_table: Already joined schema to join onto instead of the from-table.

        Returns:
            The joined schema. When the table is already part of the query it
            is a clone with its own alias.
        """
        from_table = self._require_from_table()
        if join_type not in JOIN_TYPES:
            raise QueryBuildError(f"Invalid join type {join_type!r}")

        joined = self._schema(table)
        if joined.alias == from_table.alias or joined.alias in self.joins:
            joined = joined.clone()

        left = (
            qualify(on_table.alias, table_column)
            if on_table is not None
            else self.resolve_column(table_column)
        )
        self.joins[joined.alias] = JoinSpec(
            table=joined,
            left_column=left,
            right_column=qualify(joined.alias, foreign_column),
            original_column=column_name(table_column),
            criteria=tuple(criteria),
            join_type=join_type,
        )

        return joined

    def setup_join_tables(self, join: Literal["all"] | Sequence[str] = "all") -> Self:
        """Join the tables referenced by the from-table's relation columns.

        Args:
            join: ``"all"`` or the local column names to join on.

        Raises:
            QueryBuildError: If a named column is not a relation column of the
                from-table.
        """
        from_table = self._require_from_table()
        if join == "all":
            foreigns = list(from_table.foreign_tables())
        else:
            foreigns = []
            for name in join:
                found = from_table.foreign_table_by_local_column(name)
                if found is None or found.target_table is None:
                    raise QueryBuildError(
                        f"The table {from_table.name!r} has no relation column {name!r}", sql=self.sql
                    )
                foreigns.append(found)

        for foreign in foreigns:
            assert foreign.target_table is not None
            target = self.context.metadata.get_table_schema(foreign.target_table)
            self.add_join(target, from_table.foreign_key_column(foreign, target), foreign.name)

        return self

    def add_order_by(self, column: str | Sequence[tuple[str, Sort]], sort: Sort = None) -> Self:
        """Order by *column*.

        *sort* is ``"asc"``, ``"desc"``, ``None`` or a sequence of values that
        should come first, in that order. A list of ``(column, sort)`` pairs
        adds several orderings at once.
        """
        if not isinstance(column, str):
            for col, col_sort in column:
                self.add_order_by(col, col_sort)
            return self

        self.sort_orders.append((column, _validate_sort(sort)))
        return self

    def add_group_by(self, column: str | Sequence[tuple[str, Sort]], sort: Sort = None) -> Self:
        if not isinstance(column, str):
            for col, col_sort in column:
                self.add_group_by(col, col_sort)
            return self

        self.sort_groups.append((column, _validate_sort(sort)))
        return self

    def set_limit(self, limit: int | None) -> Self:
        self.limit = limit
        return self

    def set_offset(self, offset: int | None) -> Self:
        self.offset = offset
        return self

    def set_distinct(self, distinct: bool = True) -> Self:
        self.distinct = distinct
        return self

    def add_insert(self, column: str, value: Any = None, variable: str = "") -> Self:
        name = column_name(column)
        self.inserts[name] = _Assignment(
            name, _validate_scalar(column, value), _validate_variable(variable)
        )
        return self

    def add_update(self, column: str, value: Any = None, variable: str = "") -> Self:
        name = column_name(column)
        self.updates[name] = _Assignment(
            name, _validate_scalar(column, value), _validate_variable(variable)
        )
        return self

    # Column helpers

    def resolve_column(self, column: str) -> str:
        """Return the ``alias.column`` reference *column* denotes in this query.

        Raises:
            QueryBuildError: If no table in the query has the column.
        """
        if column in self.selections:
            return column
        for key, selection in self.selections.items():
            if selection.alias and selection.alias == column:
                return key

        from_table = self._require_from_table()
        table, sep, name = column.partition(".")
        if sep:
            if table in (from_table.alias, from_table.name) and from_table.has_column(name):
                return qualify(from_table.alias, name)
            if (join := self.joins.get(table)) is not None and join.table.has_column(name):
                return qualify(table, name)
            for alias, join in self.joins.items():
                if join.table.name == table and join.table.has_column(name):
                    return qualify(alias, name)
        else:
            if from_table.has_column(column):
                return qualify(from_table.alias, column)
            for alias, join in self.joins.items():
                if join.table.has_column(column):
                    return qualify(alias, column)

        raise QueryBuildError(
            f"Could not find the column {column!r} in any of the tables in the query",
            sql=self.sql,
        )

    def _schema_for_alias(self, alias: str) -> TableSchema | None:
        from_table = self._require_from_table()
        if alias == from_table.alias:
            return from_table
        join = self.joins.get(alias)

        return join.table if join is not None else None

    def get_real_column_name(self, column: str) -> str:
        """Return the ``table.column`` metadata key for *column*.

        Example:
            >>> criteria.get_real_column_name("users0.email")
            'users.email'
        """
        resolved = self.resolve_column(column)
        if (selection := self.selections.get(resolved)) is not None:
            resolved = selection.column
        alias, _, name = resolved.partition(".")
        schema = self._schema_for_alias(alias)

        return qualify(schema.name, name) if schema is not None else resolved

    @staticmethod
    def column_name(column: str) -> str:
        return column_name(column)

    def selection_alias(self, column: str) -> str:
        """Result-set name of *column*: its custom alias or ``alias_column``."""
        selection = self.selections.get(column)
        if selection is not None and selection.alias:
            return selection.alias

        return column.replace(".", "_")

    def alias_columns(self) -> list[str]:
        """Every ``alias.column`` of the from-table and the joined tables."""
        from_table = self._require_from_table()
        columns = list(from_table.alias_columns())
        for join in self.joins.values():
            columns.extend(join.table.alias_columns())

        return columns

    # Compilation

    def _quote(self, identifier: str) -> str:
        return self.context.dialect.quote_identifier(identifier)

    def _bind(self, value: Any) -> str:
        self.values.append(self.context.dialect.encode_value(value))
        return "?"

    def _start(self, action: Action) -> TableSchema:
        self.action = action
        self.values = []
        self.sql = ""

        return self._require_from_table()

    def _finish(self, sql: str) -> CompiledQuery:
        self.sql = sql
        return CompiledQuery(sql, tuple(self.values))

    def _table_sql(self, schema: TableSchema, aliased: bool = True) -> str:
        sql = self._quote(self.context.prefixed(schema.name))
        return f"{sql} {self._quote(schema.alias)}" if aliased else sql

    def _own_column(self, column: str) -> str:
        """Bare name of *column*, which must belong to the from-table."""
        from_table = self._require_from_table()
        alias, _, name = self.resolve_column(column).partition(".")
        if alias != from_table.alias:
            raise QueryBuildError(
                f"The column {column!r} is not a column of the table {from_table.name!r}",
                sql=self.sql,
            )

        return name

    def _parse_leaf(self, leaf: Leaf, strip: bool) -> str:
        column = self._own_column(leaf.column) if strip else self.resolve_column(leaf.column)
        sql = apply_special(leaf.special, self._quote(column))
        operator, value = leaf.operator, leaf.value

        if operator in (IS_NULL, IS_NOT_NULL):
            return f"{sql} {operator}"
        if value is None and operator in (EQUALS, NOT_EQUALS):
            return f"{sql} {IS_NULL if operator == EQUALS else IS_NOT_NULL}"

        if isinstance(value, _SEQUENCE_TYPES):
            if not value:
                raise QueryBuildError(f"Empty value list for column {leaf.column!r}", sql=self.sql)
            if operator != NOT_IN:
                operator = IN
            placeholders = ", ".join(self._bind(v) for v in value)
            return f"{sql} {operator} ({placeholders})"

        if operator in (IN, NOT_IN):
            return f"{sql} {operator} ({self._bind(value)})"

        return f"{sql} {operator} {self._bind(value)}"

    def _parse_node(self, node: Node, strip: bool) -> str:
        if isinstance(node, Criterion):
            return self._parse_criterion(node, strip)

        return self._parse_leaf(node, strip)

    def _parse_criterion(self, criterion: Criterion, strip: bool = False) -> str:
        """Compile a criterion group.

        AND children are wrapped as ``(a AND b)``; OR children are appended to
        that group as ``(<and group> OR c OR d)``.
        """
        wheres = [sql for node in criterion.wheres if (sql := self._parse_node(node, strip))]
        ors = [sql for node in criterion.ors if (sql := self._parse_node(node, strip))]
        if not ors:
            return f"({' AND '.join(wheres)})" if wheres else ""

        if len(wheres) > 1:
            head = [f"({' AND '.join(wheres)})"]
        else:
            head = wheres

        return f"({' OR '.join(head + ors)})"

    def _where_sql(self, strip: bool = False) -> str:
        wheres = [
            sql for c in self.criteria if not c.is_empty() and (sql := self._parse_criterion(c, strip))
        ]
        ors = [sql for c in self.ors if not c.is_empty() and (sql := self._parse_criterion(c, strip))]
        if not wheres and not ors:
            return ""

        clause = " AND ".join(wheres)
        if ors:
            clause = f"({' OR '.join(([clause] if clause else []) + ors)})"

        return f" WHERE {clause}"

    def _join_sql(self) -> str:
        sql = ""
        for join in self.joins.values():
            conditions = [f"{self._quote(join.right_column)} = {self._quote(join.left_column)}"]
            for column, value in join.criteria:
                leaf = Leaf(qualify(join.table.alias, column), value)
                conditions.append(self._parse_leaf(leaf, strip=False))
            sql += f" {join.join_type} {self._table_sql(join.table)} ON ({' AND '.join(conditions)})"

        return sql

    def _selection_sql(self) -> str:
        if not self.selections:
            return ", ".join(
                f"{self._quote(column)} AS {self._quote(self.selection_alias(column))}"
                for column in self.alias_columns()
            )

        parts = []
        for key, selection in self.selections.items():
            expression = apply_special(selection.special, self._quote(selection.column))
            if selection.variable:
                expression = f"@{selection.variable}:={expression}"
            parts.append(f"{expression} AS {self._quote(self.selection_alias(key))}")

        if self.distinct and self.context.dialect.driver == "pgsql":
            for column, sort in self.sort_orders:
                if not isinstance(sort, tuple):
                    resolved = self.resolve_column(column)
                    if resolved not in self.selections:
                        parts.append(
                            f"{self._quote(resolved)} AS {self._quote(self.selection_alias(resolved))}"
                        )

        return ", ".join(parts)

    def _group_sql(self, include_orders: bool = False) -> str:
        columns = [self.resolve_column(column) for column, _ in self.sort_groups]
        if include_orders:
            for column, sort in self.sort_orders:
                if isinstance(sort, tuple):
                    continue
                resolved = self.resolve_column(column)
                if resolved not in columns:
                    columns.append(resolved)

        if not columns:
            return ""

        return " GROUP BY " + ", ".join(self._quote(c) for c in columns)

    def _order_sql(self) -> str:
        terms = []
        for column, sort in self.sort_groups:
            if isinstance(sort, str):
                terms.append(f"{self._quote(self.resolve_column(column))} {sort.upper()}")

        for column, sort in self.sort_orders:
            quoted = self._quote(self.resolve_column(column))
            if isinstance(sort, tuple):
                terms.extend(f"{quoted} = {self._bind(value)} DESC" for value in sort)
            elif sort is not None:
                terms.append(f"{quoted} {sort.upper()}")
            else:
                terms.append(quoted)

        return " ORDER BY " + ", ".join(terms) if terms else ""

    def generate_select(self, all_rows: bool = False) -> CompiledQuery:
        """Compile a SELECT.

        Args:
            all_rows: Skip the WHERE clause and select every row.
        """
        from_table = self._start("select")
        sql = "SELECT DISTINCT " if self.distinct else "SELECT "
        sql += self._selection_sql()
        sql += f" FROM {self._table_sql(from_table)}"
        self.sql = sql
        sql += self._join_sql()
        self.sql = sql
        if not all_rows:
            sql += self._where_sql()
            self.sql = sql
        sql += self._group_sql()
        sql += self._order_sql()
        sql += self.context.dialect.limit_clause(self.limit, self.offset)

        return self._finish(sql)

    def generate_count(self) -> CompiledQuery:
        """Compile ``SELECT COUNT(...) AS num_col``.

        Counts the first custom selection, or the id column when nothing is
        selected explicitly.
        """
        from_table = self._start("count")
        if self.selections:
            column = next(iter(self.selections.values())).column
        else:
            column = qualify(from_table.alias, from_table.id_column)

        distinct = "DISTINCT " if self.distinct else ""
        sql = f"SELECT COUNT({distinct}{self._quote(column)}) AS {self._quote(COUNT_ALIAS)}"
        sql += f" FROM {self._table_sql(from_table)}"
        self.sql = sql
        sql += self._join_sql()
        self.sql = sql
        sql += self._where_sql()
        self.sql = sql
        sql += self._group_sql(include_orders=True)

        return self._finish(sql)

    def _assignment_sql(self, assignment: _Assignment) -> str:
        if assignment.variable:
            return f"@{assignment.variable}"

        return self._bind(assignment.value)

    def generate_update(self) -> CompiledQuery:
        from_table = self._start("update")
        if not self.updates:
            raise QueryBuildError("No columns to update")

        sets = ", ".join(
            f"{self._quote(a.column)} = {self._assignment_sql(a)}" for a in self.updates.values()
        )
        sql = f"UPDATE {self._table_sql(from_table, aliased=False)} SET {sets}"
        self.sql = sql
        sql += self._where_sql(strip=True)

        return self._finish(sql)

    def generate_insert(self) -> CompiledQuery:
        from_table = self._start("insert")
        if self.criteria or self.ors:
            raise QueryBuildError("Insert queries cannot have WHERE criteria")
        if not self.inserts:
            raise QueryBuildError("No columns to insert")

        columns = ", ".join(self._quote(a.column) for a in self.inserts.values())
        values = ", ".join(self._assignment_sql(a) for a in self.inserts.values())
        sql = f"INSERT INTO {self._table_sql(from_table, aliased=False)} ({columns}) VALUES ({values})"

        return self._finish(sql)

    def generate_delete(self) -> CompiledQuery:
        from_table = self._start("delete")
        sql = f"DELETE FROM {self._table_sql(from_table, aliased=False)}"
        self.sql = sql
        sql += self._where_sql(strip=True)

        return self._finish(sql)

    def compile(self) -> CompiledQuery:
        """Regenerate the query for the current ``action``."""
        if self.action == "count":
            return self.generate_count()
        if self.action == "insert":
            return self.generate_insert()
        if self.action == "update":
            return self.generate_update()
        if self.action == "delete":
            return self.generate_delete()

        return self.generate_select()
