from __future__ import annotations

import time
from collections.abc import Sequence
from typing import Any

import sqlalchemy as sa
import structlog

from .context import Context, get_context
from .core import Criteria
from .exceptions import ExecutionError
from .tools import render_sql, to_named_binds


logger = structlog.get_logger()


def _backend_message(exc: sa.exc.SQLAlchemyError) -> str:
    if isinstance(exc, sa.exc.DBAPIError) and exc.orig is not None:
        return str(exc.orig)

    return str(exc)


class Statement:
    """A prepared query bound to the context's connection.

    Takes a ``Criteria`` (compiled on demand if it was never generated) or a
    raw SQL string with ``?`` placeholders::

        statement = Statement(criteria, context=ctx)
        result = statement.execute()
        statement.insert_id, statement.row_count

    Preparation happens in the constructor, so a missing or closed
    connection fails before anything is executed.
    """

    __slots__ = (
        "_bind_names",
        "_clause",
        "connection",
        "context",
        "criteria",
        "insert_id",
        "row_count",
        "sql",
        "values",
    )

    def __init__(self, criteria: Criteria | str, *, context: Context | None = None) -> None:
        if isinstance(criteria, Criteria):
            self.criteria: Criteria | None = criteria
            self.context = context if context is not None else criteria.context
            if not criteria.sql:
                criteria.compile()
            self.sql = criteria.sql
            self.values: tuple[Any, ...] = tuple(criteria.values)
        else:
            self.criteria = None
            self.context = get_context(context)
            self.sql = criteria
            self.values = ()

        self.insert_id: Any = None
        self.row_count: int | None = None
        self.connection: sa.Connection | None = None
        self._clause: sa.TextClause | None = None
        self._bind_names: tuple[str, ...] = ()
        self.prepare()

    def prepare(self) -> None:
        """Turn the SQL into a ``sqlalchemy.text`` clause for the context's connection.

        Raises:
            ExecutionError: If there is no connection or it is closed.
        """
        connection = self.context.connection
        if connection is None:
            raise ExecutionError("Could not prepare statement: no connection", sql=self.sql)
        if connection.closed:
            raise ExecutionError("Could not prepare statement: connection is closed", sql=self.sql)

        text, self._bind_names = to_named_binds(self.sql)
        self._clause = sa.text(text)
        self.connection = connection

    def render_sql(self, values: Sequence[Any] | None = None) -> str:
        """The SQL with values interpolated. For display and logs only."""
        return render_sql(self.sql, self.values if values is None else values)

    def execute(self, params: Sequence[Any] | None = None) -> sa.CursorResult[Any]:
        """Execute with the criteria's values, or *params* when given.

        Args:
            params: Positional values for the ``?`` placeholders.

        Returns:
            The SQLAlchemy cursor result.

        Raises:
            ExecutionError: If the backend rejects the statement, or the number
                of values does not match the placeholders.
        """
        assert self.connection is not None and self._clause is not None
        values = tuple(params) if params is not None else self.values
        if len(values) != len(self._bind_names):
            raise ExecutionError(
                f"Expected {len(self._bind_names)} values, got {len(values)}", sql=self.sql
            )

        start = time.perf_counter()
        try:
            result = self.connection.execute(self._clause, dict(zip(self._bind_names, values)))
            self.row_count = result.rowcount
            if self.criteria is not None and self.criteria.action == "insert":
                assert self.criteria.from_table is not None
                self.insert_id = self.context.dialect.last_insert_id(
                    self.connection,
                    result,
                    self.context.prefixed(self.criteria.from_table.name),
                )
        except sa.exc.SQLAlchemyError as exc:
            rendered = self.render_sql(values)
            message = _backend_message(exc)
            logger.warning("statement_failed", sql=rendered, error=message)
            raise ExecutionError(message, sql=rendered) from exc

        duration = time.perf_counter() - start
        if self.context.debug:
            self.context.record_hit(self.sql, values, duration)
            logger.debug(
                "statement_executed",
                sql=self.sql,
                values=values,
                duration=round(duration, 6),
                row_count=self.row_count,
            )

        return result
