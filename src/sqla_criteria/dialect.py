from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Final, Literal

import sqlalchemy as sa
import structlog
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.engine import Dialect as SADialect

from .config import normalize_driver
from .exceptions import ConfigError


logger = structlog.get_logger()

_InsertIdStrategy = Literal["lastrowid", "sequence"]


@dataclass(frozen=True, slots=True)
class _DriverRules:
    dialect_factory: Callable[[], SADialect]
    encode_bool: Callable[[bool], Any]
    insert_id: _InsertIdStrategy
    # LIMIT value meaning "no limit", needed when only OFFSET is set.
    unbounded_limit: str | None


def _bool_as_int(value: bool) -> int:
    return int(value)


def _bool_as_literal(value: bool) -> str:
    return "true" if value else "false"


_DRIVERS: Final[dict[str, _DriverRules]] = {
    "mysql": _DriverRules(mysql.dialect, _bool_as_int, "lastrowid", "18446744073709551615"),
    "pgsql": _DriverRules(postgresql.dialect, _bool_as_literal, "sequence", None),
    "sqlite": _DriverRules(sqlite.dialect, _bool_as_int, "lastrowid", "-1"),
}


@dataclass(frozen=True, slots=True)
class Dialect:
    """Backend-specific SQL rules for one driver family.

    Identifier quoting is delegated to the matching SQLAlchemy dialect's
    identifier preparer (backticks for MySQL, ANSI double quotes otherwise).
    Booleans are bound as ``0``/``1`` for MySQL and SQLite and as the
    ``'true'``/``'false'`` literals for PostgreSQL. New ids are read from the
    cursor's ``lastrowid`` except on PostgreSQL, where the table's
    ``<table>_id_seq`` sequence is queried.

    Use :meth:`for_driver` or :meth:`from_connection`; unsupported drivers are
    rejected there, before any query is built.
    """

    driver: str
    _rules: _DriverRules = field(repr=False, compare=False)
    _sa_dialect: SADialect = field(repr=False, compare=False)

    @classmethod
    def for_driver(cls, driver: str) -> Dialect:
        """Return the dialect for *driver* (``mysql``, ``pgsql`` or ``sqlite``).

        Raises:
            ConfigError: If the driver is not supported.
        """
        try:
            name = normalize_driver(driver)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc

        return _dialect_for(name)

    @classmethod
    def from_connection(cls, bind: sa.Connection | sa.Engine) -> Dialect:
        """Pick the dialect matching a SQLAlchemy connection or engine."""
        return cls.for_driver(bind.dialect.name)

    def quote_identifier(self, identifier: str) -> str:
        """Quote a possibly dotted identifier part by part.

        Example:
            >>> Dialect.for_driver("mysql").quote_identifier("users0.id")
            '`users0`.`id`'
        """
        preparer = self._sa_dialect.identifier_preparer

        return ".".join(preparer.quote_identifier(part) for part in identifier.split("."))

    def encode_value(self, value: Any) -> Any:
        """Encode a bound value; only booleans are backend-dependent."""
        if isinstance(value, bool):
            return self._rules.encode_bool(value)

        return value

    def limit_clause(self, limit: int | None, offset: int | None) -> str:
        """Render `` LIMIT n OFFSET m`` for the parts that are set.

        Both values are clamped to zero. An offset without a limit gets the
        backend's "no limit" value where the grammar requires one.
        """
        sql = ""
        if limit is not None:
            sql += f" LIMIT {max(0, int(limit))}"
        elif offset is not None and self._rules.unbounded_limit is not None:
            sql += f" LIMIT {self._rules.unbounded_limit}"
        if offset is not None:
            sql += f" OFFSET {max(0, int(offset))}"

        return sql

    def sequence_name(self, table_name: str) -> str:
        return f"{table_name}_id_seq"

    def last_insert_id(
        self,
        connection: sa.Connection,
        result: sa.CursorResult[Any],
        table_name: str,
    ) -> Any:
        """Return the id generated by the insert that produced *result*.

        Args:
            connection: Connection the insert ran on.
            result: Cursor result of the insert.
            table_name: Prefixed table name, used to derive the sequence name.
        """
        if self._rules.insert_id == "sequence":
            sequence = self.sequence_name(table_name)
            logger.debug("insert_id_from_sequence", sequence=sequence)

            return connection.execute(
                sa.text("SELECT currval(:sequence)"), {"sequence": sequence}
            ).scalar()

        return result.lastrowid


@lru_cache(maxsize=8)
def _dialect_for(driver: str) -> Dialect:
    rules = _DRIVERS[driver]

    return Dialect(driver=driver, _rules=rules, _sa_dialect=rules.dialect_factory())
