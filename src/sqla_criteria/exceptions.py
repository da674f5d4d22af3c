from __future__ import annotations


class SqlaCriteriaError(Exception):
    """Base class for every error raised by sqla_criteria."""


class ConfigError(SqlaCriteriaError, ValueError):
    """Invalid runtime configuration, e.g. an unsupported driver."""


class SchemaError(SqlaCriteriaError):
    """Mapping declarations are missing or invalid.

    Raised for a missing ``Table`` declaration or table name, a mapping
    without an id column, a to-one relation without a backing column, or a
    class reference that cannot be resolved. These indicate a programming
    error and are never retried.
    """


class QueryBuildError(SqlaCriteriaError, ValueError):
    """A criteria cannot be turned into SQL.

    ``sql`` carries whatever SQL the criteria generated last, to help locate
    the offending builder call.
    """

    def __init__(self, message: str, sql: str | None = None) -> None:
        super().__init__(message)
        self.sql = sql

    def __str__(self) -> str:
        message = super().__str__()
        return f"{message} (sql: {self.sql})" if self.sql else message


class ExecutionError(SqlaCriteriaError):
    """The backend rejected a prepared statement or its parameters.

    ``sql`` is the statement with values interpolated, for display only.
    """

    def __init__(self, message: str, sql: str | None = None) -> None:
        super().__init__(message)
        self.sql = sql

    def __str__(self) -> str:
        message = super().__str__()
        return f"{message}\n  SQL: {self.sql}" if self.sql else message
