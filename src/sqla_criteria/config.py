"""Runtime configuration.

Settings are read from keyword arguments first, then from environment
variables prefixed with ``SQLA_CRITERIA_``:

    SQLA_CRITERIA_DRIVER=pgsql
    SQLA_CRITERIA_DEBUG=false
    SQLA_CRITERIA_TABLE_PREFIX=tbg_
    SQLA_CRITERIA_CACHE_DIR=/var/cache/myapp/schema

DSN handling and connection bootstrap belong to the application; build a
SQLAlchemy engine there and hand its connection to ``Context``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Final

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SUPPORTED_DRIVERS: Final[frozenset[str]] = frozenset({"mysql", "pgsql", "sqlite"})

DRIVER_ALIASES: Final[dict[str, str]] = {
    "postgresql": "pgsql",
    "postgres": "pgsql",
    "mariadb": "mysql",
}


def normalize_driver(driver: str) -> str:
    """Map a driver identifier (or SQLAlchemy dialect name) to a supported driver.

    Raises:
        ValueError: If the driver is not supported.
    """
    name = DRIVER_ALIASES.get(driver.lower(), driver.lower())
    if name not in SUPPORTED_DRIVERS:
        raise ValueError(
            f"The selected database is not supported: {driver!r}. "
            f"Supported: {sorted(SUPPORTED_DRIVERS)}"
        )
    return name


class Settings(BaseSettings):
    """sqla_criteria settings.

    Env vars:
        SQLA_CRITERIA_DRIVER: mysql, pgsql or sqlite (postgresql/mariadb accepted)
        SQLA_CRITERIA_DEBUG: Recompute schemas on every process start and record SQL hits
        SQLA_CRITERIA_TABLE_PREFIX: Prefix prepended to every table name in emitted SQL
        SQLA_CRITERIA_CACHE_DIR: Directory for the file tier of the schema cache
        SQLA_CRITERIA_MAX_SQL_HITS: How many recent statements debug mode keeps
    """

    model_config = SettingsConfigDict(env_prefix="SQLA_CRITERIA_", extra="ignore")

    driver: str = Field(
        default="sqlite",
        description="Backend family. Selects quoting, boolean encoding and insert-id strategy.",
    )
    debug: bool = Field(
        default=True,
        description="Debug mode never reads or writes the persistent schema cache "
        "and keeps the most recent executed statements on the context.",
    )
    table_prefix: str = Field(
        default="",
        description="Prefix prepended to table names in generated SQL.",
    )
    cache_dir: Path | None = Field(
        default=None,
        description="Directory used by the file tier of the schema cache.",
    )
    max_sql_hits: int = Field(
        default=1000,
        ge=1,
        description="Number of most recent statements kept on the context in debug mode.",
    )

    @field_validator("driver")
    @classmethod
    def validate_driver(cls, v: str) -> str:
        return normalize_driver(v)

    @field_validator("table_prefix")
    @classmethod
    def validate_table_prefix(cls, v: str) -> str:
        if v and not v.replace("_", "").isalnum():
            raise ValueError(f"Table prefix must be alphanumeric or underscore, got {v!r}")
        return v
