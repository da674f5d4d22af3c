from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, ClassVar, final

import sqlalchemy as sa

from .config import Settings
from .datastructures import AliasAllocator
from .declarations import AnnotationSource
from .dialect import Dialect
from .metadata import MetadataCache, SchemaStore, TwoTierStore


@dataclass(frozen=True, slots=True)
class SqlHit:
    """One executed statement, recorded in debug mode."""

    sql: str
    values: tuple[Any, ...]
    duration: float


@final
class Context:
    """Everything a query needs from its environment.

    Holds the settings, the active dialect, the metadata cache, the
    connection statements run on and, in debug mode, the most recent
    executed statements (``Settings.max_sql_hits`` of them). ``Criteria`` and ``Statement`` take one explicitly; when they
    don't, the process default installed with :func:`init_context` is used.
    """

    __slots__ = ("connection", "dialect", "metadata", "settings", "sql_hits")

    __default: ClassVar[Context | None] = None
    __lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
        self,
        settings: Settings,
        metadata: MetadataCache,
        dialect: Dialect | None = None,
        connection: sa.Connection | None = None,
    ) -> None:
        self.settings = settings
        self.metadata = metadata
        self.dialect = dialect if dialect is not None else Dialect.for_driver(settings.driver)
        self.connection = connection
        self.sql_hits: deque[SqlHit] = deque(maxlen=settings.max_sql_hits)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        connection: sa.Connection | None = None,
        source: AnnotationSource | None = None,
        store: SchemaStore | None = None,
        aliases: AliasAllocator | None = None,
    ) -> Context:
        """Wire a context from *settings*.

        Args:
            settings: Settings to use; read from the environment when omitted.
            connection: Connection statements execute on. When given, its
                dialect takes precedence over ``settings.driver``.
            source: Annotation source for the metadata cache.
            store: Persistent schema store; defaults to a ``TwoTierStore`` in
                ``settings.cache_dir`` when that is set.
            aliases: Alias allocator; defaults to the process-wide one.

        Returns:
            A new context.
        """
        settings = settings if settings is not None else Settings()
        if store is None:
            store = TwoTierStore.from_settings(settings)

        metadata = MetadataCache(source, store, debug=settings.debug, aliases=aliases)
        dialect = (
            Dialect.from_connection(connection)
            if connection is not None
            else Dialect.for_driver(settings.driver)
        )

        return cls(settings, metadata, dialect=dialect, connection=connection)

    @property
    def debug(self) -> bool:
        return self.settings.debug

    @property
    def table_prefix(self) -> str:
        return self.settings.table_prefix

    def prefixed(self, table_name: str) -> str:
        return f"{self.table_prefix}{table_name}"

    def record_hit(self, sql: str, values: tuple[Any, ...], duration: float) -> None:
        self.sql_hits.append(SqlHit(sql, values, duration))

    @classmethod
    def set_default(cls, context: Context) -> None:
        with cls.__lock:
            cls.__default = context

    @classmethod
    def get_default(cls) -> Context:
        if cls.__default is None:
            raise RuntimeError("Context is not initialized")

        return cls.__default

    @classmethod
    def reset(cls) -> None:
        """Forget the process default context (primarily for tests)."""
        with cls.__lock:
            cls.__default = None


def init_context(context: Context) -> None:
    """Install *context* as the process default.

    Call it once during application startup::

        engine = sa.create_engine("postgresql+psycopg2://...")
        init_context(Context.from_settings(connection=engine.connect()))
    """
    Context.set_default(context)


def get_context(context: Context | None = None) -> Context:
    """Return *context*, or the process default when it is ``None``.

    Raises:
        RuntimeError: If no context is given and none was installed.
    """
    return context if context is not None else Context.get_default()
