from __future__ import annotations

import os
import pickle
import tempfile
import threading
from collections.abc import Callable, Mapping
from dataclasses import fields as dataclass_fields
from pathlib import Path
from typing import Any, Final, Protocol, TypeVar, runtime_checkable

import structlog

from .config import Settings
from .datastructures import DEFAULT_ALIASES, AliasAllocator, frozendict
from .declarations import (
    AnnotationSource,
    ClassDeclaration,
    ClassRef,
    Column,
    DeclarativeSource,
    FieldDeclaration,
)
from .exceptions import SchemaError
from .schema import (
    COLUMN_TYPES,
    ColumnDef,
    DiscriminatorDef,
    EntityMapping,
    ForeignColumnDef,
    RelationDef,
    SubclassesDef,
    TableDefinition,
    TableRef,
    TableSchema,
)
from .tools import class_identifier, resolve_class


logger = structlog.get_logger()

CACHE_KEY_PREFIX: Final[str] = "schema_cache_"
DEFAULT_INTEGER_LENGTH: Final[int] = 10
DEFAULT_FLOAT_PRECISION: Final[int] = 2

_R = TypeVar("_R", TableDefinition, EntityMapping)


def cache_key(cls: type) -> str:
    return f"{CACHE_KEY_PREFIX}{class_identifier(cls)}"


@runtime_checkable
class SchemaStore(Protocol):
    """Two-tier persistent cache consulted before deriving a schema."""

    def has(self, key: str) -> bool: ...

    def get(self, key: str) -> Any: ...

    def add(self, key: str, value: Any) -> None: ...

    def file_has(self, key: str) -> bool: ...

    def file_get(self, key: str) -> Any: ...

    def file_add(self, key: str, value: Any) -> None: ...


class TwoTierStore:
    """In-memory dict in front of one pickle file per key in *cache_dir*.

    Values must be picklable; mapped classes are pickled by reference, so
    they have to be importable at module level.
    """

    def __init__(self, cache_dir: Path | str) -> None:
        self.cache_dir = Path(cache_dir)
        self._memory: dict[str, Any] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> TwoTierStore | None:
        return cls(settings.cache_dir) if settings.cache_dir is not None else None

    def has(self, key: str) -> bool:
        return key in self._memory

    def get(self, key: str) -> Any:
        return self._memory[key]

    def add(self, key: str, value: Any) -> None:
        self._memory[key] = value

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.pickle"

    def file_has(self, key: str) -> bool:
        return self._path(key).is_file()

    def file_get(self, key: str) -> Any:
        with self._path(key).open("rb") as f:
            return pickle.load(f)  # noqa: S301

    def file_add(self, key: str, value: Any) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.cache_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                pickle.dump(value, f, protocol=pickle.HIGHEST_PROTOCOL)
            os.replace(tmp, self._path(key))
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


class MetadataCache:
    """Lazily derived, memoized table and entity metadata.

    Lookup order for a class: the in-memory maps, then (outside debug mode)
    the store's memory tier, then its file tier, and finally derivation from
    the annotation source. Derived records are written to both store tiers
    outside debug mode. ``TableSchema`` objects carry a process-local alias
    and are therefore always built in memory, never persisted.

    Derivation is single-flight: misses are serialized on a re-entrant lock,
    so two threads never derive the same class concurrently.
    """

    def __init__(
        self,
        source: AnnotationSource | None = None,
        store: SchemaStore | None = None,
        *,
        debug: bool = True,
        aliases: AliasAllocator | None = None,
    ) -> None:
        self.source: AnnotationSource = source if source is not None else DeclarativeSource()
        self.store = store
        self.debug = debug
        self.aliases = aliases if aliases is not None else DEFAULT_ALIASES
        self._lock = threading.RLock()
        self._definitions: dict[type, TableDefinition] = {}
        self._mappings: dict[type, EntityMapping] = {}
        self._schemas: dict[type, TableSchema] = {}
        self._declarations: dict[type, ClassDeclaration | None] = {}

    # Public lookups

    def get_table_schema(self, table_class: ClassRef) -> TableSchema:
        """Return the loaded schema of *table_class*, building it on first use.

        Raises:
            SchemaError: If the table or its columns are not properly declared.
        """
        cls = resolve_class(table_class)
        if (schema := self._schemas.get(cls)) is not None:
            return schema

        with self._lock:
            if (schema := self._schemas.get(cls)) is not None:
                return schema

            definition = self.get_table_definition(cls)
            if definition.entity_class is not None:
                mapping = self.get_entity_mapping(definition.entity_class)
                columns, foreign_columns = mapping.columns, mapping.foreign_columns
                id_column: str | None = mapping.id_column
            else:
                columns, foreign_columns = definition.columns, definition.foreign_columns
                id_column = definition.id_column

            if not id_column:
                raise SchemaError(f"Cannot find an id column for table {definition.name!r}")

            schema = TableSchema.build(
                definition, columns, foreign_columns, id_column, self.aliases
            )
            self._schemas[cls] = schema
            logger.debug("table_schema_loaded", table=schema.name, alias=schema.alias)

            return schema

    def get_table_definition(self, table_class: ClassRef) -> TableDefinition:
        return self._load(
            self._definitions, resolve_class(table_class), TableDefinition, self._derive_table
        )

    def get_entity_mapping(self, entity_class: ClassRef) -> EntityMapping:
        return self._load(
            self._mappings, resolve_class(entity_class), EntityMapping, self._derive_entity
        )

    def get_column_def(self, entity_class: ClassRef, column: str) -> ColumnDef | None:
        return self.get_entity_mapping(entity_class).get_column(column)

    def get_column_property(self, entity_class: ClassRef, column: str) -> str | None:
        column_def = self.get_column_def(entity_class, column)
        return column_def.property if column_def is not None else None

    def get_relation(self, entity_class: ClassRef, prop: str) -> RelationDef | None:
        return self.get_entity_mapping(entity_class).get_relation(prop)

    def get_table_class(self, entity_class: ClassRef) -> type:
        return self.get_entity_mapping(entity_class).table.table_class

    def get_table_entity_class(self, table_class: ClassRef) -> type:
        definition = self.get_table_definition(table_class)
        if definition.entity_class is None:
            raise SchemaError(f"The table class {definition.table_class!r} is not linked to an entity")
        return definition.entity_class

    def get_table_subclasses(self, table_class: ClassRef) -> SubclassesDef | None:
        return self.get_table_definition(table_class).subclasses

    def clear(self) -> None:
        """Forget everything held in memory (the store is left untouched)."""
        with self._lock:
            self._definitions.clear()
            self._mappings.clear()
            self._schemas.clear()
            self._declarations.clear()

    # Population

    def _load(
        self,
        memo: dict[type, _R],
        cls: type,
        kind: type[_R],
        derive: Callable[[type], _R],
    ) -> _R:
        if (record := memo.get(cls)) is not None:
            return record

        with self._lock:
            if (record := memo.get(cls)) is not None:
                return record

            key = cache_key(cls)
            stored = self._fetch_stored(key)
            if isinstance(stored, kind):
                record = stored
            else:
                record = derive(cls)
                self._persist(key, record)

            memo[cls] = record

            return record

    def _fetch_stored(self, key: str) -> Any:
        if self.debug or self.store is None:
            return None

        if self.store.has(key):
            logger.debug("schema_cache_hit", key=key, tier="memory")
            return self.store.get(key)

        if self.store.file_has(key):
            logger.debug("schema_cache_hit", key=key, tier="file")
            return self.store.file_get(key)

        return None

    def _persist(self, key: str, record: TableDefinition | EntityMapping) -> None:
        if self.debug or self.store is None:
            return

        self.store.add(key, record)
        self.store.file_add(key, record)
        logger.debug("schema_cache_stored", key=key)

    def _declaration(self, cls: type) -> ClassDeclaration | None:
        if cls not in self._declarations:
            self._declarations[cls] = self.source.describe_table(cls)
        return self._declarations[cls]

    def _is_entity(self, cls: type) -> bool:
        declaration = self._declaration(cls)
        return declaration is not None and declaration.table_class is not None

    def _entity_table_class(self, entity_class: type) -> type:
        declaration = self._declaration(entity_class)
        if declaration is None or declaration.table_class is None:
            raise SchemaError(f"The class {entity_class!r} is missing a valid table declaration")

        return resolve_class(declaration.table_class)

    def _derive_table(self, cls: type) -> TableDefinition:
        declaration = self._declaration(cls)
        if declaration is None or declaration.table is None:
            raise SchemaError(f"The class {cls!r} does not have a proper Table declaration")

        name = declaration.table.name
        if not name:
            raise SchemaError(f"The Table declaration of {cls!r} is missing the required name")

        subclasses = None
        if (sub := declaration.subclasses) is not None:
            subclasses = SubclassesDef(
                identifier=sub.identifier,
                mapping=frozendict({k: resolve_class(v) for k, v in sub.classes.items()}),
            )

        discriminator = None
        if (disc := declaration.discriminator) is not None:
            discriminator = DiscriminatorDef(
                column=f"{name}.{disc.column}",
                mapping=frozendict({k: resolve_class(v) for k, v in disc.discriminators.items()}),
            )

        columns, foreign_columns, id_column, _ = self._build_fields(
            cls, name, {f.property: f for f in self.source.describe_fields(cls)}
        )
        logger.debug("table_derived", table_class=class_identifier(cls), table=name)

        return TableDefinition(
            table_class=cls,
            name=name,
            entity_class=resolve_class(declaration.entity) if declaration.entity else None,
            subclasses=subclasses,
            discriminator=discriminator,
            columns=columns,
            foreign_columns=foreign_columns,
            id_column=id_column,
        )

    def _derive_entity(self, cls: type) -> EntityMapping:
        table_class = self._entity_table_class(cls)
        definition = self.get_table_definition(table_class)

        columns, foreign_columns, id_column, relations = self._build_fields(
            cls, definition.name, self._collect_fields(cls)
        )
        if id_column is None:
            raise SchemaError(f"Cannot find an id column for the class {cls!r}")

        logger.debug(
            "entity_derived",
            entity_class=class_identifier(cls),
            table=definition.name,
            columns=len(columns),
            relations=len(relations),
        )

        return EntityMapping(
            entity_class=cls,
            table=TableRef(table_class, definition.name),
            columns=columns,
            foreign_columns=foreign_columns,
            id_column=id_column,
            relations=relations,
        )

    def _collect_fields(self, cls: type) -> frozendict[str, FieldDeclaration]:
        """Field declarations of *cls*, composed over its nearest mapped ancestor."""
        parent = next(
            (base for base in cls.__mro__[1:] if base is not object and self._is_entity(base)),
            None,
        )
        inherited: frozendict[str, FieldDeclaration] = (
            self._collect_fields(parent) if parent is not None else frozendict()
        )

        return inherited.merge({f.property: f for f in self.source.describe_fields(cls)})

    def _build_fields(
        self,
        owner: type,
        table_name: str,
        declared: Mapping[str, FieldDeclaration],
    ) -> tuple[
        frozendict[str, ColumnDef],
        frozendict[str, ForeignColumnDef],
        str | None,
        frozendict[str, RelationDef],
    ]:
        columns: dict[str, ColumnDef] = {}
        foreign_columns: dict[str, ForeignColumnDef] = {}
        relations: dict[str, RelationDef] = {}
        id_column: str | None = None

        for prop, declaration in declared.items():
            column_def: ColumnDef | None = None
            if declaration.column is not None:
                column_def = _column_def(owner, prop, declaration.column, table_name)
                columns[column_def.name] = column_def
                if declaration.is_id:
                    id_column = column_def.name
            elif declaration.is_id:
                raise SchemaError(f"The id property {prop!r} in {owner!r} has no Column declaration")

            if (relates := declaration.relates) is None:
                continue

            target = resolve_class(relates.class_)
            relations[prop] = RelationDef(
                property=prop,
                target_class=target,
                is_collection=relates.collection,
                is_many_to_many=relates.manytomany,
                join_class=resolve_class(relates.joinclass) if relates.joinclass else None,
                foreign_column=relates.foreign_column,
                local_column=relates.column,
                order_by=relates.orderby,
            )
            if not relates.collection:
                if column_def is None:
                    raise SchemaError(
                        f"The property {prop!r} in {owner!r} is missing a Column declaration, "
                        "or is improperly marked as not being a collection"
                    )
                foreign_columns[column_def.name] = ForeignColumnDef(
                    **{f.name: getattr(column_def, f.name) for f in dataclass_fields(ColumnDef)},
                    target_table=self._entity_table_class(target),
                    key=relates.key,
                )

        return frozendict(columns), frozendict(foreign_columns), id_column, frozendict(relations)


def _column_def(owner: type, prop: str, column: Column, table_name: str) -> ColumnDef:
    name = f"{table_name}.{column.name or prop.lstrip('_')}"
    column_type = column.type.lower()
    if column_type == "string":
        column_type = "varchar"
    if column_type not in COLUMN_TYPES:
        raise SchemaError(
            f"Unknown column type {column.type!r} for {prop!r} in {owner!r}. "
            f"Expected one of {sorted(COLUMN_TYPES)}"
        )

    length = column.length
    default_value = column.default_value
    precision = None
    auto_increment = unsigned = False
    if column_type in ("integer", "float"):
        auto_increment = column.auto_increment
        unsigned = column.unsigned
        if length is None:
            length = DEFAULT_INTEGER_LENGTH
        if column_type == "float":
            precision = column.precision if column.precision is not None else DEFAULT_FLOAT_PRECISION
        elif default_value is None:
            default_value = 0

    return ColumnDef(
        property=prop,
        name=name,
        type=column_type,
        nullable=column.nullable,
        default_value=default_value,
        length=length,
        auto_increment=auto_increment,
        unsigned=unsigned,
        precision=precision,
    )
