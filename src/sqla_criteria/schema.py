from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Final, NamedTuple

from .datastructures import AliasAllocator, frozendict


COLUMN_TYPES: Final[frozenset[str]] = frozenset(
    {"integer", "float", "varchar", "serializable", "boolean"}
)


def column_name(column: str) -> str:
    """Return the part of ``table.column`` after the first dot."""
    _, sep, name = column.partition(".")

    return name if sep else column


@dataclass(frozen=True, slots=True)
class ColumnDef:
    property: str
    name: str
    type: str
    nullable: bool = True
    default_value: Any = None
    length: int | None = None
    auto_increment: bool = False
    unsigned: bool = False
    precision: int | None = None


@dataclass(frozen=True, slots=True)
class ForeignColumnDef(ColumnDef):
    """A to-one relation column; joins ``target_table`` on ``key``."""

    target_table: type | None = None
    key: str | None = None


@dataclass(frozen=True, slots=True)
class RelationDef:
    property: str
    target_class: type
    is_collection: bool = False
    is_many_to_many: bool = False
    join_class: type | None = None
    foreign_column: str | None = None
    local_column: str | None = None
    order_by: str | None = None


@dataclass(frozen=True, slots=True)
class DiscriminatorDef:
    column: str
    mapping: Mapping[str, type] = field(default_factory=frozendict)


@dataclass(frozen=True, slots=True)
class SubclassesDef:
    identifier: str
    mapping: Mapping[str, type] = field(default_factory=frozendict)


@dataclass(frozen=True, slots=True)
class TableDefinition:
    """Cached class-level facts about a table class.

    ``columns``/``foreign_columns``/``id_column`` are only set for table
    classes that declare their own fields instead of linking an entity.
    """

    table_class: type
    name: str
    entity_class: type | None = None
    subclasses: SubclassesDef | None = None
    discriminator: DiscriminatorDef | None = None
    columns: Mapping[str, ColumnDef] = field(default_factory=frozendict)
    foreign_columns: Mapping[str, ForeignColumnDef] = field(default_factory=frozendict)
    id_column: str | None = None


class TableRef(NamedTuple):
    table_class: type
    name: str


@dataclass(frozen=True, slots=True)
class EntityMapping:
    entity_class: type
    table: TableRef
    columns: Mapping[str, ColumnDef]
    foreign_columns: Mapping[str, ForeignColumnDef]
    id_column: str
    relations: Mapping[str, RelationDef]

    def get_column(self, column: str) -> ColumnDef | None:
        return self.columns.get(column)

    def get_relation(self, prop: str) -> RelationDef | None:
        return self.relations.get(prop)


@dataclass(frozen=True, slots=True)
class TableSchema:
    """Loaded table metadata, read-only after the ``MetadataCache`` builds it.

    Column keys are qualified with the bare table name (``users.email``);
    SQL references use the alias (``users3.email``), which is what lets the
    same table appear several times in one query.
    """

    table_class: type
    name: str
    alias: str
    columns: Mapping[str, ColumnDef]
    foreign_columns: Mapping[str, ForeignColumnDef]
    id_column: str
    discriminator: DiscriminatorDef | None = None
    entity_class: type | None = None
    subclasses: SubclassesDef | None = None
    _aliases: AliasAllocator | None = field(default=None, repr=False, compare=False)

    @classmethod
    def build(
        cls,
        definition: TableDefinition,
        columns: Mapping[str, ColumnDef],
        foreign_columns: Mapping[str, ForeignColumnDef],
        id_column: str,
        aliases: AliasAllocator,
    ) -> TableSchema:
        return cls(
            table_class=definition.table_class,
            name=definition.name,
            alias=aliases.allocate(definition.name),
            columns=frozendict(columns),
            foreign_columns=frozendict(foreign_columns),
            id_column=id_column,
            discriminator=definition.discriminator,
            entity_class=definition.entity_class,
            subclasses=definition.subclasses,
            _aliases=aliases,
        )

    def clone(self) -> TableSchema:
        """Return the same table under a freshly allocated alias."""
        assert self._aliases is not None, "only schemas built by MetadataCache can be cloned"

        return replace(self, alias=self._aliases.allocate(self.name))

    def alias_columns(self) -> Iterator[str]:
        """Yield ``alias.column`` for every mapped column, in declaration order."""
        for name in self.columns:
            yield f"{self.alias}.{column_name(name)}"

    def has_column(self, column: str) -> bool:
        return f"{self.name}.{column_name(column)}" in self.columns

    def get_column(self, column: str) -> ColumnDef | None:
        return self.columns.get(f"{self.name}.{column_name(column)}")

    def foreign_key_column(self, foreign: ForeignColumnDef, target: TableSchema) -> str:
        """Return the join column on *target* for *foreign*."""
        return column_name(foreign.key) if foreign.key else column_name(target.id_column)

    def foreign_tables(self) -> Iterator[ForeignColumnDef]:
        """Yield the to-one relation columns that point at another table."""
        for foreign in self.foreign_columns.values():
            if foreign.target_table is not None:
                yield foreign

    def foreign_table_by_local_column(self, column: str) -> ForeignColumnDef | None:
        return self.foreign_columns.get(f"{self.name}.{column_name(column)}")
