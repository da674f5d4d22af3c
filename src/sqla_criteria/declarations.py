"""Declarative mapping annotations and the default annotation source.

Table classes describe a database table, entity classes describe the
application record stored in it::

    @table("users")
    class UsersTable:
        pass


    @entity(UsersTable)
    class User:
        id: Annotated[int, Column("integer", auto_increment=True), Id()]
        email: Annotated[str, Column("varchar", length=200)]
        group: Annotated[Group, Column("integer", name="group_id"), Relates(Group)]
        posts: Annotated[list[Post], Relates(Post, collection=True, foreign_column="author_id")]

Annotation kinds form a closed set (``Table``, ``Column``, ``Id``,
``Relates``, ``SubClasses``, ``Discriminator``). ``MetadataCache`` never
reads classes directly; it asks an ``AnnotationSource``, which by default is
``DeclarativeSource``.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Annotated, Any, Final, Protocol, TypeVar, get_args, get_origin, runtime_checkable

from .datastructures import frozendict
from .exceptions import SchemaError


T = TypeVar("T", bound=type)

ClassRef = type | str

DECLARATION_ATTRIBUTE: Final[str] = "__sqla_declaration__"


@dataclass(frozen=True, slots=True)
class Table:
    name: str


@dataclass(frozen=True, slots=True)
class Column:
    """A mapped column.

    ``name`` defaults to the property name without leading underscores.
    """

    type: str
    name: str | None = None
    nullable: bool = True
    default_value: Any = None
    length: int | None = None
    auto_increment: bool = False
    unsigned: bool = False
    precision: int | None = None


@dataclass(frozen=True, slots=True)
class Id:
    pass


@dataclass(frozen=True, slots=True)
class Relates:
    """A relation to another entity class.

    To-one relations (``collection=False``) must sit on a field that also
    carries a ``Column``; ``key`` names the join column on the related table
    and defaults to its id column.
    """

    class_: ClassRef
    collection: bool = False
    manytomany: bool = False
    joinclass: ClassRef | None = None
    foreign_column: str | None = None
    column: str | None = None
    orderby: str | None = None
    key: str | None = None


@dataclass(frozen=True, slots=True)
class SubClasses:
    identifier: str
    classes: Mapping[str, ClassRef] = field(default_factory=frozendict)


@dataclass(frozen=True, slots=True)
class Discriminator:
    column: str
    discriminators: Mapping[str, ClassRef] = field(default_factory=frozendict)


@dataclass(frozen=True, slots=True)
class ClassDeclaration:
    """Class-level annotations.

    Table classes set ``table`` (and optionally ``entity``, ``subclasses``,
    ``discriminator``); entity classes set ``table_class``.
    """

    table: Table | None = None
    table_class: ClassRef | None = None
    entity: ClassRef | None = None
    subclasses: SubClasses | None = None
    discriminator: Discriminator | None = None


@dataclass(frozen=True, slots=True)
class FieldDeclaration:
    property: str
    column: Column | None = None
    relates: Relates | None = None
    is_id: bool = False


@runtime_checkable
class AnnotationSource(Protocol):
    """Supplies the declarations ``MetadataCache`` derives schemas from."""

    def describe_table(self, cls: type) -> ClassDeclaration | None: ...

    def describe_fields(self, cls: type) -> Sequence[FieldDeclaration]: ...


def table(
    name: str,
    *,
    entity: ClassRef | None = None,
    subclasses: SubClasses | None = None,
    discriminator: Discriminator | None = None,
) -> Callable[[T], T]:
    """Declare a table class."""
    declaration = ClassDeclaration(
        table=Table(name),
        entity=entity,
        subclasses=subclasses,
        discriminator=discriminator,
    )

    def decorate(cls: T) -> T:
        setattr(cls, DECLARATION_ATTRIBUTE, declaration)
        return cls

    return decorate


def entity(table_class: ClassRef) -> Callable[[T], T]:
    """Declare an entity class stored in *table_class*.

    When *table_class* is a declared table class without an entity link, it
    is linked back to the decorated class.
    """

    def decorate(cls: T) -> T:
        setattr(cls, DECLARATION_ATTRIBUTE, ClassDeclaration(table_class=table_class))
        if isinstance(table_class, type):
            existing = table_class.__dict__.get(DECLARATION_ATTRIBUTE)
            if isinstance(existing, ClassDeclaration) and existing.entity is None:
                setattr(table_class, DECLARATION_ATTRIBUTE, replace(existing, entity=cls))
        return cls

    return decorate


class DeclarativeSource:
    """Reads decorator declarations and ``Annotated`` field metadata."""

    def describe_table(self, cls: type) -> ClassDeclaration | None:
        declaration = getattr(cls, DECLARATION_ATTRIBUTE, None)

        return declaration if isinstance(declaration, ClassDeclaration) else None

    def describe_fields(self, cls: type) -> Sequence[FieldDeclaration]:
        """Return the fields declared on *cls* itself, in declaration order.

        Inherited fields are not included; ``MetadataCache`` composes them
        from the ancestor's own declarations.
        """
        try:
            hints = inspect.get_annotations(cls, eval_str=True)
        except NameError as exc:
            raise SchemaError(f"Cannot evaluate annotations of {cls.__qualname__}: {exc}") from exc

        fields: list[FieldDeclaration] = []
        for prop, hint in hints.items():
            if get_origin(hint) is not Annotated:
                continue

            column: Column | None = None
            relates: Relates | None = None
            is_id = False
            for meta in get_args(hint)[1:]:
                if isinstance(meta, Column):
                    column = meta
                elif isinstance(meta, Relates):
                    relates = meta
                elif isinstance(meta, Id) or meta is Id:
                    is_id = True

            if column is not None or relates is not None:
                fields.append(FieldDeclaration(prop, column=column, relates=relates, is_id=is_id))

        return fields
