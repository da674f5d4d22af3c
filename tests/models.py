from __future__ import annotations

from typing import Annotated

import sqlalchemy as sa

from sqla_criteria import Column, Discriminator, Id, Relates, SubClasses, entity, table


@table("groups")
class GroupsTable:
    pass


@entity(GroupsTable)
class Group:
    id: Annotated[int, Column("integer", auto_increment=True), Id()]
    name: Annotated[str, Column("varchar", length=100)]
    users: Annotated[list[User], Relates(User, collection=True, foreign_column="group_id")]


@table("users")
class UsersTable:
    pass


@entity(UsersTable)
class User:
    id: Annotated[int, Column("integer", auto_increment=True), Id()]
    email: Annotated[str, Column("string", length=200)]
    active: Annotated[bool, Column("boolean", default_value=True)]
    score: Annotated[float, Column("float", nullable=True)]
    _group: Annotated[Group, Column("integer", name="group_id"), Relates(Group)]
    posts: Annotated[
        list[Post],
        Relates("tests.models:Post", collection=True, foreign_column="author_id", orderby="id"),
    ]
    roles: Annotated[
        list[Role],
        Relates(Role, collection=True, manytomany=True, joinclass=UserRolesTable),
    ]


@table("posts")
class PostsTable:
    pass


@entity(PostsTable)
class Post:
    id: Annotated[int, Column("integer", auto_increment=True), Id()]
    title: Annotated[str, Column("varchar", length=200)]
    author: Annotated[User, Column("integer", name="author_id"), Relates(User)]
    editor: Annotated[User | None, Column("integer", name="editor_id"), Relates(User)]


@table("roles")
class RolesTable:
    pass


@entity(RolesTable)
class Role:
    id: Annotated[int, Column("integer", auto_increment=True), Id()]
    name: Annotated[str, Column("varchar", length=50)]


@table("user_roles")
class UserRolesTable:
    id: Annotated[int, Column("integer", auto_increment=True), Id()]
    user: Annotated[int, Column("integer", name="user_id"), Relates(User)]
    role: Annotated[int, Column("integer", name="role_id"), Relates(Role)]


@table("categories")
class CategoriesTable:
    pass


@entity(CategoriesTable)
class Category:
    id: Annotated[int, Column("integer", auto_increment=True), Id()]
    name: Annotated[str, Column("varchar", length=100)]
    parent: Annotated[Category | None, Column("integer", name="parent_id"), Relates("tests.models.Category")]


@table(
    "animals",
    subclasses=SubClasses("kind", {"dog": "tests.models:Dog"}),
    discriminator=Discriminator("kind", {"dog": "tests.models:Dog", "animal": "tests.models:Animal"}),
)
class AnimalsTable:
    pass


@entity(AnimalsTable)
class Animal:
    id: Annotated[int, Column("integer", auto_increment=True), Id()]
    name: Annotated[str, Column("varchar", length=100)]
    kind: Annotated[str, Column("varchar", length=20)]


class Dog(Animal):
    name: Annotated[str, Column("varchar", name="dog_name", length=50)]
    good: Annotated[bool, Column("boolean")]


# Physical tables for the integration cases.

db_metadata = sa.MetaData()

groups_table = sa.Table(
    "groups",
    db_metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("name", sa.String(100), nullable=False),
)

users_table = sa.Table(
    "users",
    db_metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("email", sa.String(200), nullable=False),
    sa.Column("active", sa.Boolean, nullable=False, default=True),
    sa.Column("score", sa.Float, nullable=True),
    sa.Column("group_id", sa.Integer, nullable=True),
)

posts_table = sa.Table(
    "posts",
    db_metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("title", sa.String(200), nullable=False),
    sa.Column("author_id", sa.Integer, nullable=False),
    sa.Column("editor_id", sa.Integer, nullable=True),
)
