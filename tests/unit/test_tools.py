from __future__ import annotations

import pytest
import sqlalchemy as sa

from sqla_criteria import SchemaError
from sqla_criteria.tools import (
    class_identifier,
    fetch_rows,
    qualify,
    render_sql,
    resolve_class,
    split_placeholders,
    to_named_binds,
)

from ..models import User


class TestPlaceholders:
    def test_split(self) -> None:
        assert split_placeholders("a = ? AND b = ?") == ["a = ", " AND b = ", ""]

    @pytest.mark.parametrize("quoted", ["'?'", '"?"', "`?`", "'it''s ?'"])
    def test_quoted_marks_are_not_placeholders(self, quoted: str) -> None:
        assert split_placeholders(f"a = {quoted} AND b = ?") == [f"a = {quoted} AND b = ", ""]

    def test_named_binds(self) -> None:
        text, names = to_named_binds('SELECT * FROM "users" WHERE "id" IN (?, ?) AND "email" = \'?\'')

        assert text == 'SELECT * FROM "users" WHERE "id" IN (:p0, :p1) AND "email" = \'?\''
        assert names == ("p0", "p1")

    def test_literal_colons_escaped(self) -> None:
        text, names = to_named_binds("SELECT ':x', @v:=1, a::int WHERE b = ?")

        assert text == "SELECT '\\:x', @v:=1, a::int WHERE b = :p0"
        assert names == ("p0",)

    def test_named_binds_accepted_by_sqlalchemy(self) -> None:
        text, names = to_named_binds("SELECT ? AS a, ':b' AS b")
        clause = sa.text(text)

        assert set(clause._bindparams) == set(names)  # type: ignore[attr-defined]


class TestRenderSql:
    def test_renders_values(self) -> None:
        rendered = render_sql("a = ? AND b = ? AND c = ? AND d = ?", [None, 5, 1.5, "o'k"])
        assert rendered == "a = null AND b = 5 AND c = 1.5 AND d = 'o''k'"

    def test_missing_values_keep_placeholder(self) -> None:
        assert render_sql("a = ? AND b = ?", [1]) == "a = 1 AND b = ?"


class TestResolveClass:
    @pytest.mark.parametrize("ref", [User, "tests.models:User", "tests.models.User"])
    def test_resolves(self, ref: type | str) -> None:
        assert resolve_class(ref) is User

    @pytest.mark.parametrize("ref", ["tests.models:Nope", "no.such.module.Cls", "tests.models:db_metadata"])
    def test_unresolvable(self, ref: str) -> None:
        with pytest.raises(SchemaError, match="Cannot resolve"):
            resolve_class(ref)

    def test_class_identifier(self) -> None:
        assert class_identifier(User) == "tests.models.User"


class TestHelpers:
    def test_qualify(self) -> None:
        assert qualify("users0", "users.email") == "users0.email"
        assert qualify("users0", "email") == "users0.email"

    def test_fetch_rows(self) -> None:
        engine = sa.create_engine("sqlite://")
        with engine.connect() as conn:
            rows = fetch_rows(conn.execute(sa.text("SELECT 1 AS a, 'x' AS b")))

        assert len(rows) == 1
        assert list(rows[0].keys()) == ["a", "b"]
        assert rows[0]["b"] == "x"
