from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import sqlalchemy as sa

from sqla_criteria import ConfigError, Dialect


class TestDialectSelection:
    @pytest.mark.parametrize(
        ("driver", "expected"),
        [
            ("mysql", "mysql"),
            ("pgsql", "pgsql"),
            ("sqlite", "sqlite"),
            ("postgresql", "pgsql"),
            ("mariadb", "mysql"),
            ("PGSQL", "pgsql"),
        ],
    )
    def test_for_driver(self, driver: str, expected: str) -> None:
        assert Dialect.for_driver(driver).driver == expected

    def test_unsupported_driver(self) -> None:
        with pytest.raises(ConfigError, match="not supported"):
            Dialect.for_driver("oracle")

    def test_same_driver_same_instance(self) -> None:
        assert Dialect.for_driver("postgresql") is Dialect.for_driver("pgsql")

    def test_from_connection(self) -> None:
        engine = sa.create_engine("sqlite://")
        with engine.connect() as conn:
            assert Dialect.from_connection(conn).driver == "sqlite"
        assert Dialect.from_connection(engine).driver == "sqlite"


class TestQuoting:
    def test_mysql_backticks(self) -> None:
        assert Dialect.for_driver("mysql").quote_identifier("users0.id") == "`users0`.`id`"

    @pytest.mark.parametrize("driver", ["pgsql", "sqlite"])
    def test_ansi_double_quotes(self, driver: str) -> None:
        assert Dialect.for_driver(driver).quote_identifier("users0.id") == '"users0"."id"'

    def test_single_identifier(self) -> None:
        assert Dialect.for_driver("sqlite").quote_identifier("users") == '"users"'

    def test_embedded_quote_is_escaped(self) -> None:
        assert Dialect.for_driver("sqlite").quote_identifier('we"ird') == '"we""ird"'


class TestValueEncoding:
    @pytest.mark.parametrize(("driver", "true", "false"), [("mysql", 1, 0), ("sqlite", 1, 0), ("pgsql", "true", "false")])
    def test_booleans(self, driver: str, true: object, false: object) -> None:
        dialect = Dialect.for_driver(driver)
        assert dialect.encode_value(True) == true
        assert dialect.encode_value(False) == false

    def test_other_values_pass_through(self) -> None:
        dialect = Dialect.for_driver("pgsql")
        assert dialect.encode_value(1) == 1
        assert dialect.encode_value("x") == "x"
        assert dialect.encode_value(None) is None


class TestLimitClause:
    def test_limit_and_offset(self) -> None:
        assert Dialect.for_driver("sqlite").limit_clause(10, 20) == " LIMIT 10 OFFSET 20"

    def test_negative_values_clamped(self) -> None:
        assert Dialect.for_driver("pgsql").limit_clause(-5, -1) == " LIMIT 0 OFFSET 0"

    def test_nothing_set(self) -> None:
        assert Dialect.for_driver("mysql").limit_clause(None, None) == ""

    @pytest.mark.parametrize(
        ("driver", "expected"),
        [
            ("sqlite", " LIMIT -1 OFFSET 5"),
            ("mysql", " LIMIT 18446744073709551615 OFFSET 5"),
            ("pgsql", " OFFSET 5"),
        ],
    )
    def test_offset_without_limit(self, driver: str, expected: str) -> None:
        assert Dialect.for_driver(driver).limit_clause(None, 5) == expected


class TestLastInsertId:
    def test_lastrowid(self) -> None:
        result = SimpleNamespace(lastrowid=7)
        connection = MagicMock()
        assert Dialect.for_driver("mysql").last_insert_id(connection, result, "users") == 7  # type: ignore[arg-type]
        connection.execute.assert_not_called()

    def test_pgsql_reads_sequence(self) -> None:
        connection = MagicMock()
        connection.execute.return_value.scalar.return_value = 42
        dialect = Dialect.for_driver("pgsql")

        assert dialect.last_insert_id(connection, MagicMock(), "tbg_users") == 42
        args = connection.execute.call_args[0]
        assert str(args[0]) == "SELECT currval(:sequence)"
        assert args[1] == {"sequence": "tbg_users_id_seq"}

    def test_sequence_name(self) -> None:
        assert Dialect.for_driver("pgsql").sequence_name("users") == "users_id_seq"
