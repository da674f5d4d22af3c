from __future__ import annotations

from pathlib import Path

import pytest
import sqlalchemy as sa

from sqla_criteria import Context, MetadataCache, Settings, TwoTierStore, get_context, init_context


class TestContextFromSettings:
    def test_wires_dialect_and_metadata(self) -> None:
        context = Context.from_settings(Settings(driver="mysql", debug=False, table_prefix="tbg_"))

        assert context.dialect.driver == "mysql"
        assert isinstance(context.metadata, MetadataCache)
        assert context.metadata.debug is False
        assert context.connection is None
        assert context.table_prefix == "tbg_"
        assert context.prefixed("users") == "tbg_users"
        assert len(context.sql_hits) == 0

    def test_cache_dir_builds_two_tier_store(self, tmp_path: Path) -> None:
        context = Context.from_settings(Settings(cache_dir=tmp_path))

        assert isinstance(context.metadata.store, TwoTierStore)
        assert context.metadata.store.cache_dir == tmp_path

    def test_no_cache_dir_no_store(self) -> None:
        assert Context.from_settings(Settings(cache_dir=None)).metadata.store is None

    def test_connection_dialect_wins(self) -> None:
        engine = sa.create_engine("sqlite://")
        with engine.connect() as conn:
            context = Context.from_settings(Settings(driver="mysql"), connection=conn)

            assert context.dialect.driver == "sqlite"
            assert context.connection is conn

    def test_debug_follows_settings(self) -> None:
        assert Context.from_settings(Settings(debug=True)).debug is True
        assert Context.from_settings(Settings(debug=False)).debug is False


class TestDefaultContext:
    def test_init_and_get(self, context: Context, reset_default_context: None) -> None:
        init_context(context)

        assert get_context() is context
        assert Context.get_default() is context

    def test_explicit_context_wins(self, context: Context, reset_default_context: None) -> None:
        init_context(Context.from_settings(Settings()))
        assert get_context(context) is context

    def test_uninitialized(self, reset_default_context: None) -> None:
        Context.reset()
        with pytest.raises(RuntimeError, match="not initialized"):
            get_context()


class TestSqlHits:
    def test_keeps_most_recent_hits(self) -> None:
        context = Context.from_settings(Settings(max_sql_hits=2))
        for n in range(3):
            context.record_hit(f"SELECT {n}", (), 0.0)

        assert [hit.sql for hit in context.sql_hits] == ["SELECT 1", "SELECT 2"]
