"""Engine lifecycle and administrative operations."""

from __future__ import annotations

import pytest

duckdb = pytest.importorskip("duckdb")

from duck_sync import (
    DriverKind,
    DuckSync,
    EngineSettings,
    EngineState,
    NotFoundError,
    NotInitializedError,
    RefreshOutcome,
    SourceInUseError,
    StorageError,
)


@pytest.fixture
def bare_engine(warehouse):
    engine = DuckSync(
        duckdb.connect(database=":memory:"),
        connectors={DriverKind.SNOWFLAKE: warehouse},
    )
    yield engine
    engine.close()


def test_everything_but_setup_requires_initialisation(bare_engine) -> None:
    assert bare_engine.state is EngineState.UNINITIALIZED
    with pytest.raises(NotInitializedError):
        bare_engine.add_source("warehouse", "snowflake", "wh_secret")
    with pytest.raises(NotInitializedError):
        bare_engine.refresh("orders_cache")
    with pytest.raises(NotInitializedError):
        bare_engine.route("SELECT 1", "warehouse")
    with pytest.raises(NotInitializedError):
        bare_engine.list_caches()


def test_setup_storage_attaches_catalog(bare_engine) -> None:
    assert bare_engine.setup_storage() == "ducksync"
    assert bare_engine.initialized
    attached = bare_engine.connection.execute(
        "SELECT count(*) FROM duckdb_databases() WHERE database_name = 'ducksync'"
    ).fetchone()[0]
    assert attached == 1
    assert bare_engine.setup_storage() == "ducksync"


def test_use_existing_catalog(bare_engine) -> None:
    bare_engine.connection.execute("ATTACH ':memory:' AS lake")

    assert bare_engine.use_existing_catalog("LAKE") == "lake"
    bare_engine.add_source("warehouse", "snowflake", "wh_secret")
    bare_engine.create_cache("orders_cache", "warehouse", "SELECT * FROM orders", ["orders"])

    assert bare_engine.refresh("orders_cache").outcome is RefreshOutcome.REFRESHED
    assert str(bare_engine.physical_table("orders_cache")) == "lake.warehouse.orders_cache"


def test_use_existing_catalog_requires_attached_catalog(bare_engine) -> None:
    with pytest.raises(StorageError):
        bare_engine.use_existing_catalog("missing")
    assert not bare_engine.initialized


def test_sources_and_caches_are_listed(engine, orders_cache) -> None:
    assert [source.name for source in engine.list_sources()] == ["warehouse"]
    assert engine.get_source("WAREHOUSE").passthrough_enabled is True
    assert [cache.name for cache in engine.list_caches(source_name="warehouse")] == [
        "orders_cache"
    ]
    state = engine.get_state("orders_cache")
    assert state.refresh_count == 0
    assert not state.has_refreshed


def test_create_cache_requires_known_source(engine) -> None:
    with pytest.raises(NotFoundError):
        engine.create_cache("orders_cache", "nowhere", "SELECT 1", ["orders"])


def test_redefining_a_cache_resets_its_state(engine, orders_cache) -> None:
    engine.refresh("orders_cache")

    redefined = engine.create_cache(
        "orders_cache", "warehouse", "SELECT id FROM orders", ["orders"]
    )

    assert redefined.ttl_seconds is None
    assert not engine.get_state("orders_cache").has_refreshed
    assert engine.refresh("orders_cache").outcome is RefreshOutcome.REFRESHED


def test_moving_a_cache_to_another_source_drops_the_old_table(engine, orders_cache) -> None:
    engine.refresh("orders_cache")
    engine.add_source("finance", "snowflake", "finance_secret")

    engine.create_cache("orders_cache", "finance", "SELECT * FROM orders", ["orders"])

    schemas = engine.connection.execute(
        "SELECT table_schema FROM information_schema.tables "
        "WHERE table_catalog = 'ducksync' AND table_name = 'orders_cache'"
    ).fetchall()
    assert schemas == []
    assert str(engine.physical_table("orders_cache")) == "ducksync.finance.orders_cache"


def test_delete_cache_drops_definition_and_table(engine, orders_cache) -> None:
    engine.refresh("orders_cache")

    engine.delete_cache("orders_cache")

    with pytest.raises(NotFoundError):
        engine.get_cache("orders_cache")
    remaining = engine.connection.execute(
        "SELECT count(*) FROM information_schema.tables "
        "WHERE table_catalog = 'ducksync' AND table_name = 'orders_cache'"
    ).fetchone()[0]
    assert remaining == 0


def test_delete_source_is_refused_while_caches_use_it(engine, orders_cache) -> None:
    with pytest.raises(SourceInUseError, match="orders_cache"):
        engine.delete_source("warehouse")

    engine.delete_cache("orders_cache")
    engine.delete_source("warehouse")

    assert engine.list_sources() == []


def test_settings_validation() -> None:
    with pytest.raises(ValueError):
        EngineSettings(catalog="")
    settings = EngineSettings(catalog="lake", location="ducklake:meta.ducklake")
    assert settings.metadata_schema == "duck_sync"
