"""Implicit resolution of bare cache names in host SQL."""

from __future__ import annotations

import pytest

duckdb = pytest.importorskip("duckdb")

from duck_sync import DriverKind, DuckSync, RefreshFailedError


def _count(engine: DuckSync, table: str = "orders_cache") -> int:
    return engine.sql(f"SELECT count(*) FROM {table}").fetchone()[0]


def test_bare_cache_name_is_resolved_and_refreshed(engine, orders_cache) -> None:
    assert _count(engine) == 3
    assert engine.get_state("orders_cache").refresh_count == 1


def test_hook_declines_before_setup(warehouse) -> None:
    engine = DuckSync(
        duckdb.connect(database=":memory:"),
        connectors={DriverKind.SNOWFLAKE: warehouse},
    )

    assert engine.replacement_scan("orders_cache") is None
    assert engine.sql("SELECT 42").fetchone()[0] == 42
    engine.close()


def test_unknown_names_fall_through_to_the_host(engine, orders_cache) -> None:
    assert engine.replacement_scan("nowhere") is None
    with pytest.raises(duckdb.CatalogException):
        engine.sql("SELECT * FROM nowhere")


def test_host_tables_shadow_caches(engine, orders_cache, warehouse) -> None:
    engine.connection.execute("CREATE TABLE orders_cache AS SELECT 7 AS id")

    assert engine.sql("SELECT id FROM orders_cache").fetchall() == [(7,)]
    assert warehouse.queries == []


def test_refresh_failure_is_escalated(engine, orders_cache, warehouse) -> None:
    warehouse.fail_queries = True

    with pytest.raises(RefreshFailedError, match="orders_cache"):
        engine.sql("SELECT * FROM orders_cache")


def test_expired_ttl_refreshes_on_the_implicit_path(engine, orders_cache, clock) -> None:
    _count(engine)
    clock.advance(3601)

    _count(engine)

    assert engine.get_state("orders_cache").refresh_count == 2


def test_implicit_path_skips_fingerprint_while_routing_checks_it(
    engine, orders_cache, warehouse
) -> None:
    assert _count(engine) == 3
    warehouse.execute("INSERT INTO orders VALUES (4, 'west', 400)", "orders")
    probes_before = len(warehouse.probes)

    # Within the TTL the bare-name path serves the cached copy without probing.
    assert _count(engine) == 3
    assert len(warehouse.probes) == probes_before

    routed = engine.query("SELECT count(*) AS n FROM orders_cache", "warehouse")
    assert routed.to_pylist() == [{"n": 4}]
    assert len(warehouse.probes) > probes_before
    assert _count(engine) == 4


def test_first_access_sees_the_freshly_refreshed_table(engine, orders_cache) -> None:
    assert engine.get_state("orders_cache").refresh_count == 0

    rows = engine.sql("SELECT id FROM orders_cache ORDER BY id").fetchall()

    assert rows == [(1,), (2,), (3,)]


def test_cache_named_inside_a_cte_body_is_resolved(engine, orders_cache) -> None:
    rows = engine.sql(
        "WITH recent AS (SELECT * FROM orders_cache) SELECT count(*) FROM recent"
    ).fetchall()

    assert rows == [(3,)]
    assert engine.get_state("orders_cache").refresh_count == 1


def test_cache_named_inside_a_predicate_subquery_is_resolved(engine, orders_cache) -> None:
    engine.connection.execute(
        "CREATE TABLE ids AS SELECT * FROM (VALUES (1), (3), (9)) AS t(id)"
    )

    rows = engine.sql(
        "SELECT count(*) FROM ids WHERE id IN (SELECT id FROM orders_cache)"
    ).fetchall()

    assert rows == [(2,)]
