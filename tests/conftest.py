"""Shared fixtures: a deterministic clock and a DuckDB-backed fake warehouse."""

from __future__ import annotations

import datetime as _dt
from typing import Iterator, Mapping, Sequence

import duckdb
import pyarrow as pa
import pytest

from duck_sync import DriverKind, DuckSync
from duck_sync.errors import RemoteQueryError
from duck_sync.server.warehouse import (
    ResultColumn,
    describe_relation,
    ensure_arrow_table,
)


class Clock:
    """Deterministic clock helper for TTL validation."""

    def __init__(self, start: _dt.datetime) -> None:
        self._now = start

    def now(self) -> _dt.datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now = self._now + _dt.timedelta(seconds=seconds)


class FakeWarehouse:
    """Warehouse connector answering from a private in-memory DuckDB.

    Change markers are versions bumped by :meth:`touch`, keyed by the
    fully qualified ``WH.PUBLIC.<TABLE>`` name.
    """

    def __init__(self) -> None:
        self.connection = duckdb.connect(database=":memory:")
        self.markers: dict[str, str] = {}
        self.queries: list[tuple[str, str]] = []
        self.probes: list[tuple[str, ...]] = []
        self.described: list[tuple[str, str]] = []
        self.fail_queries = False
        self._version = 0

    def execute(self, sql: str, *touched: str) -> None:
        self.connection.execute(sql)
        for table in touched:
            self.touch(table)

    def touch(self, table: str) -> None:
        self._version += 1
        self.markers[f"WH.PUBLIC.{table.upper()}"] = f"2024-01-01 00:00:{self._version:02d}"

    def run_query(self, credential: str, query: str) -> pa.Table:
        self.queries.append((credential, query))
        if self.fail_queries:
            raise RemoteQueryError("Failed to execute source query: warehouse unavailable")
        return ensure_arrow_table(self.connection.sql(query))

    def probe_last_modified(
        self, credential: str, table_names: Sequence[str]
    ) -> Mapping[str, str]:
        self.probes.append(tuple(table_names))
        wanted = {name.rsplit(".", 1)[-1].upper() for name in table_names}
        return {
            full_name: marker
            for full_name, marker in self.markers.items()
            if full_name.rsplit(".", 1)[-1] in wanted
        }

    def describe(self, credential: str, query: str) -> tuple[ResultColumn, ...]:
        self.described.append((credential, query))
        try:
            relation = self.connection.sql(query)
        except duckdb.Error:
            # Text the warehouse cannot bind describes as no columns.
            return ()
        return describe_relation(relation)

    def close(self) -> None:
        self.connection.close()


@pytest.fixture
def clock() -> Clock:
    return Clock(_dt.datetime(2024, 1, 1, tzinfo=_dt.timezone.utc))


@pytest.fixture
def warehouse() -> Iterator[FakeWarehouse]:
    fake = FakeWarehouse()
    fake.execute(
        "CREATE TABLE orders AS SELECT * FROM (VALUES "
        "(1, 'north', 50), (2, 'south', 150), (3, 'east', 250)"
        ") AS t(id, region, total)",
        "orders",
    )
    fake.execute(
        "CREATE TABLE shipments AS SELECT * FROM (VALUES "
        "(1, 'shipped'), (2, 'pending')"
        ") AS t(order_id, status)",
        "shipments",
    )
    yield fake
    fake.close()


@pytest.fixture
def engine(warehouse: FakeWarehouse, clock: Clock) -> Iterator[DuckSync]:
    sync = DuckSync(
        duckdb.connect(database=":memory:"),
        connectors={DriverKind.SNOWFLAKE: warehouse},
        clock=clock.now,
    )
    sync.setup_storage()
    sync.add_source("warehouse", "snowflake", "wh_secret", passthrough_enabled=True)
    yield sync
    sync.close()


@pytest.fixture
def orders_cache(engine: DuckSync):
    return engine.create_cache(
        "orders_cache",
        "warehouse",
        "SELECT * FROM orders",
        ["orders"],
        ttl_seconds=3600,
    )
