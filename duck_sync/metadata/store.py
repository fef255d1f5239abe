"""DuckDB-backed persistence for sources, caches and cache state."""

from __future__ import annotations

import contextlib
import logging
from datetime import datetime
from typing import Any, Callable, Iterator

import duckdb

from .._sql import TableName, quote_identifier
from ..errors import NotInitializedError, StorageError
from .records import (
    CacheDefinition,
    CacheState,
    Source,
    to_storage_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

_SOURCE_COLUMNS = "source_name, driver_type, secret_name, passthrough_enabled, created_at"
_CACHE_COLUMNS = (
    "cache_name, source_name, source_query, monitor_tables, ttl_seconds, created_at"
)
_STATE_COLUMNS = (
    "cache_name, last_refresh, source_state_hash, expires_at, refresh_count, "
    "last_row_count, last_duration_ms"
)

# DuckLake catalogs reject PRIMARY KEY and DEFAULT, so uniqueness is kept by
# delete-then-insert inside a transaction.
_TABLE_DDL = {
    "sources": (
        "source_name VARCHAR, driver_type VARCHAR, secret_name VARCHAR, "
        "passthrough_enabled BOOLEAN, created_at TIMESTAMP"
    ),
    "caches": (
        "cache_name VARCHAR, source_name VARCHAR, source_query VARCHAR, "
        "monitor_tables VARCHAR[], ttl_seconds BIGINT, created_at TIMESTAMP"
    ),
    "state": (
        "cache_name VARCHAR, last_refresh TIMESTAMP, source_state_hash VARCHAR, "
        "expires_at TIMESTAMP, refresh_count BIGINT, last_row_count BIGINT, "
        "last_duration_ms DOUBLE"
    ),
}


class MetadataStore:
    """CRUD for metadata tables living in ``catalog.schema``.

    Names are matched case-insensitively. Every operation other than
    :meth:`initialize` raises :class:`NotInitializedError` until the schema
    has been created.
    """

    def __init__(
        self,
        connection: duckdb.DuckDBPyConnection,
        *,
        catalog: str,
        schema: str = "duck_sync",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._connection = connection
        self._catalog = catalog
        self._schema = schema
        self._clock = clock or utc_now
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        if self._initialized:
            return
        schema_sql = f"{quote_identifier(self._catalog)}.{quote_identifier(self._schema)}"
        with self._cursor() as cursor:
            cursor.execute(f"CREATE SCHEMA IF NOT EXISTS {schema_sql}")
            for table, columns in _TABLE_DDL.items():
                cursor.execute(f"CREATE TABLE IF NOT EXISTS {self._table(table)} ({columns})")
        self._initialized = True
        logger.debug("Metadata schema ready at %s", schema_sql)

    # === Sources ===

    def create_source(self, source: Source) -> Source:
        self._require_initialized()
        created_at = source.created_at or self._clock()
        with self._transaction() as cursor:
            cursor.execute(
                f"DELETE FROM {self._table('sources')} WHERE lower(source_name) = lower(?)",
                [source.name],
            )
            cursor.execute(
                f"INSERT INTO {self._table('sources')} ({_SOURCE_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                [
                    source.name,
                    source.driver.value,
                    source.credential,
                    source.passthrough_enabled,
                    to_storage_timestamp(created_at),
                ],
            )
        return self.get_source(source.name)

    def get_source(self, name: str) -> Source | None:
        row = self._fetch_one(
            f"SELECT {_SOURCE_COLUMNS} FROM {self._table('sources')} "
            "WHERE lower(source_name) = lower(?)",
            [name],
        )
        return None if row is None else Source.from_row(row)

    def list_sources(self) -> list[Source]:
        rows = self._fetch_all(
            f"SELECT {_SOURCE_COLUMNS} FROM {self._table('sources')} ORDER BY source_name"
        )
        return [Source.from_row(row) for row in rows]

    def delete_source(self, name: str) -> bool:
        self._require_initialized()
        with self._transaction() as cursor:
            deleted = cursor.execute(
                f"DELETE FROM {self._table('sources')} WHERE lower(source_name) = lower(?)",
                [name],
            ).fetchone()
        return bool(deleted and deleted[0])

    # === Caches ===

    def create_cache(self, cache: CacheDefinition) -> CacheDefinition:
        self._require_initialized()
        created_at = cache.created_at or self._clock()
        with self._transaction() as cursor:
            cursor.execute(
                f"DELETE FROM {self._table('caches')} WHERE lower(cache_name) = lower(?)",
                [cache.name],
            )
            cursor.execute(
                f"INSERT INTO {self._table('caches')} ({_CACHE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                [
                    cache.name,
                    cache.source_name,
                    cache.query,
                    list(cache.monitor_tables),
                    cache.ttl_seconds,
                    to_storage_timestamp(created_at),
                ],
            )
        return self.get_cache(cache.name)

    def get_cache(self, name: str) -> CacheDefinition | None:
        row = self._fetch_one(
            f"SELECT {_CACHE_COLUMNS} FROM {self._table('caches')} "
            "WHERE lower(cache_name) = lower(?)",
            [name],
        )
        return None if row is None else CacheDefinition.from_row(row)

    def get_cache_by_monitored_table(self, table_name: str) -> CacheDefinition | None:
        """Return the first cache (by name) monitoring ``table_name``."""

        for cache in self.list_caches():
            if cache.monitors(table_name):
                return cache
        return None

    def list_caches(self, *, source_name: str | None = None) -> list[CacheDefinition]:
        query = f"SELECT {_CACHE_COLUMNS} FROM {self._table('caches')}"
        parameters: list[Any] = []
        if source_name is not None:
            query += " WHERE lower(source_name) = lower(?)"
            parameters.append(source_name)
        rows = self._fetch_all(query + " ORDER BY cache_name", parameters)
        return [CacheDefinition.from_row(row) for row in rows]

    def delete_cache(self, name: str) -> bool:
        """Remove a cache definition together with its state."""

        self._require_initialized()
        with self._transaction() as cursor:
            cursor.execute(
                f"DELETE FROM {self._table('state')} WHERE lower(cache_name) = lower(?)",
                [name],
            )
            deleted = cursor.execute(
                f"DELETE FROM {self._table('caches')} WHERE lower(cache_name) = lower(?)",
                [name],
            ).fetchone()
        return bool(deleted and deleted[0])

    # === State ===

    def initialize_state(self, cache_name: str) -> CacheState:
        """Create a zeroed state row unless one already exists."""

        existing = self.get_state(cache_name)
        if existing is not None:
            return existing
        with self._transaction() as cursor:
            cursor.execute(
                f"INSERT INTO {self._table('state')} (cache_name, refresh_count) VALUES (?, 0)",
                [cache_name],
            )
        return CacheState(cache_name=cache_name)

    def update_state(self, state: CacheState) -> CacheState:
        """Replace the stored state wholesale and bump the refresh counter."""

        self._require_initialized()
        with self._transaction() as cursor:
            previous = cursor.execute(
                f"SELECT refresh_count FROM {self._table('state')} "
                "WHERE lower(cache_name) = lower(?)",
                [state.cache_name],
            ).fetchone()
            refresh_count = int(previous[0] or 0) + 1 if previous else 1
            cursor.execute(
                f"DELETE FROM {self._table('state')} WHERE lower(cache_name) = lower(?)",
                [state.cache_name],
            )
            cursor.execute(
                f"INSERT INTO {self._table('state')} ({_STATE_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    state.cache_name,
                    to_storage_timestamp(state.last_refresh),
                    state.fingerprint,
                    to_storage_timestamp(state.expires_at),
                    refresh_count,
                    state.last_row_count,
                    state.last_duration_ms,
                ],
            )
        return self.get_state(state.cache_name)

    def get_state(self, cache_name: str) -> CacheState | None:
        row = self._fetch_one(
            f"SELECT {_STATE_COLUMNS} FROM {self._table('state')} "
            "WHERE lower(cache_name) = lower(?)",
            [cache_name],
        )
        return None if row is None else CacheState.from_row(row)

    # === Helpers ===

    def _table(self, name: str) -> str:
        return TableName(name=name, schema=self._schema, catalog=self._catalog).sql()

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError(
                "Metadata store is not initialized. Call setup_storage first."
            )

    @contextlib.contextmanager
    def _cursor(self) -> Iterator[duckdb.DuckDBPyConnection]:
        cursor = self._connection.cursor()
        try:
            yield cursor
        except duckdb.Error as exc:
            raise StorageError(f"Metadata operation failed: {exc}") from exc
        finally:
            cursor.close()

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        with self._cursor() as cursor:
            cursor.begin()
            try:
                yield cursor
            except BaseException:
                cursor.rollback()
                raise
            cursor.commit()

    def _fetch_one(self, query: str, parameters: list[Any]) -> tuple[Any, ...] | None:
        self._require_initialized()
        with self._cursor() as cursor:
            return cursor.execute(query, parameters).fetchone()

    def _fetch_all(
        self, query: str, parameters: list[Any] | None = None
    ) -> list[tuple[Any, ...]]:
        self._require_initialized()
        with self._cursor() as cursor:
            return cursor.execute(query, parameters or []).fetchall()


__all__ = ["MetadataStore"]
