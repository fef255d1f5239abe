"""Attached storage catalog holding materialised cache tables."""

from __future__ import annotations

import contextlib
import logging
import uuid
from typing import Iterator, Mapping

import duckdb
import pyarrow as pa

from .._sql import TableName, quote_identifier
from ..errors import NotInitializedError, StorageError
from .warehouse import sql_literal

logger = logging.getLogger(__name__)

DUCKLAKE_PREFIX = "ducklake:"


class StorageManager:
    """Own the catalog that cache tables are written to.

    Physical tables are laid out as ``catalog.<source name>.<cache name>``.
    A location prefixed with ``ducklake:`` loads the DuckLake extension
    before attaching.
    """

    def __init__(self, connection: duckdb.DuckDBPyConnection, *, catalog: str) -> None:
        if not catalog:
            raise ValueError("catalog must be a non-empty string")
        self._connection = connection
        self._catalog = catalog
        self._attached = False

    @property
    def catalog(self) -> str:
        return self._catalog

    @property
    def is_attached(self) -> bool:
        return self._attached

    def attach(self, location: str = ":memory:", *, data_path: str | None = None) -> str:
        if self._attached:
            return self._catalog
        statements: list[str] = []
        if location.startswith(DUCKLAKE_PREFIX):
            statements += ["INSTALL ducklake", "LOAD ducklake"]
        options = f" (DATA_PATH {sql_literal(data_path)})" if data_path else ""
        statements.append(
            f"ATTACH {sql_literal(location)} AS {quote_identifier(self._catalog)}{options}"
        )
        with self._cursor("Failed to attach storage") as cursor:
            for statement in statements:
                cursor.execute(statement)
        self._attached = True
        logger.info("Attached storage %s as catalog %s", location, self._catalog)
        return self._catalog

    def use_existing_catalog(self, name: str) -> str:
        """Adopt a catalog the host has already attached."""

        with self._cursor("Failed to inspect catalogs") as cursor:
            row = cursor.execute(
                "SELECT database_name FROM duckdb_databases() "
                "WHERE lower(database_name) = lower(?)",
                [name],
            ).fetchone()
        if row is None:
            raise StorageError(f"Catalog '{name}' is not attached")
        self._catalog = row[0]
        self._attached = True
        logger.info("Using existing catalog %s", self._catalog)
        return self._catalog

    def physical_table_name(self, cache_name: str, source_name: str) -> TableName:
        return TableName(name=cache_name, schema=source_name, catalog=self._catalog)

    def materialize(self, cache_name: str, source_name: str, data: pa.Table) -> TableName:
        """Replace the cache table with ``data`` in one statement."""

        target = self.physical_table_name(cache_name, source_name)
        view = f"__duck_sync_{uuid.uuid4().hex}"
        self.materialize_query(
            target, f"SELECT * FROM {quote_identifier(view)}", views={view: data}
        )
        logger.debug("Materialised %d rows into %s", data.num_rows, target)
        return target

    def materialize_query(
        self,
        target: TableName,
        query: str,
        *,
        views: Mapping[str, pa.Table] | None = None,
    ) -> TableName:
        """Create or replace ``target`` with the result of a host-side ``query``.

        ``views`` are arrow tables registered on the statement's cursor for
        the duration of the replacement.
        """

        self._require_attached()
        registered = dict(views or {})
        with self._cursor(f"Failed to materialise {target}") as cursor:
            for view, data in registered.items():
                cursor.register(view, data)
            try:
                self._replace(cursor, target, query)
            finally:
                for view in registered:
                    cursor.unregister(view)
        return target

    def drop(self, cache_name: str, source_name: str) -> None:
        self._require_attached()
        target = self.physical_table_name(cache_name, source_name)
        with self._cursor(f"Failed to drop {target}") as cursor:
            cursor.execute(f"DROP TABLE IF EXISTS {target.sql()}")

    def _replace(
        self, cursor: duckdb.DuckDBPyConnection, target: TableName, query: str
    ) -> None:
        schema = TableName(name=target.schema, schema=target.catalog)
        cursor.execute(f"CREATE SCHEMA IF NOT EXISTS {schema.sql()}")
        cursor.execute(f"CREATE OR REPLACE TABLE {target.sql()} AS {query}")

    def _require_attached(self) -> None:
        if not self._attached:
            raise NotInitializedError("Storage is not attached. Call setup_storage first.")

    @contextlib.contextmanager
    def _cursor(self, context: str) -> Iterator[duckdb.DuckDBPyConnection]:
        cursor = self._connection.cursor()
        try:
            yield cursor
        except duckdb.Error as exc:
            raise StorageError(f"{context}: {exc}") from exc
        finally:
            cursor.close()


__all__ = ["DUCKLAKE_PREFIX", "StorageManager"]
