"""Warehouse connectors used for source queries and change probes."""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Protocol, Sequence

import duckdb
import pyarrow as pa

from ..errors import DuckSyncError, RemoteQueryError
from ..metadata.records import DriverKind, Source

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResultColumn:
    """Name and engine type of one result column."""

    name: str
    type: str


def ensure_arrow_table(result: Any) -> pa.Table:
    if isinstance(result, pa.Table):
        return result
    if isinstance(result, pa.RecordBatchReader):
        return result.read_all()
    if hasattr(result, "arrow"):
        return ensure_arrow_table(result.arrow())
    if hasattr(result, "fetch_arrow_table"):
        return result.fetch_arrow_table()
    raise TypeError("Connector must return a pyarrow.Table or DuckDB relation")


def describe_relation(relation: duckdb.DuckDBPyRelation) -> tuple[ResultColumn, ...]:
    """Column names and types of a bound (not executed) relation."""

    return tuple(
        ResultColumn(name=name, type=str(column_type))
        for name, column_type in zip(relation.columns, relation.types)
    )


def sql_literal(value: str) -> str:
    escaped = str(value).replace("'", "''")
    return f"'{escaped}'"


class WarehouseConnector(Protocol):
    """Black-box access to a remote warehouse."""

    def run_query(self, credential: str, query: str) -> pa.Table:
        """Run ``query`` remotely and return its full result."""

    def probe_last_modified(
        self, credential: str, table_names: Sequence[str]
    ) -> Mapping[str, str]:
        """Return ``{qualified table name: change marker}`` for ``table_names``."""

    def describe(self, credential: str, query: str) -> tuple[ResultColumn, ...]:
        """Return the result schema of ``query`` without running it."""


def resolve_connector(
    connectors: Mapping[DriverKind, WarehouseConnector], source: Source
) -> WarehouseConnector:
    connector = connectors.get(source.driver)
    if connector is None:
        raise DuckSyncError(
            f"No warehouse connector registered for driver '{source.driver.value}'"
        )
    return connector


def _bare_name(table_name: str) -> str:
    return table_name.rsplit(".", 1)[-1].strip().strip('"').upper()


def _matches_monitored(full_name: str, monitored: Sequence[str]) -> bool:
    candidate = full_name.upper()
    for name in monitored:
        target = name.strip().upper()
        if candidate == target or candidate.endswith("." + target):
            return True
    return False


class SnowflakeConnector:
    """Reach Snowflake through the host's ``snowflake_query`` table function.

    The credential handle is the name of a DuckDB secret created with the
    Snowflake extension. Change markers come from
    ``information_schema.tables.last_altered``.
    """

    function_name = "snowflake_query"

    def __init__(self, connection: duckdb.DuckDBPyConnection) -> None:
        self._connection = connection

    def host_sql(self, credential: str, query: str) -> str:
        return (
            f"SELECT * FROM {self.function_name}"
            f"({sql_literal(credential)}, {sql_literal(query)})"
        )

    def run_query(self, credential: str, query: str) -> pa.Table:
        with self._remote_call("Failed to execute source query") as cursor:
            return ensure_arrow_table(cursor.sql(self.host_sql(credential, query)))

    def describe(self, credential: str, query: str) -> tuple[ResultColumn, ...]:
        with self._remote_call("Failed to describe source query") as cursor:
            return describe_relation(cursor.sql(self.host_sql(credential, query)))

    def probe_last_modified(
        self, credential: str, table_names: Sequence[str]
    ) -> Mapping[str, str]:
        bare_names = sorted({_bare_name(name) for name in table_names if name})
        if not bare_names:
            return {}
        in_list = ", ".join(sql_literal(name) for name in bare_names)
        probe = (
            "SELECT table_catalog || '.' || table_schema || '.' || table_name, "
            "TO_VARCHAR(last_altered) FROM information_schema.tables "
            f"WHERE table_name IN ({in_list})"
        )
        try:
            result = self.run_query(credential, probe)
        except RemoteQueryError as exc:
            raise RemoteQueryError(f"Failed to query source metadata: {exc}") from exc
        full_names = result.column(0).to_pylist()
        markers = result.column(1).to_pylist()
        logger.debug("Probed %d tables for %s", len(full_names), bare_names)
        return {
            str(full_name): "" if marker is None else str(marker)
            for full_name, marker in zip(full_names, markers)
            if _matches_monitored(str(full_name), table_names)
        }

    @contextlib.contextmanager
    def _remote_call(self, context: str) -> Iterator[duckdb.DuckDBPyConnection]:
        cursor = self._connection.cursor()
        try:
            yield cursor
        except duckdb.Error as exc:
            raise RemoteQueryError(f"{context}: {exc}") from exc
        finally:
            cursor.close()


__all__ = [
    "ResultColumn",
    "SnowflakeConnector",
    "WarehouseConnector",
    "describe_relation",
    "ensure_arrow_table",
    "resolve_connector",
    "sql_literal",
]
