"""Route queries to cached copies or straight to their source."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping

import duckdb
import pyarrow as pa

from .._sql import TableName, rewrite_tables, scan_tables
from ..errors import NotFoundError, PassthroughDisabledError, RefreshFailedError
from ..metadata.records import CacheDefinition, DriverKind, Source, utc_now
from ..metadata.store import MetadataStore
from .freshness import is_valid
from .refresh import RefreshOrchestrator
from .storage import StorageManager
from .warehouse import (
    ResultColumn,
    WarehouseConnector,
    describe_relation,
    ensure_arrow_table,
    resolve_connector,
)

logger = logging.getLogger(__name__)


class ExecutionStrategy(str, enum.Enum):
    CACHE = "cache"
    PASSTHROUGH = "passthrough"


@dataclass(frozen=True)
class RoutedQuery:
    """A routing decision together with the query that will actually run."""

    strategy: ExecutionStrategy
    query: str
    original_query: str
    source_name: str
    reason: str
    tables: tuple[str, ...] = ()
    substitutions: Mapping[str, TableName] = field(default_factory=dict)
    columns: tuple[ResultColumn, ...] = ()

    @property
    def from_cache(self) -> bool:
        return self.strategy is ExecutionStrategy.CACHE


@dataclass(frozen=True)
class RoutedResult:
    routed: RoutedQuery
    table: pa.Table

    @property
    def strategy(self) -> ExecutionStrategy:
        return self.routed.strategy

    @property
    def row_count(self) -> int:
        return self.table.num_rows

    def to_pylist(self) -> list[dict[str, Any]]:
        return self.table.to_pylist()


class QueryRouter:
    """All-or-nothing routing of a query issued against one source.

    Every base table is resolved to a cache (by cache name first, then by
    monitored table), each resolved cache is brought up to date, and the
    query is rewritten onto the cache tables only when every reference
    resolved to a cache owned by the routed source. Anything else runs
    unchanged on the source.
    """

    def __init__(
        self,
        connection: duckdb.DuckDBPyConnection,
        metadata: MetadataStore,
        storage: StorageManager,
        orchestrator: RefreshOrchestrator,
        connectors: Mapping[DriverKind, WarehouseConnector],
        *,
        read_dialect: str | None = None,
        write_dialect: str | None = None,
    ) -> None:
        self._connection = connection
        self._metadata = metadata
        self._storage = storage
        self._orchestrator = orchestrator
        self._connectors = connectors
        self._read_dialect = read_dialect
        self._write_dialect = write_dialect

    def route(self, query: str, source_name: str) -> RoutedQuery:
        source = self._metadata.get_source(source_name)
        if source is None:
            raise NotFoundError(f"Source '{source_name}' not found")
        scan = scan_tables(query, dialect=self._read_dialect)
        tables = tuple(sorted(scan.tables))
        resolved = {table: self._resolve_cache(table) for table in tables}
        refresh_failed = self._refresh_resolved(resolved)

        if not scan.parsed:
            reason = "query could not be parsed"
        elif not tables:
            reason = "query references no tables"
        elif not scan.complete:
            reason = "query references tables outside FROM and JOIN clauses"
        elif refresh_failed:
            reason = f"cache refresh failed for {', '.join(sorted(refresh_failed))}"
        else:
            reason = self._unresolved_reason(resolved, source)

        if reason is None:
            substitutions = {
                table: self._storage.physical_table_name(cache.name, cache.source_name)
                for table, cache in resolved.items()
            }
            final = rewrite_tables(
                query,
                substitutions,
                read_dialect=self._read_dialect,
                write_dialect=self._write_dialect,
            )
            with self._connection.cursor() as cursor:
                columns = describe_relation(cursor.sql(final))
            logger.debug("Routing to cache: %s", final)
            return RoutedQuery(
                strategy=ExecutionStrategy.CACHE,
                query=final,
                original_query=query,
                source_name=source.name,
                reason="all tables are cached",
                tables=tables,
                substitutions=substitutions,
                columns=columns,
            )

        if not source.passthrough_enabled:
            raise PassthroughDisabledError(
                f"Query cannot be served from cache ({reason}) and passthrough "
                f"is disabled for source '{source.name}'"
            )
        connector = resolve_connector(self._connectors, source)
        logger.debug("Routing to source %s: %s", source.name, reason)
        return RoutedQuery(
            strategy=ExecutionStrategy.PASSTHROUGH,
            query=query,
            original_query=query,
            source_name=source.name,
            reason=reason,
            tables=tables,
            columns=connector.describe(source.credential, query),
        )

    def execute(self, query: str, source_name: str) -> RoutedResult:
        routed = self.route(query, source_name)
        if routed.from_cache:
            with self._connection.cursor() as cursor:
                table = ensure_arrow_table(cursor.sql(routed.query))
        else:
            source = self._metadata.get_source(routed.source_name)
            connector = resolve_connector(self._connectors, source)
            table = ensure_arrow_table(connector.run_query(source.credential, routed.query))
        return RoutedResult(routed=routed, table=table)

    def _resolve_cache(self, table: str) -> CacheDefinition | None:
        return self._metadata.get_cache(table) or self._metadata.get_cache_by_monitored_table(
            table
        )

    def _refresh_resolved(
        self, resolved: Mapping[str, CacheDefinition | None]
    ) -> set[str]:
        failed: set[str] = set()
        seen: set[str] = set()
        for cache in resolved.values():
            if cache is None or cache.name.upper() in seen:
                continue
            seen.add(cache.name.upper())
            status = self._orchestrator.refresh(cache.name)
            if status.failed:
                logger.warning(
                    "Cache %s could not be refreshed, routing to source: %s",
                    cache.name,
                    status.message,
                )
                failed.add(cache.name)
        return failed

    @staticmethod
    def _unresolved_reason(
        resolved: Mapping[str, CacheDefinition | None], source: Source
    ) -> str | None:
        for table, cache in resolved.items():
            if cache is None:
                return f"table '{table}' is not cached"
            if cache.source_name.upper() != source.name.upper():
                return f"table '{table}' is cached from source '{cache.source_name}'"
        return None


class ReplacementScan:
    """Resolve bare table names the host could not find to cache tables.

    Declines (returns ``None``) when the engine is not initialised or the
    name is not a cache. A cache that is invalid locally is refreshed first,
    and a failed refresh is raised rather than routed around.
    """

    def __init__(
        self,
        metadata: MetadataStore,
        storage: StorageManager,
        orchestrator: RefreshOrchestrator,
        *,
        is_initialized: Callable[[], bool],
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._metadata = metadata
        self._storage = storage
        self._orchestrator = orchestrator
        self._is_initialized = is_initialized
        self._clock = clock or utc_now

    def __call__(self, table_name: str) -> TableName | None:
        if not self._is_initialized():
            return None
        cache = self._metadata.get_cache(table_name)
        if cache is None:
            return None
        state = self._metadata.get_state(cache.name)
        if not is_valid(cache, state, self._clock()):
            status = self._orchestrator.refresh(cache.name)
            if status.failed:
                raise RefreshFailedError(
                    f"Cache '{cache.name}' could not be refreshed: {status.message}"
                )
        target = self._storage.physical_table_name(cache.name, cache.source_name)
        logger.debug("Resolved %s to %s", table_name, target)
        return target


__all__ = [
    "ExecutionStrategy",
    "QueryRouter",
    "ReplacementScan",
    "RoutedQuery",
    "RoutedResult",
]
