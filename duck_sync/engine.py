"""Facade wiring metadata, storage, refresh and routing into one engine."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping, Sequence

import duckdb

from ._sql import TableName, referenced_tables, rewrite_tables
from .errors import NotFoundError, NotInitializedError, SourceInUseError
from .metadata.records import CacheDefinition, CacheState, DriverKind, Source, utc_now
from .metadata.store import MetadataStore
from .server.freshness import StalenessOracle
from .server.refresh import RefreshOrchestrator, RefreshStatus
from .server.routing import QueryRouter, ReplacementScan, RoutedQuery, RoutedResult
from .server.storage import StorageManager
from .server.warehouse import SnowflakeConnector, WarehouseConnector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineSettings:
    """Where cache tables live and how queries are parsed and printed."""

    catalog: str = "ducksync"
    location: str = ":memory:"
    data_path: str | None = None
    metadata_schema: str = "duck_sync"
    read_dialect: str = "duckdb"
    write_dialect: str = "duckdb"

    def __post_init__(self) -> None:
        for field_name in ("catalog", "location", "metadata_schema"):
            if not str(getattr(self, field_name) or "").strip():
                msg = f"{field_name} must be a non-empty string"
                raise ValueError(msg)


class EngineState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"


class DuckSync:
    """Transparent warehouse cache hosted inside a DuckDB connection.

    Nothing but :meth:`setup_storage` and :meth:`use_existing_catalog` may be
    called until storage is attached. :meth:`query` routes against a named
    source; :meth:`sql` runs host SQL and resolves unknown bare table names
    to caches.
    """

    def __init__(
        self,
        connection: duckdb.DuckDBPyConnection | None = None,
        *,
        settings: EngineSettings | None = None,
        connectors: Mapping[DriverKind, WarehouseConnector] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._connection = connection if connection is not None else duckdb.connect()
        self._settings = settings or EngineSettings()
        self._clock = clock or utc_now
        self._connectors: dict[DriverKind, WarehouseConnector] = (
            dict(connectors)
            if connectors is not None
            else {DriverKind.SNOWFLAKE: SnowflakeConnector(self._connection)}
        )
        self._state = EngineState.UNINITIALIZED
        self._storage = StorageManager(self._connection, catalog=self._settings.catalog)
        self._wire(self._settings.catalog)

    def _wire(self, catalog: str) -> None:
        self._metadata = MetadataStore(
            self._connection,
            catalog=catalog,
            schema=self._settings.metadata_schema,
            clock=self._clock,
        )
        self._oracle = StalenessOracle(self._connectors, clock=self._clock)
        self._orchestrator = RefreshOrchestrator(
            self._metadata,
            self._storage,
            self._oracle,
            self._connectors,
            clock=self._clock,
        )
        self._router = QueryRouter(
            self._connection,
            self._metadata,
            self._storage,
            self._orchestrator,
            self._connectors,
            read_dialect=self._settings.read_dialect,
            write_dialect=self._settings.write_dialect,
        )
        self._replacement_scan = ReplacementScan(
            self._metadata,
            self._storage,
            self._orchestrator,
            is_initialized=lambda: self.initialized,
            clock=self._clock,
        )

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        return self._connection

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def initialized(self) -> bool:
        return self._state is EngineState.INITIALIZED

    @property
    def catalog(self) -> str:
        return self._storage.catalog

    # === Setup ===

    def setup_storage(
        self, location: str | None = None, *, data_path: str | None = None
    ) -> str:
        """Attach the storage catalog and create the metadata schema."""

        self._storage.attach(
            location or self._settings.location,
            data_path=data_path or self._settings.data_path,
        )
        return self._finish_setup()

    def use_existing_catalog(self, name: str) -> str:
        """Keep caches and metadata in a catalog the host already attached."""

        catalog = self._storage.use_existing_catalog(name)
        self._wire(catalog)
        return self._finish_setup()

    def _finish_setup(self) -> str:
        self._metadata.initialize()
        self._state = EngineState.INITIALIZED
        logger.info("Cache engine initialised on catalog %s", self.catalog)
        return self.catalog

    def _require_initialized(self) -> None:
        if not self.initialized:
            raise NotInitializedError(
                "Cache engine is not initialized. Call setup_storage first."
            )

    # === Sources ===

    def add_source(
        self,
        name: str,
        driver: DriverKind | str,
        credential: str,
        *,
        passthrough_enabled: bool = False,
    ) -> Source:
        """Register a source, replacing any source with the same name."""

        self._require_initialized()
        source = Source(
            name=name,
            driver=driver,
            credential=credential,
            passthrough_enabled=passthrough_enabled,
        )
        return self._metadata.create_source(source)

    def get_source(self, name: str) -> Source:
        self._require_initialized()
        source = self._metadata.get_source(name)
        if source is None:
            raise NotFoundError(f"Source '{name}' not found")
        return source

    def list_sources(self) -> list[Source]:
        self._require_initialized()
        return self._metadata.list_sources()

    def delete_source(self, name: str) -> None:
        source = self.get_source(name)
        dependants = self._metadata.list_caches(source_name=source.name)
        if dependants:
            names = ", ".join(cache.name for cache in dependants)
            raise SourceInUseError(
                f"Source '{source.name}' is still used by caches: {names}"
            )
        self._metadata.delete_source(source.name)

    # === Caches ===

    def create_cache(
        self,
        name: str,
        source_name: str,
        query: str,
        monitor_tables: Sequence[str],
        *,
        ttl_seconds: int | None = None,
    ) -> CacheDefinition:
        """Define a cache. Redefining an existing cache discards its state."""

        source = self.get_source(source_name)
        cache = CacheDefinition(
            name=name,
            source_name=source.name,
            query=query,
            monitor_tables=tuple(monitor_tables),
            ttl_seconds=ttl_seconds,
        )
        previous = self._metadata.get_cache(cache.name)
        if previous is not None:
            self._metadata.delete_cache(previous.name)
            if previous.source_name.upper() != source.name.upper():
                self._storage.drop(previous.name, previous.source_name)
        created = self._metadata.create_cache(cache)
        self._metadata.initialize_state(created.name)
        logger.info("Defined cache %s on source %s", created.name, source.name)
        return created

    def get_cache(self, name: str) -> CacheDefinition:
        self._require_initialized()
        cache = self._metadata.get_cache(name)
        if cache is None:
            raise NotFoundError(f"Cache '{name}' not found")
        return cache

    def list_caches(self, *, source_name: str | None = None) -> list[CacheDefinition]:
        self._require_initialized()
        return self._metadata.list_caches(source_name=source_name)

    def get_state(self, name: str) -> CacheState | None:
        return self._metadata.get_state(self.get_cache(name).name)

    def delete_cache(self, name: str) -> None:
        """Remove a cache definition, its state and its physical table."""

        cache = self.get_cache(name)
        self._metadata.delete_cache(cache.name)
        self._storage.drop(cache.name, cache.source_name)

    def physical_table(self, name: str) -> TableName:
        cache = self.get_cache(name)
        return self._storage.physical_table_name(cache.name, cache.source_name)

    def refresh(self, name: str, *, force: bool = False) -> RefreshStatus:
        self._require_initialized()
        return self._orchestrator.refresh(name, force=force)

    # === Queries ===

    def route(self, query: str, source_name: str) -> RoutedQuery:
        """Decide where ``query`` runs without running it."""

        self._require_initialized()
        return self._router.route(query, source_name)

    def query(self, query: str, source_name: str) -> RoutedResult:
        self._require_initialized()
        return self._router.execute(query, source_name)

    def replacement_scan(self, table_name: str) -> TableName | None:
        return self._replacement_scan(table_name)

    def sql(self, query: str) -> duckdb.DuckDBPyRelation | None:
        """Run host SQL, resolving unknown bare table names to caches."""

        substitutions: dict[str, TableName] = {}
        if self.initialized:
            tables = referenced_tables(query, dialect=self._settings.read_dialect)
            for table in sorted(tables):
                if "." in table or self._host_resolves(table):
                    continue
                target = self._replacement_scan(table)
                if target is not None:
                    substitutions[table] = target
        if substitutions:
            query = rewrite_tables(
                query,
                substitutions,
                read_dialect=self._settings.read_dialect,
                write_dialect=self._settings.write_dialect,
                everywhere=True,
            )
        return self._connection.sql(query)

    def _host_resolves(self, table_name: str) -> bool:
        # Temp objects are private to this connection, so no cursor here. The
        # result is drained so the next statement sees tables a refresh creates.
        rows = self._connection.execute(
            "SELECT count(*) FROM information_schema.tables "
            "WHERE lower(table_name) = lower(?) AND ("
            "(table_catalog = current_database() AND table_schema = current_schema()) "
            "OR table_catalog = 'temp')",
            [table_name],
        ).fetchall()
        return bool(rows and rows[0][0])

    def close(self) -> None:
        self._connection.close()

    def __enter__(self) -> "DuckSync":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["DuckSync", "EngineSettings", "EngineState"]
