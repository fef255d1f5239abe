"""Serialised cache refreshes with state bookkeeping."""

from __future__ import annotations

import enum
import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping

from ..metadata.records import CacheDefinition, CacheState, DriverKind, Source, utc_now
from ..metadata.store import MetadataStore
from .freshness import StalenessOracle
from .storage import StorageManager
from .warehouse import WarehouseConnector, ensure_arrow_table, resolve_connector

logger = logging.getLogger(__name__)


class RefreshOutcome(str, enum.Enum):
    SKIPPED = "SKIPPED"
    REFRESHED = "REFRESHED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class RefreshStatus:
    """Result of one refresh call. Failures are values, never raised."""

    outcome: RefreshOutcome
    message: str
    rows_refreshed: int | None = None
    duration_ms: float | None = None

    @property
    def failed(self) -> bool:
        return self.outcome is RefreshOutcome.ERROR


class RefreshOrchestrator:
    """Refresh caches from their sources, one refresh per cache at a time.

    The staleness check is repeated under the per-cache lock, so callers
    racing on the same stale cache trigger a single materialisation.
    """

    def __init__(
        self,
        metadata: MetadataStore,
        storage: StorageManager,
        oracle: StalenessOracle,
        connectors: Mapping[DriverKind, WarehouseConnector],
        *,
        clock: Callable[[], datetime] | None = None,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._metadata = metadata
        self._storage = storage
        self._oracle = oracle
        self._connectors = connectors
        self._clock = clock or utc_now
        self._timer = timer
        self._locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def refresh(self, cache_name: str, *, force: bool = False) -> RefreshStatus:
        started = self._timer()
        try:
            cache = self._metadata.get_cache(cache_name)
            if cache is None:
                return RefreshStatus(RefreshOutcome.ERROR, f"Cache '{cache_name}' not found")
            source = self._metadata.get_source(cache.source_name)
            if source is None:
                return RefreshStatus(
                    RefreshOutcome.ERROR, f"Source '{cache.source_name}' not found"
                )
            with self._lock_for(cache.name):
                state = self._metadata.get_state(cache.name)
                verdict = self._oracle.assess(cache, source, state, force=force)
                if not verdict.needs_refresh:
                    return RefreshStatus(
                        RefreshOutcome.SKIPPED, "Cache is fresh, no refresh needed"
                    )
                rows = self._materialize(cache, source)
                marker = self._oracle.current_fingerprint(cache, source)
                duration_ms = (self._timer() - started) * 1000.0
                self._record(cache, marker, rows, duration_ms)
        except Exception as exc:
            logger.warning("Refresh of cache %s failed: %s", cache_name, exc)
            return RefreshStatus(RefreshOutcome.ERROR, f"Refresh failed: {exc}")
        logger.info(
            "Refreshed cache %s (%s, %d rows, %.1f ms)",
            cache.name,
            verdict.reason,
            rows,
            duration_ms,
        )
        return RefreshStatus(
            RefreshOutcome.REFRESHED,
            "Cache refreshed successfully",
            rows_refreshed=rows,
            duration_ms=duration_ms,
        )

    def _materialize(self, cache: CacheDefinition, source: Source) -> int:
        connector = resolve_connector(self._connectors, source)
        data = ensure_arrow_table(connector.run_query(source.credential, cache.query))
        self._storage.materialize(cache.name, source.name, data)
        return data.num_rows

    def _record(
        self, cache: CacheDefinition, marker: str, rows: int, duration_ms: float
    ) -> CacheState:
        now = self._clock()
        expires_at = now + cache.ttl if cache.ttl is not None else None
        return self._metadata.update_state(
            CacheState(
                cache_name=cache.name,
                last_refresh=now,
                fingerprint=marker,
                expires_at=expires_at,
                last_row_count=rows,
                last_duration_ms=duration_ms,
            )
        )

    def _lock_for(self, cache_name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[cache_name.upper()]


__all__ = ["RefreshOrchestrator", "RefreshOutcome", "RefreshStatus"]
