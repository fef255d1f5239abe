"""Decide whether a cache has to be refreshed."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping

from ..metadata.records import CacheDefinition, CacheState, DriverKind, Source, utc_now
from .warehouse import WarehouseConnector, resolve_connector

logger = logging.getLogger(__name__)


def fingerprint(markers: Mapping[str, object]) -> str:
    """Digest of a ``{table: marker}`` map that ignores insertion order."""

    canonical = json.dumps(
        {str(name): str(marker) for name, marker in markers.items()},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def is_ttl_expired(cache: CacheDefinition, state: CacheState, now: datetime) -> bool:
    if cache.ttl_seconds is None:
        return False
    return state.expires_at is None or state.expires_at <= now


def is_valid(cache: CacheDefinition, state: CacheState | None, now: datetime) -> bool:
    """Local validity check: refreshed at least once and not past its TTL."""

    if state is None or not state.has_refreshed:
        return False
    return not is_ttl_expired(cache, state, now)


@dataclass(frozen=True)
class StalenessVerdict:
    needs_refresh: bool
    reason: str


class StalenessOracle:
    """Answer "does this cache need a refresh?".

    Checks run cheapest first: the force flag, missing state, TTL expiry and
    a missing fingerprint. Only then are the monitored tables probed on the
    source and the resulting fingerprint compared with the stored one.
    """

    def __init__(
        self,
        connectors: Mapping[DriverKind, WarehouseConnector],
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._connectors = connectors
        self._clock = clock or utc_now

    def current_fingerprint(self, cache: CacheDefinition, source: Source) -> str:
        connector = resolve_connector(self._connectors, source)
        markers = connector.probe_last_modified(source.credential, cache.monitor_tables)
        return fingerprint(markers)

    def assess(
        self,
        cache: CacheDefinition,
        source: Source,
        state: CacheState | None,
        *,
        force: bool = False,
    ) -> StalenessVerdict:
        if force:
            verdict = StalenessVerdict(True, "refresh forced")
        elif state is None or not state.has_refreshed:
            verdict = StalenessVerdict(True, "never refreshed")
        elif is_ttl_expired(cache, state, self._clock()):
            verdict = StalenessVerdict(True, "TTL expired")
        elif state.fingerprint is None:
            verdict = StalenessVerdict(True, "no stored fingerprint")
        elif self.current_fingerprint(cache, source) != state.fingerprint:
            verdict = StalenessVerdict(True, "source tables changed")
        else:
            verdict = StalenessVerdict(False, "source tables unchanged")
        logger.debug("Cache %s: %s", cache.name, verdict.reason)
        return verdict

    def needs_refresh(
        self,
        cache: CacheDefinition,
        source: Source,
        state: CacheState | None,
        *,
        force: bool = False,
    ) -> bool:
        return self.assess(cache, source, state, force=force).needs_refresh


__all__ = [
    "StalenessOracle",
    "StalenessVerdict",
    "fingerprint",
    "is_ttl_expired",
    "is_valid",
]
