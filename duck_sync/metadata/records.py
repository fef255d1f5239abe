"""Typed records persisted by the metadata store."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Sequence


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_storage_timestamp(value: datetime | None) -> datetime | None:
    """Convert an aware timestamp to the naive UTC form stored in DuckDB."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_storage_timestamp(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _require_name(value: str, label: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValueError(f"{label} must be a non-empty string")
    return text


def _ordered_unique(names: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, str] = {}
    for raw in names:
        name = str(raw).strip()
        if name and name.upper() not in seen:
            seen[name.upper()] = name
    return tuple(seen.values())


class DriverKind(str, enum.Enum):
    """Warehouse drivers a source may use."""

    SNOWFLAKE = "snowflake"

    @classmethod
    def parse(cls, value: "DriverKind | str") -> "DriverKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            supported = ", ".join(kind.value for kind in cls)
            raise ValueError(
                f"driver_type must be one of: {supported} (got '{value}')"
            ) from None


@dataclass(frozen=True)
class Source:
    """A named warehouse connection and the credential handle it uses."""

    name: str
    driver: DriverKind
    credential: str
    passthrough_enabled: bool = False
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _require_name(self.name, "source name"))
        object.__setattr__(self, "driver", DriverKind.parse(self.driver))
        object.__setattr__(
            self, "credential", _require_name(self.credential, "credential")
        )
        object.__setattr__(self, "passthrough_enabled", bool(self.passthrough_enabled))

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> "Source":
        name, driver, credential, passthrough, created_at = row
        return cls(
            name=name,
            driver=driver,
            credential=credential,
            passthrough_enabled=bool(passthrough),
            created_at=from_storage_timestamp(created_at),
        )


@dataclass(frozen=True)
class CacheDefinition:
    """A cached query owned by one source.

    ``monitor_tables`` is an ordered, case-insensitively unique set of
    source-side table names whose modification invalidates the cache.
    """

    name: str
    source_name: str
    query: str
    monitor_tables: tuple[str, ...]
    ttl_seconds: int | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _require_name(self.name, "cache name"))
        object.__setattr__(
            self, "source_name", _require_name(self.source_name, "source name")
        )
        object.__setattr__(self, "query", _require_name(self.query, "source query"))
        if isinstance(self.monitor_tables, str):
            raise ValueError("monitor_tables must be a sequence of table names")
        tables = _ordered_unique(self.monitor_tables or ())
        if not tables:
            raise ValueError("monitor_tables must name at least one table")
        object.__setattr__(self, "monitor_tables", tables)
        if self.ttl_seconds is not None:
            ttl = int(self.ttl_seconds)
            if ttl <= 0:
                raise ValueError("ttl_seconds must be positive")
            object.__setattr__(self, "ttl_seconds", ttl)

    @property
    def ttl(self) -> timedelta | None:
        if self.ttl_seconds is None:
            return None
        return timedelta(seconds=self.ttl_seconds)

    def monitors(self, table_name: str) -> bool:
        target = table_name.strip().upper()
        return any(name.upper() == target for name in self.monitor_tables)

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> "CacheDefinition":
        name, source_name, query, monitor_tables, ttl_seconds, created_at = row
        return cls(
            name=name,
            source_name=source_name,
            query=query,
            monitor_tables=tuple(monitor_tables or ()),
            ttl_seconds=ttl_seconds,
            created_at=from_storage_timestamp(created_at),
        )


@dataclass(frozen=True)
class CacheState:
    """Freshness bookkeeping for one cache."""

    cache_name: str
    last_refresh: datetime | None = None
    fingerprint: str | None = None
    expires_at: datetime | None = None
    refresh_count: int = 0
    last_row_count: int | None = None
    last_duration_ms: float | None = None

    @property
    def has_refreshed(self) -> bool:
        return self.last_refresh is not None

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> "CacheState":
        (
            cache_name,
            last_refresh,
            fingerprint,
            expires_at,
            refresh_count,
            last_row_count,
            last_duration_ms,
        ) = row
        return cls(
            cache_name=cache_name,
            last_refresh=from_storage_timestamp(last_refresh),
            fingerprint=fingerprint or None,
            expires_at=from_storage_timestamp(expires_at),
            refresh_count=int(refresh_count or 0),
            last_row_count=last_row_count,
            last_duration_ms=last_duration_ms,
        )


__all__ = [
    "CacheDefinition",
    "CacheState",
    "DriverKind",
    "Source",
    "from_storage_timestamp",
    "to_storage_timestamp",
    "utc_now",
]
