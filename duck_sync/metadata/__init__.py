"""Metadata records and their DuckDB-backed store."""

from .records import CacheDefinition, CacheState, DriverKind, Source
from .store import MetadataStore

__all__ = [
    "CacheDefinition",
    "CacheState",
    "DriverKind",
    "MetadataStore",
    "Source",
]
