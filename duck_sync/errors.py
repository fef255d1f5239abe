"""Error types raised by the cache engine."""


class DuckSyncError(RuntimeError):
    """Base class for cache engine failures."""

    __slots__ = ()


class NotFoundError(DuckSyncError, LookupError):
    """Raised when a source or cache name is unknown."""

    __slots__ = ()


class NotInitializedError(DuckSyncError):
    """Raised when the engine is used before storage has been set up."""

    __slots__ = ()


class RemoteQueryError(DuckSyncError):
    """Raised when the warehouse connector reports a failure."""

    __slots__ = ()


class QueryParseError(DuckSyncError):
    """Raised when a query cannot be parsed into a single statement."""

    __slots__ = ()


class StorageError(DuckSyncError):
    """Raised when materialised storage DDL or DML fails."""

    __slots__ = ()


class PassthroughDisabledError(DuckSyncError):
    """Raised when a query must go to a source that forbids passthrough."""

    __slots__ = ()


class SourceInUseError(DuckSyncError, ValueError):
    """Raised when deleting a source that caches still reference."""

    __slots__ = ()


class RefreshFailedError(DuckSyncError):
    """Raised when an implicit table resolution cannot refresh its cache."""

    __slots__ = ()


__all__ = [
    "DuckSyncError",
    "NotFoundError",
    "NotInitializedError",
    "PassthroughDisabledError",
    "QueryParseError",
    "RefreshFailedError",
    "RemoteQueryError",
    "SourceInUseError",
    "StorageError",
]
