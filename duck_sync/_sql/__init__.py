"""Internal query-tree helpers used by the routing layer."""

from .references import (
    NodeKind,
    TableName,
    TableScan,
    classify,
    extract_tables,
    parse_query,
    quote_identifier,
    referenced_tables,
    rewrite_tables,
    scan_tables,
)

__all__ = [
    "NodeKind",
    "TableName",
    "TableScan",
    "classify",
    "extract_tables",
    "parse_query",
    "quote_identifier",
    "referenced_tables",
    "rewrite_tables",
    "scan_tables",
]
