"""Table reference extraction and rewriting over SQLGlot query trees."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterator, Mapping

import sqlglot
import sqlglot.expressions as exp
from sqlglot.errors import SqlglotError

from ..errors import QueryParseError

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


class NodeKind(enum.Enum):
    """Closed set of node shapes the reference walk understands."""

    QUERY = "query"
    BASE_TABLE = "base_table"
    JOIN = "join"
    SUBQUERY = "subquery"
    SET_OPERATION = "set_operation"
    OTHER = "other"


@dataclass(frozen=True)
class TableName:
    """Up to three-part table identifier (catalog.schema.name)."""

    name: str
    schema: str | None = None
    catalog: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Table name must be non-empty")
        if self.catalog and not self.schema:
            raise ValueError("A catalog requires a schema")

    @classmethod
    def from_expression(cls, table: exp.Table) -> "TableName":
        return cls(
            name=table.name,
            schema=table.db or None,
            catalog=table.catalog or None,
        )

    @property
    def parts(self) -> tuple[str, ...]:
        return tuple(part for part in (self.catalog, self.schema, self.name) if part)

    @property
    def qualified(self) -> str:
        return ".".join(self.parts)

    @property
    def key(self) -> str:
        """Case-folded form used for substitution lookups."""
        return self.qualified.upper()

    def to_expression(self) -> exp.Table:
        return exp.Table(
            this=exp.to_identifier(self.name, quoted=True),
            db=exp.to_identifier(self.schema, quoted=True) if self.schema else None,
            catalog=exp.to_identifier(self.catalog, quoted=True) if self.catalog else None,
        )

    def sql(self, dialect: str = "duckdb") -> str:
        return self.to_expression().sql(dialect=dialect)

    def __str__(self) -> str:
        return self.qualified


@dataclass(frozen=True)
class TableScan:
    """Base tables found by the structured walk.

    ``complete`` is false when the tree names tables the walk never reached
    (CTE bodies, predicate subqueries, lateral constructs) or when the query
    could not be parsed at all.
    """

    tables: frozenset[str]
    complete: bool
    parsed: bool = True


def quote_identifier(name: str, dialect: str = "duckdb") -> str:
    return exp.to_identifier(name, quoted=True).sql(dialect=dialect)


def parse_query(sql: str, *, dialect: str | None = None) -> exp.Expression:
    """Parse ``sql`` into exactly one statement tree."""

    try:
        statements = [
            statement
            for statement in sqlglot.parse(sql, read=dialect)
            if statement is not None
        ]
    except SqlglotError as exc:
        raise QueryParseError(str(exc)) from exc
    if len(statements) != 1:
        raise QueryParseError(
            f"Expected exactly one statement, found {len(statements)}"
        )
    return statements[0]


def classify(node: exp.Expression) -> NodeKind:
    match node:
        case exp.Table() if isinstance(node.this, exp.Identifier):
            return NodeKind.BASE_TABLE
        case exp.Join():
            return NodeKind.JOIN
        case exp.Subquery():
            return NodeKind.SUBQUERY
        case exp.Union() | exp.Intersect() | exp.Except():
            return NodeKind.SET_OPERATION
        case exp.Select():
            return NodeKind.QUERY
        case _:
            return NodeKind.OTHER


def _iter_base_tables(node: exp.Expression | None) -> Iterator[exp.Table]:
    if node is None:
        return
    match classify(node):
        case NodeKind.BASE_TABLE:
            yield node
        case NodeKind.QUERY:
            for child in node.iter_expressions():
                if isinstance(child, exp.From):
                    yield from _iter_base_tables(child.this)
                elif classify(child) is NodeKind.JOIN:
                    yield from _iter_base_tables(child)
        case NodeKind.JOIN | NodeKind.SUBQUERY:
            yield from _iter_base_tables(node.this)
        case NodeKind.SET_OPERATION:
            yield from _iter_base_tables(node.this)
            yield from _iter_base_tables(node.expression)
        case NodeKind.OTHER:
            return


def _is_named_table(node: exp.Expression) -> bool:
    return isinstance(node, exp.Table) and isinstance(node.this, exp.Identifier)


def _cte_names(tree: exp.Expression) -> frozenset[str]:
    return frozenset(cte.alias_or_name.upper() for cte in tree.find_all(exp.CTE))


def _base_tables(tree: exp.Expression) -> list[exp.Table]:
    """Tables reached by the walk, minus references to CTEs."""

    ctes = _cte_names(tree)
    return [
        table
        for table in _iter_base_tables(tree)
        if table.db or table.name.upper() not in ctes
    ]


def _named_tables(tree: exp.Expression) -> list[exp.Table]:
    """Every named table anywhere in the tree, minus references to CTEs."""

    ctes = _cte_names(tree)
    return [
        table
        for table in tree.find_all(exp.Table)
        if _is_named_table(table) and (table.db or table.name.upper() not in ctes)
    ]


def scan_tables(sql: str, *, dialect: str | None = None) -> TableScan:
    try:
        tree = parse_query(sql, dialect=dialect)
    except QueryParseError:
        return TableScan(tables=frozenset(), complete=False, parsed=False)
    reached = _base_tables(tree)
    reached_ids = {id(table) for table in reached}
    complete = all(id(table) in reached_ids for table in _named_tables(tree))
    return TableScan(
        tables=frozenset(TableName.from_expression(table).qualified for table in reached),
        complete=complete,
    )


def extract_tables(sql: str, *, dialect: str | None = None) -> frozenset[str]:
    """Return qualified names of every base table the walk reaches.

    Unparseable input yields an empty set.
    """

    return scan_tables(sql, dialect=dialect).tables


def referenced_tables(sql: str, *, dialect: str | None = None) -> frozenset[str]:
    """Qualified names of every table the query names, at any depth.

    Unlike :func:`extract_tables` this includes CTE bodies and predicate
    subqueries. CTE references are excluded and unparseable input yields an
    empty set.
    """

    try:
        tree = parse_query(sql, dialect=dialect)
    except QueryParseError:
        return frozenset()
    return frozenset(
        TableName.from_expression(table).qualified for table in _named_tables(tree)
    )


def _retarget(table: exp.Table, target: TableName) -> None:
    original = table.this
    table.set("this", exp.to_identifier(target.name, quoted=True))
    table.set(
        "db", exp.to_identifier(target.schema, quoted=True) if target.schema else None
    )
    table.set(
        "catalog",
        exp.to_identifier(target.catalog, quoted=True) if target.catalog else None,
    )
    # Keep column references such as ``orders.total`` bound after a rename.
    if not table.alias and original.name.upper() != target.name.upper():
        table.set("alias", exp.TableAlias(this=original.copy()))


def rewrite_tables(
    sql: str,
    substitutions: Mapping[str, TableName],
    *,
    read_dialect: str | None = None,
    write_dialect: str | None = None,
    everywhere: bool = False,
) -> str:
    """Redirect base table references named in ``substitutions``.

    Keys are matched case-insensitively against each reference's qualified
    name. Only tables reached through FROM, JOIN and set operations are
    retargeted unless ``everywhere`` is set, which also covers CTE bodies
    and predicate subqueries. Projections, predicates and literals are left
    as parsed. The original text is returned unchanged when it cannot be
    parsed.
    """

    try:
        tree = parse_query(sql, dialect=read_dialect)
    except QueryParseError:
        return sql
    targets = {key.upper(): target for key, target in substitutions.items()}
    tables = _named_tables(tree) if everywhere else _base_tables(tree)
    for table in tables:
        target = targets.get(TableName.from_expression(table).key)
        if target is not None:
            _retarget(table, target)
    return tree.sql(dialect=write_dialect)
