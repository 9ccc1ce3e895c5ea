"""Typed SQL statement IR.

``SqlStatement`` is what the builder produces and what the validator, the
estimator, and the renderer consume.  It is a tree of frozen dataclasses, not
SQL text: the security validator inspects the statement's ``kind`` tag and
its referenced tables and columns directly, so comment or whitespace tricks
have nothing to hide behind.

Hierarchy
---------
SqlStatement
  ├── Projection      (Column | Aggregate, alias)
  ├── Source          (FROM table AS alias)
  ├── JoinClause      (Source + key-pair conditions)
  ├── Predicate       (Comparison | BooleanPredicate)  for WHERE / HAVING
  ├── OrderTerm
  └── CommonTableExpression (WITH name AS (SqlStatement))
"""
from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Literal, Union

from semql.catalog.model import AggregationKind
from semql.schema.query_plan import FilterOp, SortDirection


class StatementKind(str, Enum):
    """Statement kind tag carried by every :class:`SqlStatement`."""

    SELECT = "select"
    WITH = "with"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    MERGE = "merge"
    CREATE = "create"
    ALTER = "alter"
    DROP = "drop"
    TRUNCATE = "truncate"
    GRANT = "grant"
    REVOKE = "revoke"

    @property
    def is_read_only(self) -> bool:
        return self in READ_ONLY_KINDS


#: The only kinds that may ever be executed.
READ_ONLY_KINDS: frozenset[StatementKind] = frozenset({StatementKind.SELECT, StatementKind.WITH})


# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Column:
    """A physical column reached through a FROM / JOIN qualifier.

    Attributes:
        qualifier: The alias the column is addressed through.
        table: The physical (or CTE) table that owns the column.
        name: Column name.
    """

    qualifier: str
    table: str
    name: str


@dataclass(frozen=True)
class Aggregate:
    """An aggregate function applied to a column."""

    kind: AggregationKind
    column: Column


Expression = Union[Column, Aggregate]


def expression_column(expr: Expression) -> Column:
    """Return the column an expression reads."""
    return expr.column if isinstance(expr, Aggregate) else expr


def _map_expression(expr: Expression, fn: Callable[[Column], Column]) -> Expression:
    if isinstance(expr, Aggregate):
        return replace(expr, column=fn(expr.column))
    return fn(expr)


@dataclass(frozen=True)
class Projection:
    """A SELECT item.

    Attributes:
        expr: Column or aggregate.
        alias: Output column name.
        field: Originating ``Entity.field`` reference, when built from a plan.
    """

    expr: Expression
    alias: str
    field: str | None = None

    @property
    def is_aggregate(self) -> bool:
        return isinstance(self.expr, Aggregate)


@dataclass(frozen=True)
class Source:
    """A FROM / JOIN target."""

    table: str
    alias: str | None = None

    @property
    def qualifier(self) -> str:
        return self.alias or self.table


@dataclass(frozen=True)
class JoinClause:
    """``{kind} JOIN source ON left = right [AND ...]``."""

    source: Source
    conditions: tuple[tuple[Column, Column], ...]
    kind: Literal["INNER", "LEFT"] = "INNER"


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Comparison:
    """``expr <op> value``.  ``value`` is a scalar, a tuple, or ``None``."""

    expr: Expression
    op: FilterOp
    value: Any = None


@dataclass(frozen=True)
class BooleanPredicate:
    """``AND`` / ``OR`` over sub-predicates."""

    op: Literal["AND", "OR"]
    operands: tuple[Predicate, ...]


Predicate = Union[Comparison, BooleanPredicate]


def iter_comparisons(pred: Predicate | None) -> Iterator[Comparison]:
    """Yield every leaf comparison in a predicate tree."""
    if pred is None:
        return
    if isinstance(pred, Comparison):
        yield pred
        return
    for operand in pred.operands:
        yield from iter_comparisons(operand)


def _map_predicate(pred: Predicate | None, fn: Callable[[Column], Column]) -> Predicate | None:
    if pred is None:
        return None
    if isinstance(pred, Comparison):
        return replace(pred, expr=_map_expression(pred.expr, fn))
    return replace(pred, operands=tuple(_map_predicate(p, fn) for p in pred.operands))


@dataclass(frozen=True)
class OrderTerm:
    expr: Expression
    direction: SortDirection = SortDirection.ASC


@dataclass(frozen=True)
class CommonTableExpression:
    """``name AS (statement)``.  ``name`` acts as a virtual table."""

    name: str
    statement: SqlStatement


# ---------------------------------------------------------------------------
# Statement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SqlStatement:
    """Typed statement IR.

    Attributes:
        kind: Statement kind tag.  Only read-only kinds are ever rendered.
        projections: SELECT items.
        source: FROM target.
        joins: JOIN clauses in application order.
        where: Row predicate.
        group_by: Grouping columns.
        having: Group predicate.
        order_by: Ordering terms.
        limit: Row limit.
        ctes: Common table expressions (``kind`` is ``WITH`` when present).
        target: Target table of a write kind; always ``None`` for reads.
    """

    kind: StatementKind = StatementKind.SELECT
    projections: tuple[Projection, ...] = ()
    source: Source | None = None
    joins: tuple[JoinClause, ...] = ()
    where: Predicate | None = None
    group_by: tuple[Column, ...] = ()
    having: Predicate | None = None
    order_by: tuple[OrderTerm, ...] = ()
    limit: int | None = None
    ctes: tuple[CommonTableExpression, ...] = ()
    target: str | None = None

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def cte_names(self) -> frozenset[str]:
        return frozenset(cte.name for cte in self.ctes)

    def iter_columns(self) -> Iterator[Column]:
        """Yield every column reference in this statement (not CTE bodies)."""
        for projection in self.projections:
            yield expression_column(projection.expr)
        for join in self.joins:
            for left, right in join.conditions:
                yield left
                yield right
        for comparison in iter_comparisons(self.where):
            yield expression_column(comparison.expr)
        yield from self.group_by
        for comparison in iter_comparisons(self.having):
            yield expression_column(comparison.expr)
        for term in self.order_by:
            yield expression_column(term.expr)

    def scope(self) -> dict[str, str | None]:
        """Map each FROM / JOIN qualifier to the table it names.

        A qualifier bound to two different tables maps to ``None``.
        """
        bound: dict[str, str | None] = {}
        sources = ([self.source] if self.source is not None else []) + [j.source for j in self.joins]
        for source in sources:
            qualifier = source.qualifier
            if qualifier in bound and bound[qualifier] != source.table:
                bound[qualifier] = None
            else:
                bound[qualifier] = source.table
        return bound

    def misbound_columns(self) -> list[Column]:
        """Columns whose qualifier does not name a source of ``table``.

        The renderer reads a column through its qualifier, so these are the
        columns that would be checked against one table and read from
        another.  CTE bodies are included.
        """
        scope = self.scope()
        misbound = [c for c in self.iter_columns() if scope.get(c.qualifier) != c.table]
        for cte in self.ctes:
            misbound.extend(cte.statement.misbound_columns())
        return misbound

    def referenced_tables(self) -> set[str]:
        """Physical tables this statement touches, CTE bodies included.

        CTE names are virtual and are not reported.
        """
        virtual = self.cte_names
        tables: set[str] = set()
        if self.target is not None:
            tables.add(self.target)
        if self.source is not None:
            tables.add(self.source.table)
        tables.update(join.source.table for join in self.joins)
        tables.update(col.table for col in self.iter_columns())
        tables -= virtual
        for cte in self.ctes:
            tables |= cte.statement.referenced_tables()
        return tables

    def referenced_columns(self) -> set[tuple[str, str]]:
        """``(table, column)`` pairs this statement reads, CTE bodies included.

        Each column is reported under its declared table and under the table
        its qualifier resolves to.
        """
        virtual = self.cte_names
        scope = self.scope()
        columns: set[tuple[str, str]] = set()
        for column in self.iter_columns():
            for table in (column.table, scope.get(column.qualifier)):
                if table is not None and table not in virtual:
                    columns.add((table, column.name))
        for cte in self.ctes:
            columns |= cte.statement.referenced_columns()
        return columns

    @property
    def is_aggregate(self) -> bool:
        return any(p.is_aggregate for p in self.projections)

    # ------------------------------------------------------------------
    # Derivation (statements are never mutated in place)
    # ------------------------------------------------------------------

    def with_limit(self, limit: int | None) -> SqlStatement:
        return replace(self, limit=limit)

    def map_columns(self, fn: Callable[[Column], Column]) -> SqlStatement:
        """Return a copy with ``fn`` applied to every column reference."""
        return replace(
            self,
            projections=tuple(replace(p, expr=_map_expression(p.expr, fn)) for p in self.projections),
            joins=tuple(
                replace(j, conditions=tuple((fn(a), fn(b)) for a, b in j.conditions))
                for j in self.joins
            ),
            where=_map_predicate(self.where, fn),
            group_by=tuple(fn(c) for c in self.group_by),
            having=_map_predicate(self.having, fn),
            order_by=tuple(replace(o, expr=_map_expression(o.expr, fn)) for o in self.order_by),
            ctes=tuple(replace(c, statement=c.statement.map_columns(fn)) for c in self.ctes),
        )
