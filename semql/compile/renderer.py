"""ValidatedStatement → parameterized SQL.

``StatementRenderer`` is the top-level orchestrator.  All dialect-specific
behaviour is delegated to the injected ``SQLCompiler``; expression and
predicate rendering is delegated to :class:`ExpressionRenderer`.

Runtime context sharing
-----------------------
A single :class:`RuntimeContext` is created per ``render()`` call and
threaded through the main statement and every CTE body, so literal parameter
names are globally unique across the whole statement.  Literal values are
never inlined into the SQL text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from semql.catalog.model import AggregationKind
from semql.compile.base import CompiledSQL, SQLCompiler
from semql.errors import CompilationError
from semql.policy.engine import ValidatedStatement
from semql.schema.query_plan import PATTERN_OPS, FilterOp
from semql.schema.statement import (
    Aggregate,
    BooleanPredicate,
    Column,
    Comparison,
    Expression,
    JoinClause,
    Predicate,
    Projection,
    SqlStatement,
)

_COMPARISON_SQL: dict[FilterOp, str] = {
    FilterOp.EQ: "=",
    FilterOp.NE: "<>",
    FilterOp.GT: ">",
    FilterOp.GTE: ">=",
    FilterOp.LT: "<",
    FilterOp.LTE: "<=",
}


# ---------------------------------------------------------------------------
# Runtime parameter accumulator (shared across one render run)
# ---------------------------------------------------------------------------


@dataclass
class RuntimeContext:
    """Accumulates named parameters during a single render run."""

    params: dict[str, Any] = field(default_factory=dict)
    _counter: int = 0

    def add_value(self, value: Any) -> str:
        """Store a literal value and return its placeholder name."""
        name = f"param_{self._counter}"
        self._counter += 1
        self.params[name] = value
        return name


# ---------------------------------------------------------------------------
# Expression / predicate renderer
# ---------------------------------------------------------------------------


class ExpressionRenderer:
    """Renders columns, aggregates, and predicates to SQL fragments.

    Args:
        compiler: Dialect-specific compiler.
        runtime: Shared parameter accumulator for this statement.
    """

    def __init__(self, compiler: SQLCompiler, runtime: RuntimeContext) -> None:
        self._compiler = compiler
        self._runtime = runtime

    def column(self, col: Column) -> str:
        quote = self._compiler.quote_identifier
        return f"{quote(col.qualifier)}.{quote(col.name)}"

    def expression(self, expr: Expression) -> str:
        if isinstance(expr, Aggregate):
            inner = self.column(expr.column)
            if expr.kind is AggregationKind.COUNT_DISTINCT:
                return f"COUNT(DISTINCT {inner})"
            return f"{expr.kind.value.upper()}({inner})"
        if isinstance(expr, Column):
            return self.column(expr)
        raise CompilationError(
            f"Unknown expression type: {type(expr).__name__}", clause="expression"
        )

    def predicate(self, pred: Predicate, nested: bool = False) -> str:
        if isinstance(pred, Comparison):
            return self._comparison(pred)
        if isinstance(pred, BooleanPredicate):
            if not pred.operands:
                raise CompilationError(f"Empty {pred.op} predicate.", clause="predicate")
            sql = f" {pred.op} ".join(self.predicate(p, nested=True) for p in pred.operands)
            return f"({sql})" if nested and len(pred.operands) > 1 else sql
        raise CompilationError(
            f"Unknown predicate type: {type(pred).__name__}", clause="predicate"
        )

    def _param(self, value: Any) -> str:
        return self._compiler.param_placeholder(self._runtime.add_value(value))

    def _comparison(self, cmp: Comparison) -> str:
        lhs = self.expression(cmp.expr)
        op = cmp.op
        if op in _COMPARISON_SQL:
            return f"{lhs} {_COMPARISON_SQL[op]} {self._param(cmp.value)}"
        if op in (FilterOp.IN, FilterOp.NOT_IN):
            values = ", ".join(self._param(v) for v in cmp.value)
            keyword = "IN" if op is FilterOp.IN else "NOT IN"
            return f"{lhs} {keyword} ({values})"
        if op is FilterOp.BETWEEN:
            low, high = cmp.value
            return f"{lhs} BETWEEN {self._param(low)} AND {self._param(high)}"
        if op in PATTERN_OPS:
            keyword = self._compiler.like_operator(op.value.upper())
            return f"{lhs} {keyword} {self._param(cmp.value)}"
        if op is FilterOp.IS_NULL:
            return f"{lhs} IS NULL"
        if op is FilterOp.IS_NOT_NULL:
            return f"{lhs} IS NOT NULL"
        raise CompilationError(f"Unsupported operator: '{op}'", clause="predicate")


# ---------------------------------------------------------------------------
# Statement renderer
# ---------------------------------------------------------------------------


class StatementRenderer:
    """Renders a :class:`ValidatedStatement` to parameterized SQL.

    Only statements that passed the security validator are accepted, and
    only read-only kinds are ever rendered.

    Args:
        compiler: Dialect-specific compiler instance.
    """

    def __init__(self, compiler: SQLCompiler) -> None:
        self._compiler = compiler

    @property
    def dialect(self) -> str:
        return self._compiler.dialect_name

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def render(self, validated: ValidatedStatement) -> CompiledSQL:
        """Render ``validated`` to SQL.

        Args:
            validated: Output of :meth:`SecurityValidator.validate`.

        Returns:
            :class:`~semql.compile.base.CompiledSQL` with ``sql`` and
            literal ``params``.

        Raises:
            CompilationError: If the statement is not a read-only kind, was
                not approved by the security validator, or has an unexpected
                shape.
        """
        if not isinstance(validated, ValidatedStatement):
            raise CompilationError(
                f"Only validated statements can be rendered, got {type(validated).__name__}."
            )
        self._check_read_only(validated.statement)
        if not validated.approved:
            raise CompilationError(
                "Statement was not approved by SecurityValidator and cannot be rendered.",
                clause="validation",
            )
        runtime = RuntimeContext()
        exprs = ExpressionRenderer(self._compiler, runtime)
        sql = self._render_full(validated.statement, exprs)
        return CompiledSQL(sql=sql, params=runtime.params, dialect=self._compiler.dialect_name)

    # ------------------------------------------------------------------
    # Full statement (CTE prepend)
    # ------------------------------------------------------------------

    @classmethod
    def _check_read_only(cls, statement: SqlStatement) -> None:
        if not statement.kind.is_read_only:
            raise CompilationError(
                f"Statement kind '{statement.kind.value}' cannot be rendered.", clause="kind"
            )
        for cte in statement.ctes:
            cls._check_read_only(cte.statement)

    def _render_full(self, statement: SqlStatement, exprs: ExpressionRenderer) -> str:
        query_sql = self._render_core(statement, exprs)
        if not statement.ctes:
            return query_sql
        quote = self._compiler.quote_identifier
        cte_parts = [
            f"{quote(cte.name)} AS (\n{self._render_full(cte.statement, exprs)}\n)"
            for cte in statement.ctes
        ]
        return f"WITH {', '.join(cte_parts)}\n{query_sql}"

    # ------------------------------------------------------------------
    # Core query (SELECT … LIMIT)
    # ------------------------------------------------------------------

    def _render_core(self, statement: SqlStatement, exprs: ExpressionRenderer) -> str:
        if not statement.projections:
            raise CompilationError("Statement selects nothing.", clause="SELECT")
        if statement.source is None:
            raise CompilationError("Statement has no FROM source.", clause="FROM")

        quote = self._compiler.quote_identifier
        parts: list[str] = [
            "SELECT " + ", ".join(self._projection(p, exprs) for p in statement.projections)
        ]

        source = statement.source
        from_sql = quote(source.table)
        if source.alias:
            from_sql = f"{from_sql} AS {quote(source.alias)}"
        parts.append(f"FROM {from_sql}")

        for join in statement.joins:
            parts.append(self._join(join, exprs))

        if statement.where is not None:
            parts.append(f"WHERE {exprs.predicate(statement.where)}")

        if statement.group_by:
            parts.append("GROUP BY " + ", ".join(exprs.column(c) for c in statement.group_by))

        if statement.having is not None:
            parts.append(f"HAVING {exprs.predicate(statement.having)}")

        if statement.order_by:
            order_parts = [
                f"{exprs.expression(o.expr)} {o.direction.value.upper()}"
                for o in statement.order_by
            ]
            parts.append(f"ORDER BY {', '.join(order_parts)}")

        if statement.limit is not None:
            parts.append(f"LIMIT {int(statement.limit)}")

        return "\n".join(parts)

    def _projection(self, projection: Projection, exprs: ExpressionRenderer) -> str:
        quote = self._compiler.quote_identifier
        return f"{exprs.expression(projection.expr)} AS {quote(projection.alias)}"

    def _join(self, join: JoinClause, exprs: ExpressionRenderer) -> str:
        if not join.conditions:
            raise CompilationError("JOIN has no ON condition.", clause="JOIN")
        quote = self._compiler.quote_identifier
        table_sql = quote(join.source.table)
        if join.source.alias:
            table_sql = f"{table_sql} AS {quote(join.source.alias)}"
        on_sql = " AND ".join(
            f"{exprs.column(left)} = {exprs.column(right)}" for left, right in join.conditions
        )
        return f"{join.kind} JOIN {table_sql} ON {on_sql}"
