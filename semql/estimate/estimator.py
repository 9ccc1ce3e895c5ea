"""Advisory cost estimation.

The estimate is produced from catalog statistics before execution and is
reported alongside the statement.  It never blocks execution; callers decide
what to do with :meth:`CostEstimate.exceeds`.

Heuristic
---------
* Scan rows are the sum of row counts of every referenced table.
* Output rows start at the root table's row count.  Every join traversed
  toward a "many" side multiplies by ``target_rows / from_rows`` (at least 1).
* Each WHERE conjunct applies a selectivity factor (see
  :meth:`CostEstimator._selectivity`).
* Grouping caps the result at the product of known distinct counts;
  aggregating without grouping yields one row.
* LIMIT caps the result.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum

from semql.catalog.catalog import SemanticCatalog
from semql.catalog.model import JoinKind, TableStatistics
from semql.schema.query_plan import PATTERN_OPS, FilterOp
from semql.schema.statement import (
    BooleanPredicate,
    Column,
    Comparison,
    Predicate,
    SqlStatement,
    expression_column,
)

logger = logging.getLogger(__name__)

_DEFAULT_EQ_SELECTIVITY = 0.1
_RANGE_SELECTIVITY = 0.3
_LIKE_SELECTIVITY = 0.25
_NULL_SELECTIVITY = 0.1


class Confidence(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"


@dataclass(frozen=True)
class CostEstimate:
    """Advisory estimate for one statement.

    Attributes:
        estimated_rows: Expected output rows, or ``None`` without statistics.
        scan_rows: Rows read across referenced tables, or ``None``.
        scan_bytes: Approximate bytes read, or ``None``.
        confidence: ``none`` without statistics, ``low`` with partial
            statistics, ``medium`` when every table has statistics.
        notes: Assumptions made while estimating.
    """

    estimated_rows: int | None
    scan_rows: int | None
    scan_bytes: int | None
    confidence: Confidence
    notes: tuple[str, ...] = ()

    def exceeds(self, threshold: int) -> bool:
        """``True`` when the estimated output is known to exceed ``threshold``."""
        return self.estimated_rows is not None and self.estimated_rows > threshold


class CostEstimator:
    """Estimates output and scan size from table statistics.

    Args:
        catalog: Catalog holding optional :class:`TableStatistics`.
        default_row_bytes: Row width assumed when statistics omit it.
    """

    def __init__(self, catalog: SemanticCatalog, default_row_bytes: int = 256) -> None:
        self._catalog = catalog
        self._default_row_bytes = default_row_bytes

    def estimate(self, statement: SqlStatement) -> CostEstimate:
        tables = sorted(statement.referenced_tables())
        stats = {t: self._catalog.statistics_for(t) for t in tables}
        known = {t: s for t, s in stats.items() if s is not None}
        notes: list[str] = []

        if not known or statement.source is None or statement.source.table not in known:
            missing = [t for t, s in stats.items() if s is None]
            notes.append(f"No statistics for {missing or tables}.")
            return CostEstimate(None, None, None, Confidence.NONE, tuple(notes))

        confidence = Confidence.MEDIUM
        if len(known) < len(tables):
            confidence = Confidence.LOW
            notes.append(
                f"Statistics missing for {[t for t in tables if t not in known]}; "
                f"those tables are treated as empty scans."
            )

        scan_rows = sum(s.row_count for s in known.values())
        scan_bytes = sum(
            s.row_count * (s.avg_row_bytes or self._default_row_bytes) for s in known.values()
        )

        rows = float(known[statement.source.table].row_count)
        rows = self._apply_joins(statement, rows, known, notes)
        rows *= self._selectivity(statement.where, known)
        rows = self._apply_grouping(statement, rows, known, notes)
        if statement.limit is not None:
            rows = min(rows, float(statement.limit))

        estimate = CostEstimate(
            estimated_rows=max(0, math.ceil(rows)),
            scan_rows=scan_rows,
            scan_bytes=scan_bytes,
            confidence=confidence,
            notes=tuple(notes),
        )
        logger.debug("Cost estimate: %s", estimate)
        return estimate

    # ------------------------------------------------------------------
    # Joins
    # ------------------------------------------------------------------

    def _apply_joins(
        self,
        statement: SqlStatement,
        rows: float,
        known: dict[str, TableStatistics],
        notes: list[str],
    ) -> float:
        for join in statement.joins:
            if not join.conditions:
                continue
            from_table = join.conditions[0][0].table
            to_table = join.source.table
            if self._fans_out(from_table, to_table) is False:
                continue
            from_stats, to_stats = known.get(from_table), known.get(to_table)
            if from_stats is None or to_stats is None or from_stats.row_count == 0:
                notes.append(f"Join fan-out {from_table} -> {to_table} unknown; assumed 1.")
                continue
            rows *= max(1.0, to_stats.row_count / from_stats.row_count)
        return rows

    def _fans_out(self, from_table: str, to_table: str) -> bool | None:
        """Whether joining ``from_table`` to ``to_table`` reaches a "many" side.

        Returns ``None`` when the catalog declares no such join.
        """
        for owner, join in self._catalog.edges():
            target = self._catalog.get_entity(join.target)
            if target is None:
                continue
            if owner.table == from_table and target.table == to_table:
                return join.kind is JoinKind.ONE_TO_MANY
            if owner.table == to_table and target.table == from_table:
                return join.kind.reversed() is JoinKind.ONE_TO_MANY
        return None

    # ------------------------------------------------------------------
    # Selectivity
    # ------------------------------------------------------------------

    def _selectivity(self, pred: Predicate | None, known: dict[str, TableStatistics]) -> float:
        if pred is None:
            return 1.0
        if isinstance(pred, BooleanPredicate):
            factors = [self._selectivity(p, known) for p in pred.operands]
            if pred.op == "AND":
                return math.prod(factors)
            return min(1.0, sum(factors))
        return self._comparison_selectivity(pred, known)

    def _comparison_selectivity(
        self, cmp: Comparison, known: dict[str, TableStatistics]
    ) -> float:
        op = cmp.op
        column = expression_column(cmp.expr)
        if op in (FilterOp.EQ, FilterOp.IN):
            eq = self._eq_selectivity(column, known)
            count = len(cmp.value) if op is FilterOp.IN else 1
            return min(1.0, count * eq)
        if op in (FilterOp.NE, FilterOp.NOT_IN):
            eq = self._eq_selectivity(column, known)
            count = len(cmp.value) if op is FilterOp.NOT_IN else 1
            return max(0.0, 1.0 - count * eq)
        if op in (FilterOp.GT, FilterOp.GTE, FilterOp.LT, FilterOp.LTE, FilterOp.BETWEEN):
            return _RANGE_SELECTIVITY
        if op in PATTERN_OPS:
            return _LIKE_SELECTIVITY
        if op is FilterOp.IS_NULL:
            return _NULL_SELECTIVITY
        if op is FilterOp.IS_NOT_NULL:
            return 1.0 - _NULL_SELECTIVITY
        return 1.0

    @staticmethod
    def _eq_selectivity(column: Column, known: dict[str, TableStatistics]) -> float:
        stats = known.get(column.table)
        distinct = stats.distinct_counts.get(column.name) if stats is not None else None
        if distinct:
            return 1.0 / distinct
        return _DEFAULT_EQ_SELECTIVITY

    # ------------------------------------------------------------------
    # Grouping
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_grouping(
        statement: SqlStatement,
        rows: float,
        known: dict[str, TableStatistics],
        notes: list[str],
    ) -> float:
        if not statement.group_by:
            return 1.0 if statement.is_aggregate else rows
        cap = 1.0
        for column in statement.group_by:
            stats = known.get(column.table)
            distinct = stats.distinct_counts.get(column.name) if stats is not None else None
            if not distinct:
                notes.append(f"Distinct count of {column.table}.{column.name} unknown.")
                return rows
            cap *= distinct
        return min(rows, cap)
