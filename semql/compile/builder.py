"""QueryPlan + JoinPath → SqlStatement.

``StatementBuilder`` is a pure transform: it resolves every field reference
against the catalog, checks filter values against declared types, applies
the grouping rules, and emits a typed :class:`~semql.schema.statement.SqlStatement`.
It never produces SQL text; that is the renderer's job, and only after the
security validator has approved the statement.

Grouping rules
--------------
* Measures selected, ``group_by`` empty: GROUP BY the selected dimensions.
* Measures selected, ``group_by`` given: it must name exactly the selected
  dimensions.
* No measures, ``group_by`` given: GROUP BY those dimensions (DISTINCT
  semantics); every grouped field must be selected.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import date, datetime
from typing import Any

from semql.catalog.catalog import SemanticCatalog
from semql.catalog.model import Dimension, Entity, Measure, ValueType
from semql.errors import (
    AmbiguousAggregationError,
    FilterTypeError,
    PathMismatchError,
    UnknownFieldError,
)
from semql.joins.path_finder import JoinPath
from semql.schema.field_reference import FieldReference
from semql.schema.query_plan import NULL_OPS, PATTERN_OPS, Filter, FilterOp, QueryPlan
from semql.schema.statement import (
    Aggregate,
    BooleanPredicate,
    Column,
    Comparison,
    Expression,
    JoinClause,
    OrderTerm,
    Predicate,
    Projection,
    Source,
    SqlStatement,
    StatementKind,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Filter value checks
# ---------------------------------------------------------------------------


def _is_iso_date(value: str) -> bool:
    for parse in (date.fromisoformat, datetime.fromisoformat):
        try:
            parse(value)
        except ValueError:
            continue
        return True
    return False


def value_matches_type(value: Any, value_type: ValueType) -> bool:
    """Return ``True`` when ``value`` is an acceptable literal for ``value_type``."""
    if value_type is ValueType.NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if value_type is ValueType.BOOLEAN:
        return isinstance(value, bool)
    if value_type is ValueType.DATE:
        if isinstance(value, (date, datetime)):
            return True
        return isinstance(value, str) and _is_iso_date(value)
    return isinstance(value, str)


class FilterChecker:
    """Checks one filter's operator arity, value types, and value domain.

    Args:
        ref: The field reference being filtered (for error messages).
        value_type: Declared type of the field.
        domain: Enumerated domain of the field, if any.
    """

    def __init__(
        self,
        ref: FieldReference,
        value_type: ValueType,
        domain: tuple[Any, ...] | None = None,
    ) -> None:
        self._ref = ref
        self._type = value_type
        self._domain = domain

    def check(self, op: FilterOp, value: Any) -> Any:
        """Validate ``value`` for ``op`` and return it in statement form.

        Raises:
            FilterTypeError: On an arity, type, or domain mismatch.
        """
        field = str(self._ref)
        if op in NULL_OPS:
            if value is not None:
                raise FilterTypeError(field, f"'{op.value}' on '{field}' takes no value.", op=op.value)
            return None

        if op in (FilterOp.IN, FilterOp.NOT_IN):
            if not isinstance(value, (tuple, list)) or not value:
                raise FilterTypeError(
                    field, f"'{op.value}' on '{field}' requires a non-empty list.", op=op.value
                )
            return tuple(self._check_scalar(op, v) for v in value)

        if op is FilterOp.BETWEEN:
            if not isinstance(value, (tuple, list)) or len(value) != 2:
                raise FilterTypeError(
                    field, f"'between' on '{field}' requires exactly two values.", op=op.value
                )
            return tuple(self._check_scalar(op, v) for v in value)

        if op in PATTERN_OPS and self._type is not ValueType.STRING:
            raise FilterTypeError(
                field,
                f"'{op.value}' applies only to string fields; '{field}' is {self._type.value}.",
                op=op.value,
            )

        if isinstance(value, (tuple, list)):
            raise FilterTypeError(field, f"'{op.value}' on '{field}' takes a single value.", op=op.value)
        return self._check_scalar(op, value)

    def _check_scalar(self, op: FilterOp, value: Any) -> Any:
        field = str(self._ref)
        if value is None:
            raise FilterTypeError(
                field, f"'{op.value}' on '{field}' requires a value; use 'is_null' for NULL.", op=op.value
            )
        if not value_matches_type(value, self._type):
            raise FilterTypeError(
                field,
                f"Value {value!r} does not match the declared type "
                f"'{self._type.value}' of '{field}'.",
                op=op.value,
                value=value,
                expected_type=self._type.value,
            )
        # LIKE patterns are not members of the domain.
        if self._domain is not None and op not in PATTERN_OPS and value not in self._domain:
            raise FilterTypeError(
                field,
                f"Value {value!r} is outside the domain of '{field}'.",
                op=op.value,
                value=value,
                allowed_values=list(self._domain),
            )
        return value


# ---------------------------------------------------------------------------
# Statement builder
# ---------------------------------------------------------------------------


class StatementBuilder:
    """Builds a typed statement from a plan and a resolved join path.

    Args:
        catalog: The semantic catalog the plan was resolved against.
    """

    def __init__(self, catalog: SemanticCatalog) -> None:
        self._catalog = catalog

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(self, plan: QueryPlan, path: JoinPath) -> SqlStatement:
        """Build a ``SELECT`` statement for ``plan`` joined along ``path``.

        Args:
            plan: A structurally valid plan.
            path: Join path covering every entity in ``plan.entities``.

        Returns:
            The :class:`SqlStatement`.  Its ``kind`` is always ``SELECT``.

        Raises:
            PathMismatchError: If ``path`` does not cover the plan.
            UnknownEntityError: If an entity is not in the catalog.
            UnknownFieldError: If a field is missing, or a dimension is used
                as a measure (or vice versa).
            FilterTypeError: If a filter value does not fit its field.
            AmbiguousAggregationError: If grouping and selection disagree.
        """
        self._check_path(plan, path)

        dimensions = [self._dimension(ref) for ref in plan.dimensions]
        measures = [self._measure(ref) for ref in plan.measures]
        aliases = self._aliases([ref for ref, _, _ in dimensions] + [ref for ref, _, _ in measures])

        projections: list[Projection] = []
        for ref, entity, dim in dimensions:
            projections.append(
                Projection(expr=self._column(entity, dim.column), alias=aliases[ref], field=str(ref))
            )
        for ref, entity, measure in measures:
            projections.append(
                Projection(expr=self._aggregate(entity, measure), alias=aliases[ref], field=str(ref))
            )

        group_by = self._group_by(plan, dimensions, bool(measures))
        aggregating = bool(measures) or bool(group_by)
        where, having = self._filters(plan.filters, aggregating)
        order_by = self._order_by(plan, aggregating)

        statement = SqlStatement(
            kind=StatementKind.SELECT,
            projections=tuple(projections),
            source=self._source(path.root),
            joins=self._joins(path),
            where=where,
            group_by=group_by,
            having=having,
            order_by=order_by,
            limit=plan.limit,
        )
        logger.debug(
            "Built statement over %s: %d projections, %d joins",
            path.entities,
            len(statement.projections),
            len(statement.joins),
        )
        return statement

    # ------------------------------------------------------------------
    # Resolution helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_path(plan: QueryPlan, path: JoinPath) -> None:
        covered = set(path.entities)
        missing = [name for name in plan.entities if name not in covered]
        if missing:
            raise PathMismatchError(
                f"Join path rooted at '{path.root}' does not cover entities {missing}.",
                details={"root": path.root, "missing": missing},
            )

    def _dimension(self, raw: str) -> tuple[FieldReference, Entity, Dimension]:
        ref = FieldReference.parse(raw)
        entity, dim = ref.resolve_dimension(self._catalog)
        return ref, entity, dim

    def _measure(self, raw: str) -> tuple[FieldReference, Entity, Measure]:
        ref = FieldReference.parse(raw)
        entity, measure = ref.resolve_measure(self._catalog)
        return ref, entity, measure

    def _field(self, raw: str) -> tuple[FieldReference, Entity, Dimension | Measure]:
        """Resolve a reference that may name either a dimension or a measure."""
        ref = FieldReference.parse(raw)
        entity = self._catalog.lookup_entity(ref.entity)
        found: Dimension | Measure | None = entity.get_dimension(ref.field)
        if found is None:
            found = entity.get_measure(ref.field)
        if found is None:
            raise UnknownFieldError(
                str(ref), f"is not a field of '{ref.entity}'", entity.field_names
            )
        return ref, entity, found

    @staticmethod
    def _aliases(refs: list[FieldReference]) -> dict[FieldReference, str]:
        counts = Counter(ref.field for ref in refs)
        return {
            ref: ref.field if counts[ref.field] == 1 else f"{ref.entity}_{ref.field}"
            for ref in refs
        }

    @staticmethod
    def _column(entity: Entity, column: str) -> Column:
        return Column(qualifier=entity.name, table=entity.table, name=column)

    def _aggregate(self, entity: Entity, measure: Measure) -> Aggregate:
        return Aggregate(kind=measure.aggregation, column=self._column(entity, measure.column))

    def _source(self, name: str) -> Source:
        entity = self._catalog.lookup_entity(name)
        return Source(table=entity.table, alias=entity.name)

    def _joins(self, path: JoinPath) -> tuple[JoinClause, ...]:
        clauses: list[JoinClause] = []
        for step in path.steps:
            left = self._catalog.lookup_entity(step.from_entity)
            right = self._catalog.lookup_entity(step.to_entity)
            conditions = tuple(
                (self._column(left, from_col), self._column(right, to_col))
                for from_col, to_col in step.key_pairs
            )
            clauses.append(
                JoinClause(source=Source(table=right.table, alias=right.name), conditions=conditions)
            )
        return tuple(clauses)

    # ------------------------------------------------------------------
    # Grouping
    # ------------------------------------------------------------------

    def _group_by(
        self,
        plan: QueryPlan,
        dimensions: list[tuple[FieldReference, Entity, Dimension]],
        has_measures: bool,
    ) -> tuple[Column, ...]:
        selected = {ref: self._column(entity, dim.column) for ref, entity, dim in dimensions}

        explicit: list[FieldReference] = []
        for raw in plan.group_by:
            ref = FieldReference.parse(raw)
            entity = self._catalog.lookup_entity(ref.entity)
            if entity.get_measure(ref.field) is not None:
                raise AmbiguousAggregationError(
                    f"Measure '{ref}' cannot appear in group_by.", fields=[str(ref)]
                )
            ref.resolve_dimension(self._catalog)
            if ref not in selected:
                raise AmbiguousAggregationError(
                    f"Grouped field '{ref}' is not a selected dimension.", fields=[str(ref)]
                )
            explicit.append(ref)

        if has_measures:
            if explicit:
                ungrouped = [str(ref) for ref in selected if ref not in explicit]
                if ungrouped:
                    raise AmbiguousAggregationError(
                        f"Selected dimensions {ungrouped} are missing from group_by while "
                        f"measures are requested.",
                        fields=ungrouped,
                    )
            return tuple(dict.fromkeys(selected.values()))

        return tuple(dict.fromkeys(selected[ref] for ref in explicit))

    # ------------------------------------------------------------------
    # Filters and ordering
    # ------------------------------------------------------------------

    def _filters(
        self, filters: tuple[Filter, ...], aggregating: bool
    ) -> tuple[Predicate | None, Predicate | None]:
        where: list[Predicate] = []
        having: list[Predicate] = []
        for flt in filters:
            ref, entity, found = self._field(flt.field)
            if isinstance(found, Measure):
                if not aggregating:
                    raise AmbiguousAggregationError(
                        f"Filter on measure '{ref}' requires an aggregating plan.",
                        fields=[str(ref)],
                    )
                value = FilterChecker(ref, found.type).check(flt.op, flt.value)
                having.append(Comparison(expr=self._aggregate(entity, found), op=flt.op, value=value))
            else:
                value = FilterChecker(ref, found.type, found.values).check(flt.op, flt.value)
                where.append(
                    Comparison(expr=self._column(entity, found.column), op=flt.op, value=value)
                )
        return _conjunction(where), _conjunction(having)

    def _order_by(self, plan: QueryPlan, aggregating: bool) -> tuple[OrderTerm, ...]:
        selected_dims = set(plan.dimensions)
        terms: list[OrderTerm] = []
        for item in plan.order_by:
            ref, entity, found = self._field(item.field)
            expr: Expression
            if isinstance(found, Measure):
                if not aggregating:
                    raise AmbiguousAggregationError(
                        f"Ordering by measure '{ref}' requires an aggregating plan.",
                        fields=[str(ref)],
                    )
                expr = self._aggregate(entity, found)
            else:
                if aggregating and item.field not in selected_dims:
                    raise AmbiguousAggregationError(
                        f"Ordering by '{ref}' requires it to be a selected dimension "
                        f"when aggregating.",
                        fields=[str(ref)],
                    )
                expr = self._column(entity, found.column)
            terms.append(OrderTerm(expr=expr, direction=item.direction))
        return tuple(terms)


def _conjunction(predicates: list[Predicate]) -> Predicate | None:
    if not predicates:
        return None
    if len(predicates) == 1:
        return predicates[0]
    return BooleanPredicate(op="AND", operands=tuple(predicates))
