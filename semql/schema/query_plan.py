"""Pydantic models for the SemQL QueryPlan.

The external planner proposes a single JSON object matching the
``QueryPlan`` shape::

    {
      "entities": ["Company"],
      "dimensions": ["Company.industry"],
      "measures": ["Company.revenue"],
      "filters": [{"field": "Company.country", "op": "eq", "value": "DE"}],
      "order_by": [{"field": "Company.revenue", "direction": "desc"}],
      "limit": 20
    }

:func:`parse_plan` is the ingestion boundary: it either returns a typed,
frozen ``QueryPlan`` or raises :class:`~semql.errors.PlanStructureError`.
Nothing is coerced silently; unknown keys are rejected.
"""
from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from semql.errors import PlanStructureError
from semql.schema.field_reference import FieldReference


class FilterOp(str, Enum):
    """Filter operators accepted in a plan."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    BETWEEN = "between"
    LIKE = "like"
    ILIKE = "ilike"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"


#: Operators that take no value.
NULL_OPS: frozenset[FilterOp] = frozenset({FilterOp.IS_NULL, FilterOp.IS_NOT_NULL})

#: Operators that take a list of values.
LIST_OPS: frozenset[FilterOp] = frozenset({FilterOp.IN, FilterOp.NOT_IN, FilterOp.BETWEEN})

#: Pattern-match operators; case-insensitive for ``ilike``.
PATTERN_OPS: frozenset[FilterOp] = frozenset({FilterOp.LIKE, FilterOp.ILIKE})


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


def _check_field_ref(value: str) -> str:
    FieldReference.parse(value)
    return value


class Filter(BaseModel):
    """A single filter predicate.

    Attributes:
        field: ``Entity.field`` reference (dimension or measure).
        op: Filter operator.
        value: Scalar, list (``in`` / ``not_in`` / ``between``), or ``None``
            (``is_null`` / ``is_not_null``).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    field: str
    op: FilterOp = FilterOp.EQ
    value: Any = None

    @field_validator("field")
    @classmethod
    def _check_field(cls, value: str) -> str:
        return _check_field_ref(value)

    @field_validator("value")
    @classmethod
    def _freeze_lists(cls, value: Any) -> Any:
        if isinstance(value, list):
            return tuple(value)
        return value


class OrderItem(BaseModel):
    """A single ORDER BY item.

    Attributes:
        field: ``Entity.field`` reference.
        direction: Sort direction.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    field: str
    direction: SortDirection = SortDirection.ASC

    @field_validator("field")
    @classmethod
    def _check_field(cls, value: str) -> str:
        return _check_field_ref(value)


@dataclass(frozen=True)
class EntityMentions:
    """How often, and how recently, each entity is referenced by a plan.

    Attributes:
        counts: Number of references per entity.
        last_position: Index of the last reference per entity (higher is
            more recent).
    """

    counts: dict[str, int]
    last_position: dict[str, int]


class QueryPlan(BaseModel):
    """Typed request produced by the external planner.

    Attributes:
        entities: Entity identifiers the plan touches (non-empty).
        dimensions: Selected ``Entity.dimension`` references.
        measures: Selected ``Entity.measure`` references.
        filters: Filter predicates, combined with AND.
        group_by: Explicit grouping.  When empty and measures are selected,
            grouping is derived from the selected dimensions.
        order_by: Ordering items.
        limit: Maximum number of rows.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    entities: tuple[str, ...] = Field(min_length=1)
    dimensions: tuple[str, ...] = ()
    measures: tuple[str, ...] = ()
    filters: tuple[Filter, ...] = ()
    group_by: tuple[str, ...] = ()
    order_by: tuple[OrderItem, ...] = ()
    limit: int | None = Field(default=None, gt=0)

    @field_validator("dimensions", "measures", "group_by")
    @classmethod
    def _check_refs(cls, refs: tuple[str, ...]) -> tuple[str, ...]:
        for ref in refs:
            _check_field_ref(ref)
        return refs

    @model_validator(mode="after")
    def _check_structure(self) -> QueryPlan:
        if len(set(self.entities)) != len(self.entities):
            raise ValueError("'entities' must not repeat an entity.")
        if not self.dimensions and not self.measures:
            raise ValueError("A plan must select at least one dimension or measure.")
        declared = set(self.entities)
        for ref in self.referenced_fields():
            if ref.entity not in declared:
                raise ValueError(
                    f"Field '{ref}' belongs to entity '{ref.entity}', which is not "
                    f"listed in 'entities'."
                )
        return self

    # ------------------------------------------------------------------
    # Domain methods
    # ------------------------------------------------------------------

    def referenced_fields(self) -> list[FieldReference]:
        """Every field reference in the plan, in encounter order."""
        refs = [
            *self.dimensions,
            *self.measures,
            *(f.field for f in self.filters),
            *self.group_by,
            *(o.field for o in self.order_by),
        ]
        return [FieldReference.parse(ref) for ref in refs]

    def entity_mentions(self) -> EntityMentions:
        """Count entity references, for join-path tie-breaking.

        The ``entities`` list itself counts as one mention per entity;
        every field reference adds another.
        """
        counts: dict[str, int] = {}
        last: dict[str, int] = {}
        names = [*self.entities, *(ref.entity for ref in self.referenced_fields())]
        for position, name in enumerate(names):
            counts[name] = counts.get(name, 0) + 1
            last[name] = position
        return EntityMentions(counts=counts, last_position=last)


def parse_plan(raw: str | bytes | Mapping[str, Any] | QueryPlan) -> QueryPlan:
    """Validate external plan input into a typed :class:`QueryPlan`.

    Args:
        raw: JSON text, an already-decoded mapping, or a ``QueryPlan``.

    Returns:
        The validated, frozen plan.

    Raises:
        PlanStructureError: If the input is not valid JSON or does not match
            the ``QueryPlan`` shape.
    """
    if isinstance(raw, QueryPlan):
        return raw
    data: Any = raw
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise PlanStructureError(f"Invalid JSON: {exc}", raw=raw) from exc
    if not isinstance(data, Mapping):
        raise PlanStructureError(
            f"QueryPlan must be a JSON object, got {type(data).__name__}.", raw=raw
        )
    try:
        return QueryPlan.model_validate(dict(data))
    except PydanticValidationError as exc:
        raise PlanStructureError(
            f"QueryPlan structure is invalid: {exc}",
            raw=raw,
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc
