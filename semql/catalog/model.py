"""Pydantic models for the semantic catalog.

An :class:`Entity` is the logical table the planner works with.  It exposes
groupable :class:`Dimension` fields, aggregatable :class:`Measure` fields,
and the :class:`Join` relationships it declares toward other entities.

These records are produced by the caller (the on-disk model format is parsed
elsewhere) and are frozen once validated.
"""
from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ValueType(str, Enum):
    """Declared value type of a field."""

    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


class AggregationKind(str, Enum):
    """Aggregation applied to a measure."""

    SUM = "sum"
    COUNT = "count"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    COUNT_DISTINCT = "count_distinct"


class JoinKind(str, Enum):
    """Cardinality of a declared join, read from the declaring entity."""

    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_ONE = "many_to_one"

    def reversed(self) -> JoinKind:
        """Returns the cardinality seen from the target side."""
        if self is JoinKind.ONE_TO_MANY:
            return JoinKind.MANY_TO_ONE
        if self is JoinKind.MANY_TO_ONE:
            return JoinKind.ONE_TO_MANY
        return self


def _fill_column(data: Any) -> Any:
    """Default a field's ``column`` to its ``name`` when omitted."""
    if isinstance(data, dict) and not data.get("column") and "name" in data:
        return {**data, "column": data["name"]}
    return data


class Dimension(BaseModel):
    """A groupable / filterable attribute.

    Attributes:
        name: Field name, unique within the entity.
        column: Source column on the entity's backing table.  Defaults to
            ``name``.
        type: Declared value type, used to check filter values.
        values: Optional enumerated domain.
        description: Free-text description exposed to search.
        synonyms: Alternative names exposed to search.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    column: str = ""
    type: ValueType = ValueType.STRING
    values: tuple[str | int | float | bool, ...] | None = None
    description: str | None = None
    synonyms: tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _default_column(cls, data: Any) -> Any:
        return _fill_column(data)


class Measure(BaseModel):
    """An aggregatable attribute.

    Attributes:
        name: Field name, unique within the entity.
        column: Source column on the backing table.  Defaults to ``name``.
        aggregation: Aggregate function wrapped around the column.
        type: Declared value type of the aggregated result.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    column: str = ""
    aggregation: AggregationKind = AggregationKind.SUM
    type: ValueType = ValueType.NUMBER
    description: str | None = None
    synonyms: tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _default_column(cls, data: Any) -> Any:
        return _fill_column(data)


class Join(BaseModel):
    """A declared relationship from the owning entity to ``target``.

    ``local_columns[i]`` on the owner joins ``remote_columns[i]`` on the
    target.

    Attributes:
        target: Target entity name.
        kind: Cardinality read from the owner.
        local_columns: Key columns on the owner's table.
        remote_columns: Key columns on the target's table.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    target: str
    kind: JoinKind = JoinKind.MANY_TO_ONE
    local_columns: tuple[str, ...]
    remote_columns: tuple[str, ...]

    @model_validator(mode="after")
    def _check_key_pairs(self) -> Join:
        if not self.local_columns:
            raise ValueError(f"Join to '{self.target}' declares no key columns.")
        if len(self.local_columns) != len(self.remote_columns):
            raise ValueError(
                f"Join to '{self.target}' has {len(self.local_columns)} local "
                f"and {len(self.remote_columns)} remote key columns."
            )
        return self

    @property
    def key_pairs(self) -> list[tuple[str, str]]:
        """Returns ``(local, remote)`` column pairs."""
        return list(zip(self.local_columns, self.remote_columns))


class Entity(BaseModel):
    """A logical table abstraction.

    Attributes:
        name: Entity identifier, unique within the catalog.
        table: Backing table name.
        dimensions: Ordered dimensions.
        measures: Ordered measures.
        joins: Declared joins toward other entities.
        key_columns: Extra physical columns (typically keys) that joins may
            reference without exposing them as fields.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    table: str
    description: str | None = None
    synonyms: tuple[str, ...] = ()
    dimensions: tuple[Dimension, ...] = ()
    measures: tuple[Measure, ...] = ()
    joins: tuple[Join, ...] = ()
    key_columns: tuple[str, ...] = ()

    @model_validator(mode="after")
    def _check_unique_fields(self) -> Entity:
        seen: set[str] = set()
        for name in self.field_names:
            if name in seen:
                raise ValueError(f"Entity '{self.name}' declares field '{name}' twice.")
            seen.add(name)
        return self

    def get_dimension(self, name: str) -> Dimension | None:
        """Returns the dimension called ``name``, or ``None``."""
        for dim in self.dimensions:
            if dim.name == name:
                return dim
        return None

    def get_measure(self, name: str) -> Measure | None:
        """Returns the measure called ``name``, or ``None``."""
        for measure in self.measures:
            if measure.name == name:
                return measure
        return None

    @property
    def field_names(self) -> list[str]:
        """Returns dimension names followed by measure names."""
        return [d.name for d in self.dimensions] + [m.name for m in self.measures]

    @property
    def column_names(self) -> list[str]:
        """Returns every physical column the entity knows about, in order."""
        columns: list[str] = []
        for col in (
            [d.column for d in self.dimensions]
            + [m.column for m in self.measures]
            + list(self.key_columns)
        ):
            if col not in columns:
                columns.append(col)
        return columns


class TableStatistics(BaseModel):
    """Optional table statistics consumed by the cost estimator.

    Attributes:
        row_count: Approximate number of rows.
        distinct_counts: Approximate distinct values per column.
        avg_row_bytes: Approximate average row width.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    row_count: int = Field(ge=0)
    distinct_counts: dict[str, int] = Field(default_factory=dict)
    avg_row_bytes: int | None = None
