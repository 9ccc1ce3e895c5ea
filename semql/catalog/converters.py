"""Utilities for building a SemanticCatalog from external sources.

SQLAlchemy converter
--------------------
:func:`catalog_from_sqlalchemy` reflects a live database engine and returns a
:class:`~semql.catalog.catalog.SemanticCatalog` with one entity per table.

Example::

    from sqlalchemy import create_engine
    from semql.catalog.converters import catalog_from_sqlalchemy

    engine = create_engine("sqlite:///warehouse.db")
    catalog = catalog_from_sqlalchemy(engine, collect_statistics=True)

Reflected catalogs are a starting point: numeric non-key columns become
``sum`` measures, everything else becomes a dimension, and every foreign-key
constraint becomes a ``many_to_one`` join.  Hand-authored catalogs carry
richer descriptions, synonyms, and enumerated domains.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import Boolean, Date, DateTime, Float, Integer, MetaData, Numeric, func, select

from semql.catalog.catalog import SemanticCatalog
from semql.catalog.model import (
    AggregationKind,
    Dimension,
    Entity,
    Join,
    JoinKind,
    Measure,
    TableStatistics,
    ValueType,
)

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine, Table

logger = logging.getLogger(__name__)


def catalog_from_sqlalchemy(
    engine: Engine,
    *,
    include_tables: list[str] | None = None,
    schema: str | None = None,
    infer_joins: bool = False,
    collect_statistics: bool = False,
) -> SemanticCatalog:
    """Build a :class:`SemanticCatalog` by reflecting a SQLAlchemy engine.

    **Join convention**

    Each foreign-key constraint (composite keys included) becomes a
    ``many_to_one`` join declared on the referencing entity.  Self-referential
    constraints are skipped: a join path never visits the same entity twice.

    **Databases without FK constraints**

    Pass ``infer_joins=True`` to add joins from naming conventions: a column
    ``{prefix}_id`` joins table ``{prefix}`` or ``{prefix}s`` when that table
    has an ``id`` column.

    Args:
        engine: A connected :class:`sqlalchemy.engine.Engine` instance.
        include_tables: Optional allowlist of table names to reflect.
        schema: Optional database schema name (e.g. ``"public"``).
        infer_joins: Infer joins from ``*_id`` column names.
        collect_statistics: Run ``COUNT(*)`` and ``COUNT(DISTINCT ...)``
            queries to seed the cost estimator.  Skipped by default since it
            scans every reflected table.

    Returns:
        A fully populated :class:`SemanticCatalog`.
    """
    metadata = MetaData()
    with engine.connect() as conn:
        metadata.reflect(bind=conn, only=include_tables, schema=schema)
        entities = _metadata_to_entities(metadata, infer_joins=infer_joins)
        statistics: dict[str, TableStatistics] = {}
        if collect_statistics:
            for table in metadata.sorted_tables:
                statistics[table.name] = _collect_statistics(conn, table)

    logger.info("Reflected %d tables into the semantic catalog", len(entities))
    return SemanticCatalog(entities, statistics)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _metadata_to_entities(metadata: MetaData, *, infer_joins: bool) -> list[Entity]:
    """Convert reflected :class:`~sqlalchemy.schema.MetaData` into entities."""
    table_columns = {t.name: [c.name for c in t.columns] for t in metadata.sorted_tables}
    entities: list[Entity] = []
    for table in metadata.sorted_tables:
        key_columns = _key_columns(table)
        dimensions: list[Dimension] = []
        measures: list[Measure] = []
        for col in table.columns:
            value_type = _value_type(col.type)
            if value_type is ValueType.NUMBER and col.name not in key_columns:
                measures.append(
                    Measure(name=col.name, column=col.name, aggregation=AggregationKind.SUM)
                )
            else:
                dimensions.append(Dimension(name=col.name, column=col.name, type=value_type))

        joins = _declared_joins(table)
        if infer_joins:
            joins.extend(_inferred_joins(table.name, table_columns, joins))

        entities.append(
            Entity(
                name=table.name,
                table=table.name,
                description=table.comment,
                dimensions=tuple(dimensions),
                measures=tuple(measures),
                joins=tuple(joins),
                key_columns=tuple(sorted(key_columns)),
            )
        )
    return entities


def _key_columns(table: Table) -> set[str]:
    keys = {col.name for col in table.primary_key.columns}
    for fk in table.foreign_keys:
        keys.add(fk.parent.name)
    return keys


def _declared_joins(table: Table) -> list[Join]:
    joins: list[Join] = []
    for constraint in table.foreign_key_constraints:
        target = constraint.referred_table.name
        if target == table.name:
            continue
        joins.append(
            Join(
                target=target,
                kind=JoinKind.MANY_TO_ONE,
                local_columns=tuple(el.parent.name for el in constraint.elements),
                remote_columns=tuple(el.column.name for el in constraint.elements),
            )
        )
    return joins


def _inferred_joins(
    table_name: str,
    table_columns: dict[str, list[str]],
    existing: list[Join],
) -> list[Join]:
    """Return joins implied by ``{prefix}_id`` columns not already declared."""
    declared = {(j.target, j.local_columns) for j in existing}
    inferred: list[Join] = []
    for col in table_columns[table_name]:
        if not col.endswith("_id"):
            continue
        target = _resolve_candidate_table(col[:-3], table_columns)
        if target is None or target == table_name or (target, (col,)) in declared:
            continue
        inferred.append(
            Join(target=target, kind=JoinKind.MANY_TO_ONE, local_columns=(col,), remote_columns=("id",))
        )
    return inferred


def _resolve_candidate_table(prefix: str, table_columns: dict[str, list[str]]) -> str | None:
    """Return the first matching table for a ``{prefix}_id`` column.

    Tries ``prefix`` verbatim, then ``prefix + "s"`` (naive pluralisation).
    The candidate is only accepted when it has a column named ``id``.
    """
    for candidate in (prefix, prefix + "s"):
        if "id" in table_columns.get(candidate, []):
            return candidate
    return None


def _value_type(sql_type: Any) -> ValueType:
    """Map a reflected SQLAlchemy column type onto a catalog ValueType."""
    if isinstance(sql_type, Boolean):
        return ValueType.BOOLEAN
    if isinstance(sql_type, (Date, DateTime)):
        return ValueType.DATE
    if isinstance(sql_type, (Integer, Numeric, Float)):
        return ValueType.NUMBER
    return ValueType.STRING


def _collect_statistics(conn: Connection, table: Table) -> TableStatistics:
    row_count = conn.execute(select(func.count()).select_from(table)).scalar_one()
    distinct_counts: dict[str, int] = {}
    for col in table.columns:
        if _value_type(col.type) is ValueType.NUMBER and col.name not in _key_columns(table):
            continue
        distinct_counts[col.name] = conn.execute(
            select(func.count(col.distinct())).select_from(table)
        ).scalar_one()
    return TableStatistics(row_count=row_count, distinct_counts=distinct_counts)
