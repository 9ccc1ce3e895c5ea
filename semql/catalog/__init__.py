"""Semantic catalog: entities, fields, joins, and table statistics."""
from semql.catalog.catalog import EntitySummary, SearchDocument, SemanticCatalog
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

__all__ = [
    "AggregationKind",
    "Dimension",
    "Entity",
    "EntitySummary",
    "Join",
    "JoinKind",
    "Measure",
    "SearchDocument",
    "SemanticCatalog",
    "TableStatistics",
    "ValueType",
]
