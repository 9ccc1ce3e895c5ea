"""SemQL schema models: QueryPlan and the SqlStatement IR."""
from semql.schema.field_reference import FieldReference
from semql.schema.query_plan import (
    Filter,
    FilterOp,
    OrderItem,
    QueryPlan,
    SortDirection,
    parse_plan,
)
from semql.schema.statement import (
    READ_ONLY_KINDS,
    Aggregate,
    BooleanPredicate,
    Column,
    CommonTableExpression,
    Comparison,
    JoinClause,
    OrderTerm,
    Projection,
    Source,
    SqlStatement,
    StatementKind,
)

__all__ = [
    "FieldReference",
    "Filter",
    "FilterOp",
    "OrderItem",
    "QueryPlan",
    "SortDirection",
    "parse_plan",
    "READ_ONLY_KINDS",
    "Aggregate",
    "BooleanPredicate",
    "Column",
    "CommonTableExpression",
    "Comparison",
    "JoinClause",
    "OrderTerm",
    "Projection",
    "Source",
    "SqlStatement",
    "StatementKind",
]
