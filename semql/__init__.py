"""SemQL – Semantic SQL compilation with bounded execution repair.

Plans name entities and fields; SQL is built, never generated.

Public API
----------
``compile_plan``
    Parse a QueryPlan, resolve its join path, build the statement, validate
    it against the security policy, and render parameterized SQL.

``AnalysisRun``
    Phase-gated orchestration of one question: plan, build, execute with
    repair, report.

Re-exported types
-----------------
``SemanticCatalog``, ``QueryPlan``, ``SecurityPolicy``, ``CompiledSQL``,
``PromptComponents``, ``EngineSettings``, and all error classes.

Extensibility
-------------
New dialect compilers can be registered via::

    from semql.compile.registry import CompilerFactory

    @CompilerFactory.register("duckdb")
    class DuckDBCompiler(SQLCompiler):
        ...

After registration, ``compile_plan(..., dialect="duckdb")`` and
``EngineSettings(dialect="duckdb")`` pick it up automatically.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from semql.catalog.catalog import EntitySummary, SemanticCatalog
from semql.catalog.converters import catalog_from_sqlalchemy
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
from semql.compile.base import CompiledSQL, SQLCompiler
from semql.compile.builder import StatementBuilder
from semql.compile.postgres import PostgresCompiler
from semql.compile.registry import CompilerFactory
from semql.compile.renderer import StatementRenderer
from semql.compile.sqlite import SQLiteCompiler
from semql.config import EngineSettings, get_settings
from semql.errors import (
    AmbiguousAggregationError,
    CapabilityError,
    CatalogError,
    CompilationError,
    DatabaseError,
    DisallowedColumnError,
    DisallowedStatementKindError,
    DisallowedTableError,
    DisconnectedError,
    ExecutionTimeoutError,
    FilterTypeError,
    JoinPathError,
    LimitExceededError,
    NoPathError,
    PathMismatchError,
    PhaseError,
    PlanError,
    PlanStructureError,
    PolicyConfigError,
    PolicyViolationError,
    RepairStateError,
    SemQLError,
    StructuralError,
    UnknownEntityError,
    UnknownFieldError,
)
from semql.estimate.estimator import Confidence, CostEstimate, CostEstimator
from semql.execute.backend import (
    ExecutionBackend,
    ResultSet,
    SqlAlchemyBackend,
    SQLiteBackend,
)
from semql.execute.classifier import ErrorClass, ErrorClassifier
from semql.execute.repair import (
    CallableReformulator,
    CatalogReformulator,
    RepairLoop,
    RepairOutcome,
    RepairState,
)
from semql.joins.path_finder import JoinPath, JoinPathFinder, JoinStep, TieBreakRule
from semql.phase.controller import (
    Capability,
    PhaseController,
    PhaseState,
    Signal,
    TerminalReason,
)
from semql.policy.engine import (
    SecurityPolicy,
    SecurityValidator,
    TablePolicy,
    ValidatedStatement,
    load_policy,
)
from semql.prompt.builder import PromptBuilder, PromptComponents
from semql.run import AnalysisRun, RunReport
from semql.schema.query_plan import Filter, FilterOp, OrderItem, QueryPlan, parse_plan
from semql.schema.statement import SqlStatement, StatementKind
from semql.utils.logger import setup_logging

__all__ = [
    # Core pipeline
    "compile_plan",
    "AnalysisRun",
    "RunReport",
    # Catalog
    "SemanticCatalog",
    "EntitySummary",
    "Entity",
    "Dimension",
    "Measure",
    "Join",
    "JoinKind",
    "AggregationKind",
    "ValueType",
    "TableStatistics",
    "catalog_from_sqlalchemy",
    # Plans and statements
    "QueryPlan",
    "Filter",
    "FilterOp",
    "OrderItem",
    "parse_plan",
    "SqlStatement",
    "StatementKind",
    # Join paths
    "JoinPathFinder",
    "JoinPath",
    "JoinStep",
    "TieBreakRule",
    # Policy
    "SecurityPolicy",
    "TablePolicy",
    "SecurityValidator",
    "ValidatedStatement",
    "load_policy",
    # Compilation
    "StatementBuilder",
    "StatementRenderer",
    "CompiledSQL",
    "CompilerFactory",
    "SQLCompiler",
    "PostgresCompiler",
    "SQLiteCompiler",
    # Estimation
    "CostEstimator",
    "CostEstimate",
    "Confidence",
    # Execution
    "ExecutionBackend",
    "ResultSet",
    "SQLiteBackend",
    "SqlAlchemyBackend",
    "ErrorClass",
    "ErrorClassifier",
    "RepairLoop",
    "RepairOutcome",
    "RepairState",
    "CallableReformulator",
    "CatalogReformulator",
    # Phases
    "PhaseController",
    "PhaseState",
    "Capability",
    "Signal",
    "TerminalReason",
    # Prompting
    "PromptBuilder",
    "PromptComponents",
    # Configuration and logging
    "EngineSettings",
    "get_settings",
    "setup_logging",
    # Errors
    "SemQLError",
    "StructuralError",
    "CatalogError",
    "PlanStructureError",
    "PlanError",
    "UnknownEntityError",
    "UnknownFieldError",
    "FilterTypeError",
    "AmbiguousAggregationError",
    "PathMismatchError",
    "PolicyViolationError",
    "DisallowedStatementKindError",
    "DisallowedTableError",
    "DisallowedColumnError",
    "LimitExceededError",
    "PolicyConfigError",
    "JoinPathError",
    "DisconnectedError",
    "NoPathError",
    "DatabaseError",
    "ExecutionTimeoutError",
    "PhaseError",
    "CapabilityError",
    "RepairStateError",
    "CompilationError",
]


def compile_plan(
    raw_plan: str | bytes | Mapping[str, Any] | QueryPlan,
    catalog: SemanticCatalog,
    policy: SecurityPolicy,
    dialect: str = "sqlite",
    tie_break: TieBreakRule | str = TieBreakRule.MOST_FREQUENT,
) -> CompiledSQL:
    """Parse, resolve, build, validate, and render a QueryPlan.

    This is the one-call entry point for the SemQL compiler::

        compiled = semql.compile_plan(
            raw_plan=planner_output,
            catalog=catalog,
            policy=SecurityPolicy.for_catalog(catalog, default_limit=100),
        )
        cursor.execute(compiled.sql, compiled.params)

    Args:
        raw_plan: JSON text or a mapping output by the planner.
        catalog: The semantic catalog.
        policy: Security policy applied to the built statement.
        dialect: Target dialect registered in :class:`CompilerFactory`.
        tie_break: Rule for choosing between equally short join paths.

    Returns:
        ``CompiledSQL`` with ``sql`` string, literal ``params``, and ``dialect``.

    Raises:
        PlanStructureError: If ``raw_plan`` is not a valid QueryPlan.
        PlanError: (or subclass) if the plan does not fit the catalog.
        JoinPathError: If the plan's entities cannot be connected.
        PolicyViolationError: If the statement breaches ``policy``.
        CompilationError: If ``dialect`` is not registered.
    """
    # 1. Parse
    plan = parse_plan(raw_plan)

    # 2. Resolve the join path
    path = JoinPathFinder(catalog, tie_break).find_path(plan.entities, plan.entity_mentions())

    # 3. Build
    statement = StatementBuilder(catalog).build(plan, path)

    # 4. Validate against policy
    validated = SecurityValidator(policy).validate(statement)

    # 5. Render - dialect resolved via CompilerFactory
    return StatementRenderer(CompilerFactory.create(dialect)).render(validated)
