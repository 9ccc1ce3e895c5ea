"""Execution boundary, error classification, and the repair loop."""
from semql.execute.backend import (
    BackendError,
    BackendTimeout,
    ColumnMeta,
    ExecutionBackend,
    ResultSet,
    SqlAlchemyBackend,
    SQLiteBackend,
)
from semql.execute.classifier import ErrorClass, ErrorClassifier
from semql.execute.repair import (
    AttemptOutcome,
    CallableReformulator,
    CatalogReformulator,
    ExecutionAttempt,
    Reformulator,
    RepairLoop,
    RepairOutcome,
    RepairSession,
    RepairState,
)

__all__ = [
    "BackendError",
    "BackendTimeout",
    "ColumnMeta",
    "ExecutionBackend",
    "ResultSet",
    "SqlAlchemyBackend",
    "SQLiteBackend",
    "ErrorClass",
    "ErrorClassifier",
    "AttemptOutcome",
    "CallableReformulator",
    "CatalogReformulator",
    "ExecutionAttempt",
    "Reformulator",
    "RepairLoop",
    "RepairOutcome",
    "RepairSession",
    "RepairState",
]
