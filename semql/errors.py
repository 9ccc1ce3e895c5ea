"""Custom exception hierarchy for SemQL.

All public errors inherit from :class:`SemQLError` so callers can catch the
base class for any SemQL-specific failure.  Each family maps to one stage of
the pipeline:

* :class:`StructuralError` – malformed catalog or plan input (fatal).
* :class:`PlanError` – the plan cannot be resolved against the catalog.
* :class:`PolicyViolationError` – a statement breaches the security policy.
* :class:`JoinPathError` – requested entities cannot be connected.
* :class:`DatabaseError` – a classified execution failure.
* :class:`PhaseError` – an operation was called outside its phase.
"""
from __future__ import annotations

from typing import Any


class SemQLError(Exception):
    """Base exception for all SemQL errors.

    Args:
        message: Human-readable description.
        code: Machine-readable error code (e.g. ``UNKNOWN_FIELD``).
        details: Extra context returned to the caller for plan revision.
    """

    default_code = "SEMQL_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.details: dict[str, Any] = details or {}

    @property
    def message(self) -> str:
        return str(self)

    def to_error_response(self) -> dict[str, Any]:
        """Returns a structured error response suitable for plan repair."""
        return {
            "error": self.code,
            "message": str(self),
            "details": self.details,
        }


# ---------------------------------------------------------------------------
# Structural errors
# ---------------------------------------------------------------------------


class StructuralError(SemQLError):
    """Raised when catalog or plan input is structurally malformed."""

    default_code = "STRUCTURAL_ERROR"


class CatalogError(StructuralError):
    """Raised when the semantic catalog is inconsistent at load time."""

    default_code = "CATALOG_ERROR"


class PlanStructureError(StructuralError):
    """Raised when a proposed QueryPlan cannot be parsed.

    Args:
        message: Human-readable description.
        raw: The raw input that failed to parse.
    """

    default_code = "PLAN_STRUCTURE"

    def __init__(self, message: str, raw: Any = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details=details)
        self.raw = raw


# ---------------------------------------------------------------------------
# Plan errors
# ---------------------------------------------------------------------------


class PlanError(SemQLError):
    """Raised when a plan is well-formed but cannot be compiled."""

    default_code = "PLAN_ERROR"


class UnknownEntityError(PlanError):
    """Raised when a plan references an entity not in the catalog."""

    default_code = "UNKNOWN_ENTITY"

    def __init__(self, entity: str, known_entities: list[str]) -> None:
        super().__init__(
            f"Unknown entity: '{entity}'.",
            details={"entity": entity, "known_entities": known_entities},
        )
        self.entity = entity


class UnknownFieldError(PlanError):
    """Raised when a plan references a field its entity does not declare."""

    default_code = "UNKNOWN_FIELD"

    def __init__(self, field: str, reason: str, allowed_fields: list[str]) -> None:
        super().__init__(
            f"Field '{field}' {reason}.",
            details={"field": field, "allowed_fields": allowed_fields},
        )
        self.field = field


class FilterTypeError(PlanError):
    """Raised when a filter value does not fit the field's declared type."""

    default_code = "FILTER_TYPE_MISMATCH"

    def __init__(self, field: str, message: str, **details: Any) -> None:
        super().__init__(message, details={"field": field, **details})
        self.field = field


class AmbiguousAggregationError(PlanError):
    """Raised when selected fields and grouping do not line up."""

    default_code = "AMBIGUOUS_AGGREGATION"

    def __init__(self, message: str, fields: list[str]) -> None:
        super().__init__(message, details={"fields": fields})
        self.fields = fields


class PathMismatchError(PlanError):
    """Raised when a JoinPath does not cover the plan's entities."""

    default_code = "PATH_MISMATCH"


# ---------------------------------------------------------------------------
# Policy violations
# ---------------------------------------------------------------------------


class PolicyViolationError(SemQLError):
    """Raised when a statement breaches the security policy."""

    default_code = "POLICY_VIOLATION"


class DisallowedStatementKindError(PolicyViolationError):
    """Raised when the statement kind is not an allowed read-only kind."""

    default_code = "DISALLOWED_STATEMENT_KIND"

    def __init__(self, kind: str, allowed_kinds: list[str]) -> None:
        super().__init__(
            f"Statement kind '{kind}' is not allowed.",
            details={"kind": kind, "allowed_kinds": allowed_kinds},
        )


class DisallowedTableError(PolicyViolationError):
    """Raised when a statement references a table not in the allowlist."""

    default_code = "DISALLOWED_TABLE"

    def __init__(self, table: str, allowed_tables: list[str]) -> None:
        super().__init__(
            f"Table '{table}' is not allowed.",
            details={"table": table, "allowed_tables": allowed_tables},
        )


class DisallowedColumnError(PolicyViolationError):
    """Raised when a statement references a denied column."""

    default_code = "DISALLOWED_COLUMN"

    def __init__(
        self,
        table: str,
        column: str,
        allowed_columns: list[str],
        reason: str | None = None,
    ) -> None:
        details: dict[str, Any] = {
            "table": table,
            "column": column,
            "allowed_columns": allowed_columns,
        }
        message = f"Column '{column}' on table '{table}' is not allowed."
        if reason:
            message = f"{message} {reason}"
            details["reason"] = reason
        super().__init__(message, details=details)


class LimitExceededError(PolicyViolationError):
    """Raised when a row limit exceeds a non-clampable policy maximum."""

    default_code = "LIMIT_EXCEEDED"

    def __init__(self, limit: int, max_limit: int) -> None:
        super().__init__(
            f"LIMIT {limit} exceeds max_limit={max_limit}.",
            details={"limit": limit, "max_limit": max_limit},
        )


class PolicyConfigError(PolicyViolationError):
    """Raised when a SecurityPolicy is misconfigured at construction."""

    default_code = "POLICY_CONFIG"


# ---------------------------------------------------------------------------
# Join resolution
# ---------------------------------------------------------------------------


class JoinPathError(SemQLError):
    """Raised when requested entities cannot be joined."""

    default_code = "JOIN_PATH_ERROR"


class DisconnectedError(JoinPathError):
    """Raised when some requested entities are unreachable from the others.

    Args:
        root: The entity the search was anchored on.
        unreachable: Requested entities that could not be reached.
    """

    default_code = "DISCONNECTED"

    def __init__(self, root: str, unreachable: list[str], message: str | None = None) -> None:
        super().__init__(
            message
            or f"Entities {unreachable} cannot be joined to '{root}'.",
            details={"root": root, "unreachable": unreachable},
        )
        self.root = root
        self.unreachable = unreachable


class NoPathError(DisconnectedError):
    """Raised when a requested entity declares no joins at all."""

    default_code = "NO_PATH"

    def __init__(self, root: str, unreachable: list[str]) -> None:
        super().__init__(
            root,
            unreachable,
            message=f"Entities {unreachable} have no declared joins.",
        )


# ---------------------------------------------------------------------------
# Execution errors
# ---------------------------------------------------------------------------


class DatabaseError(SemQLError):
    """A classified execution failure.

    Args:
        message: Backend message.
        error_class: Classification (see :class:`semql.execute.classifier.ErrorClass`).
        repairable: Whether a reformulated statement could succeed.
        backend_code: Backend-specific code (SQLSTATE or driver error name).
    """

    default_code = "DATABASE_ERROR"

    def __init__(
        self,
        message: str,
        error_class: str,
        repairable: bool,
        backend_code: str | None = None,
    ) -> None:
        super().__init__(
            message,
            details={
                "error_class": error_class,
                "repairable": repairable,
                "backend_code": backend_code,
            },
        )
        self.error_class = error_class
        self.repairable = repairable
        self.backend_code = backend_code


class ExecutionTimeoutError(DatabaseError):
    """Raised when a statement exceeds its execution deadline."""

    default_code = "EXECUTION_TIMEOUT"

    def __init__(self, message: str, backend_code: str | None = None) -> None:
        super().__init__(message, error_class="timeout", repairable=False, backend_code=backend_code)


# ---------------------------------------------------------------------------
# State machine errors
# ---------------------------------------------------------------------------


class PhaseError(SemQLError):
    """Raised when the phase controller rejects an operation."""

    default_code = "PHASE_ERROR"


class CapabilityError(PhaseError):
    """Raised when an operation is not callable in the current phase."""

    default_code = "CAPABILITY_UNAVAILABLE"

    def __init__(self, capability: str, phase: str, available: list[str]) -> None:
        super().__init__(
            f"'{capability}' is not available during phase '{phase}'.",
            details={"capability": capability, "phase": phase, "available": available},
        )


class RepairStateError(SemQLError):
    """Raised on an illegal repair-session state transition."""

    default_code = "REPAIR_STATE"


class CompilationError(SemQLError):
    """Raised when SQL rendering fails for an unexpected reason.

    Args:
        message: Human-readable description.
        clause: The statement clause being rendered when the error occurred.
    """

    default_code = "COMPILATION_ERROR"

    def __init__(self, message: str, clause: str | None = None) -> None:
        super().__init__(message, details={"clause": clause} if clause else None)
        self.clause = clause
