"""Bounded execute → classify → reformulate → re-validate loop.

A :class:`RepairLoop` executes a statement, and when the failure is
repairable and budget remains, asks a :class:`Reformulator` for a revised
statement.  Every revised statement goes back through the security validator
before it is attempted; the loop never executes anything the validator has
not approved.

Session states::

    idle ──> attempting ──> succeeded
                 │  ▲
                 │  └──── retrying
                 ├──────────┴──> exhausted
                 └─────────────> exhausted

The number of executed attempts never exceeds ``max_attempts``.
"""
from __future__ import annotations

import difflib
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional, Protocol

from semql.catalog.catalog import SemanticCatalog
from semql.compile.renderer import StatementRenderer
from semql.errors import DatabaseError, PolicyViolationError, RepairStateError
from semql.execute.backend import BackendError, ExecutionBackend, ResultSet
from semql.execute.classifier import ErrorClass, ErrorClassifier
from semql.policy.engine import SecurityValidator, ValidatedStatement
from semql.schema.statement import Column, SqlStatement

logger = logging.getLogger(__name__)


class RepairState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"


_TRANSITIONS: dict[RepairState, frozenset[RepairState]] = {
    RepairState.IDLE: frozenset({RepairState.ATTEMPTING}),
    RepairState.ATTEMPTING: frozenset(
        {RepairState.SUCCEEDED, RepairState.RETRYING, RepairState.EXHAUSTED}
    ),
    RepairState.RETRYING: frozenset({RepairState.ATTEMPTING, RepairState.EXHAUSTED}),
    RepairState.SUCCEEDED: frozenset(),
    RepairState.EXHAUSTED: frozenset(),
}


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class ExecutionAttempt:
    """One executed statement.

    Attributes:
        index: 1-based attempt number.
        sql: Rendered SQL that was executed.
        params: Bound parameters.
        outcome: ``success`` or ``failure``.
        result: Result set on success.
        error: Classified error on failure.
        elapsed: Wall-clock seconds spent in the backend.
    """

    index: int
    sql: str
    params: dict[str, Any]
    outcome: AttemptOutcome
    result: ResultSet | None = None
    error: DatabaseError | None = None
    elapsed: float = 0.0


@dataclass
class RepairSession:
    """Mutable bookkeeping for one :meth:`RepairLoop.run` call.

    Attributes:
        max_attempts: Execution budget.
        state: Current :class:`RepairState`.
        attempts: Executed attempts, in order.
        last_error: Most recent classified error.
    """

    max_attempts: int
    state: RepairState = RepairState.IDLE
    attempts: list[ExecutionAttempt] = field(default_factory=list)
    last_error: DatabaseError | None = None

    @property
    def remaining(self) -> int:
        return self.max_attempts - len(self.attempts)

    def transition(self, new_state: RepairState) -> None:
        """Move to ``new_state``.

        Raises:
            RepairStateError: If the transition is not allowed, or a new
                attempt would exceed the budget.
        """
        if new_state not in _TRANSITIONS[self.state]:
            raise RepairStateError(
                f"Illegal repair transition {self.state.value} -> {new_state.value}.",
                details={"from": self.state.value, "to": new_state.value},
            )
        if new_state is RepairState.ATTEMPTING and self.remaining <= 0:
            raise RepairStateError(
                f"Attempt budget of {self.max_attempts} is spent.",
                details={"max_attempts": self.max_attempts},
            )
        logger.debug("Repair session %s -> %s", self.state.value, new_state.value)
        self.state = new_state

    def record(self, attempt: ExecutionAttempt) -> None:
        if self.state is not RepairState.ATTEMPTING:
            raise RepairStateError(
                f"Attempts can only be recorded while attempting, not {self.state.value}."
            )
        self.attempts.append(attempt)
        if attempt.error is not None:
            self.last_error = attempt.error


@dataclass(frozen=True)
class RepairOutcome:
    """Final result of a :meth:`RepairLoop.run` call.

    Attributes:
        state: ``succeeded`` or ``exhausted``.
        result: Result set when succeeded.
        attempts: Every executed attempt.
        last_error: The error that ended the loop when exhausted.
        statement: The last validated statement.
    """

    state: RepairState
    result: ResultSet | None
    attempts: tuple[ExecutionAttempt, ...]
    last_error: DatabaseError | None
    statement: ValidatedStatement

    @property
    def succeeded(self) -> bool:
        return self.state is RepairState.SUCCEEDED

    @property
    def final_sql(self) -> str | None:
        return self.attempts[-1].sql if self.attempts else None


# ---------------------------------------------------------------------------
# Reformulators
# ---------------------------------------------------------------------------


class Reformulator(Protocol):
    """Produces a revised statement after a repairable failure."""

    def reformulate(
        self, statement: SqlStatement, error: DatabaseError, session: RepairSession
    ) -> SqlStatement | None:
        """Return a revised statement, or ``None`` to give up."""
        ...


ReformulateFn = Callable[[SqlStatement, DatabaseError, RepairSession], Optional[SqlStatement]]


class CallableReformulator:
    """Adapts a plain function (e.g. a model-backed collaborator)."""

    def __init__(self, fn: ReformulateFn) -> None:
        self._fn = fn

    def reformulate(
        self, statement: SqlStatement, error: DatabaseError, session: RepairSession
    ) -> SqlStatement | None:
        return self._fn(statement, error, session)


_MISSING_COLUMN_RES = (
    re.compile(r"no such column:\s*(?P<ident>[\w.\"]+)", re.I),
    re.compile(r"column \"?(?P<ident>[\w.]+)\"? does not exist", re.I),
    re.compile(r"unknown column '(?P<ident>[\w.]+)'", re.I),
)


class CatalogReformulator:
    """Repairs missing-column failures against the catalog.

    The unknown identifier is rewritten to the closest column the catalog
    declares for the same table: a case-insensitive match first, then the
    best :func:`difflib.get_close_matches` candidate.  Anything else is left
    to other reformulators.

    Args:
        catalog: The semantic catalog.
        cutoff: Minimum :mod:`difflib` similarity ratio.
    """

    def __init__(self, catalog: SemanticCatalog, cutoff: float = 0.6) -> None:
        self._catalog = catalog
        self._cutoff = cutoff

    def reformulate(
        self, statement: SqlStatement, error: DatabaseError, session: RepairSession
    ) -> SqlStatement | None:
        if error.error_class != ErrorClass.MISSING_OBJECT.value:
            return None
        ident = self._missing_identifier(error.message)
        if ident is None:
            return None
        qualifier, _, name = ident.rpartition(".")

        replacements: dict[tuple[str, str], str] = {}
        for column in statement.iter_columns():
            if column.name != name or (qualifier and column.qualifier != qualifier):
                continue
            candidate = self._closest(column.table, name)
            if candidate is None:
                logger.info("No catalog column resembles '%s' on '%s'", name, column.table)
                return None
            replacements[(column.table, column.name)] = candidate
        if not replacements:
            return None

        def _rewrite(column: Column) -> Column:
            new_name = replacements.get((column.table, column.name))
            if new_name is None or (qualifier and column.qualifier != qualifier):
                return column
            return replace(column, name=new_name)

        logger.info("Rewriting missing column '%s' to %s", ident, sorted(replacements.values()))
        return statement.map_columns(_rewrite)

    @staticmethod
    def _missing_identifier(message: str) -> str | None:
        for pattern in _MISSING_COLUMN_RES:
            match = pattern.search(message)
            if match:
                return match.group("ident").replace('"', "")
        return None

    def _closest(self, table: str, name: str) -> str | None:
        entity = self._catalog.entity_for_table(table)
        if entity is None:
            return None
        candidates = [c for c in entity.column_names if c != name]
        for candidate in candidates:
            if candidate.lower() == name.lower():
                return candidate
        matches = difflib.get_close_matches(name, candidates, n=1, cutoff=self._cutoff)
        return matches[0] if matches else None


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------


class RepairLoop:
    """Executes a statement with bounded, re-validated repair attempts.

    Args:
        backend: Database boundary.
        validator: Security validator applied to every statement attempted.
        renderer: Renders validated statements to SQL.
        reformulator: Source of revised statements.
        classifier: Error classifier; defaults to :class:`ErrorClassifier`.
        max_attempts: Execution budget (at least 1).
        timeout: Per-attempt deadline in seconds.
    """

    def __init__(
        self,
        backend: ExecutionBackend,
        validator: SecurityValidator,
        renderer: StatementRenderer,
        reformulator: Reformulator,
        classifier: ErrorClassifier | None = None,
        max_attempts: int = 2,
        timeout: float = 30.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}.")
        self._backend = backend
        self._validator = validator
        self._renderer = renderer
        self._reformulator = reformulator
        self._classifier = classifier or ErrorClassifier()
        self._max_attempts = max_attempts
        self._timeout = timeout

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, statement: SqlStatement) -> RepairOutcome:
        """Execute ``statement``, repairing within budget.

        Returns:
            :class:`RepairOutcome` in state ``succeeded`` or ``exhausted``.

        Raises:
            PolicyViolationError: If the initial statement fails validation.
                Nothing is executed in that case.
        """
        validated = self._validator.validate(statement)
        session = RepairSession(max_attempts=self._max_attempts)

        while True:
            session.transition(RepairState.ATTEMPTING)
            attempt = self._attempt(validated, len(session.attempts) + 1)
            session.record(attempt)

            error = attempt.error
            if error is None:
                session.transition(RepairState.SUCCEEDED)
                logger.info("Attempt %d succeeded (%d rows)", attempt.index, len(attempt.result or ()))
                return self._outcome(session, attempt.result, validated)

            logger.info(
                "Attempt %d failed [%s, repairable=%s]: %s",
                attempt.index,
                error.error_class,
                error.repairable,
                error,
            )
            if not error.repairable or session.remaining <= 0:
                session.transition(RepairState.EXHAUSTED)
                return self._outcome(session, None, validated)

            session.transition(RepairState.RETRYING)
            revised = self._reformulator.reformulate(validated.statement, error, session)
            if revised is None:
                logger.info("Reformulator gave up after attempt %d", attempt.index)
                session.transition(RepairState.EXHAUSTED)
                return self._outcome(session, None, validated)

            try:
                validated = self._validator.validate(revised)
            except PolicyViolationError as exc:
                session.last_error = self._classifier.classify(exc)
                session.transition(RepairState.EXHAUSTED)
                return self._outcome(session, None, validated)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _attempt(self, validated: ValidatedStatement, index: int) -> ExecutionAttempt:
        compiled = self._renderer.render(validated)
        started = time.perf_counter()
        try:
            result = self._backend.execute(compiled.sql, compiled.params, self._timeout)
        except BackendError as exc:
            return ExecutionAttempt(
                index=index,
                sql=compiled.sql,
                params=compiled.params,
                outcome=AttemptOutcome.FAILURE,
                error=self._classifier.classify(exc),
                elapsed=time.perf_counter() - started,
            )
        return ExecutionAttempt(
            index=index,
            sql=compiled.sql,
            params=compiled.params,
            outcome=AttemptOutcome.SUCCESS,
            result=result,
            elapsed=time.perf_counter() - started,
        )

    @staticmethod
    def _outcome(
        session: RepairSession, result: ResultSet | None, validated: ValidatedStatement
    ) -> RepairOutcome:
        return RepairOutcome(
            state=session.state,
            result=result,
            attempts=tuple(session.attempts),
            last_error=session.last_error,
            statement=validated,
        )
