"""One analysis run: phase-gated orchestration of the whole pipeline.

``AnalysisRun`` owns a :class:`~semql.phase.controller.PhaseController` and
every intermediate artefact of a single question (plan, join path,
validated statement, estimate, repair outcome).  Runs share only the
read-only catalog, policy, and backend, so any number of runs may proceed
concurrently on separate threads.

Typical flow::

    run = AnalysisRun(catalog, policy, SQLiteBackend("warehouse.db"))
    run.search_entities("revenue by industry")
    run.propose_plan(plan_json)
    run.finalize_plan()
    run.build()
    run.finalize_build()
    run.execute()
    report = run.report()
    run.finalize_report()
"""
from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from semql.catalog.catalog import EntitySummary, SemanticCatalog
from semql.catalog.model import Entity
from semql.compile.builder import StatementBuilder
from semql.compile.registry import CompilerFactory
from semql.compile.renderer import StatementRenderer
from semql.config import EngineSettings, get_settings
from semql.errors import DatabaseError, PhaseError, PolicyViolationError, SemQLError
from semql.estimate.estimator import CostEstimate, CostEstimator
from semql.execute.backend import ExecutionBackend
from semql.execute.repair import (
    CatalogReformulator,
    ExecutionAttempt,
    Reformulator,
    RepairLoop,
    RepairOutcome,
)
from semql.joins.path_finder import JoinPath, JoinPathFinder
from semql.phase.controller import (
    Capability,
    PhaseController,
    PhaseState,
    Signal,
    TerminalReason,
)
from semql.policy.engine import SecurityPolicy, SecurityValidator, ValidatedStatement
from semql.schema.query_plan import QueryPlan, parse_plan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunReport:
    """Final (or current) summary of a run.

    Attributes:
        phase: Current phase.
        terminal_reason: Why the run ended, if it has.
        error_class: Classification of the last error (``DatabaseError``
            class, or the error code for plan / policy errors).
        error_message: Message of the last error.
        plan: The accepted plan.
        sql: Last executed (or, before execution, rendered) SQL.
        estimate: Advisory cost estimate.
        columns: Result column names.
        rows: Result rows.
        attempts: Execution attempts.
        steps: Steps counted by the phase controller.
    """

    phase: PhaseState
    terminal_reason: TerminalReason | None
    error_class: str | None
    error_message: str | None
    plan: QueryPlan | None
    sql: str | None
    estimate: CostEstimate | None
    columns: tuple[str, ...]
    rows: tuple[tuple[Any, ...], ...]
    attempts: tuple[ExecutionAttempt, ...]
    steps: int


class AnalysisRun:
    """Drives one question through planning, building, execution, reporting.

    Args:
        catalog: Shared semantic catalog.
        policy: Shared security policy.
        backend: Database boundary.
        settings: Engine settings; defaults to :func:`get_settings`.
        reformulator: Repair collaborator; defaults to
            :class:`CatalogReformulator`.
    """

    def __init__(
        self,
        catalog: SemanticCatalog,
        policy: SecurityPolicy,
        backend: ExecutionBackend,
        settings: EngineSettings | None = None,
        reformulator: Reformulator | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._catalog = catalog
        self._controller = PhaseController(max_steps=self._settings.max_steps)
        self._finder = JoinPathFinder(catalog, self._settings.tie_break)
        self._builder = StatementBuilder(catalog)
        self._validator = SecurityValidator(policy)
        self._estimator = CostEstimator(catalog)
        self._renderer = StatementRenderer(CompilerFactory.create(self._settings.dialect))
        self._repair = RepairLoop(
            backend,
            self._validator,
            self._renderer,
            reformulator or CatalogReformulator(catalog),
            max_attempts=self._settings.max_attempts,
            timeout=self._settings.statement_timeout_seconds,
        )

        self._plan: QueryPlan | None = None
        self._path: JoinPath | None = None
        self._validated: ValidatedStatement | None = None
        self._estimate: CostEstimate | None = None
        self._outcome: RepairOutcome | None = None
        self._last_error: SemQLError | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def controller(self) -> PhaseController:
        return self._controller

    @property
    def phase(self) -> PhaseState:
        return self._controller.state

    @property
    def capabilities(self) -> frozenset[Capability]:
        return self._controller.capabilities

    @property
    def plan(self) -> QueryPlan | None:
        return self._plan

    @property
    def path(self) -> JoinPath | None:
        return self._path

    @property
    def statement(self) -> ValidatedStatement | None:
        return self._validated

    @property
    def estimate(self) -> CostEstimate | None:
        return self._estimate

    @property
    def outcome(self) -> RepairOutcome | None:
        return self._outcome

    @property
    def last_error(self) -> SemQLError | None:
        return self._last_error

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def search_entities(self, text: str, limit: int = 10) -> list[EntitySummary]:
        self._controller.require(Capability.SEARCH_ENTITIES)
        return self._catalog.search_entities(text, limit=limit)

    def lookup_entity(self, name: str) -> Entity:
        self._controller.require(Capability.LOOKUP_ENTITY)
        with self._recording():
            return self._catalog.lookup_entity(name)

    def find_join_path(self, entities: list[str]) -> JoinPath:
        self._controller.require(Capability.FIND_JOIN_PATH)
        with self._recording():
            return self._finder.find_path(entities)

    def propose_plan(self, raw: str | bytes | Mapping[str, Any] | QueryPlan) -> QueryPlan:
        """Parse a plan and resolve its join path.

        A rejected plan leaves the previously accepted plan (if any) in
        place; the planner may propose again.
        """
        self._controller.require(Capability.PROPOSE_PLAN)
        with self._recording():
            plan = parse_plan(raw)
            path = self._finder.find_path(plan.entities, plan.entity_mentions())
        self._plan, self._path = plan, path
        self._last_error = None
        logger.info("Plan accepted over %s (root %s)", list(plan.entities), path.root)
        return plan

    def finalize_plan(self) -> bool:
        if self._plan is None and self.phase is PhaseState.PLANNING:
            raise PhaseError("No plan has been accepted; propose a plan first.")
        return self._controller.observe(Signal.PLAN_FINALIZED)

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def build(self) -> ValidatedStatement:
        """Build, validate, and estimate the accepted plan.

        Raises:
            PlanError: If the plan cannot be built.
            PolicyViolationError: If the statement breaches policy.  The run
                is terminated with reason ``failed``.
        """
        self._controller.require(Capability.BUILD_STATEMENT)
        if self._plan is None or self._path is None:
            raise PhaseError("No plan has been accepted; nothing to build.")
        with self._recording():
            statement = self._builder.build(self._plan, self._path)
            validated = self._validator.validate(statement)
        estimate = self._estimator.estimate(validated.statement)
        if estimate.exceeds(self._settings.warn_row_threshold):
            logger.warning(
                "Estimated %d output rows exceeds threshold of %d",
                estimate.estimated_rows,
                self._settings.warn_row_threshold,
            )
        for note in validated.notes:
            logger.info("Validation note: %s", note)
        self._validated, self._estimate = validated, estimate
        self._last_error = None
        return validated

    def finalize_build(self) -> bool:
        if self._validated is None and self.phase is PhaseState.BUILDING:
            raise PhaseError("No statement has been built; call build() first.")
        return self._controller.observe(Signal.BUILD_FINALIZED)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self) -> RepairOutcome:
        """Run the repair loop on the built statement.

        On success the run signals ``execution-completed`` (or ``no-data``
        for an empty result).  When the loop is exhausted the run is
        terminated with reason ``failed``.
        """
        self._controller.require(Capability.EXECUTE_STATEMENT)
        if self._validated is None:
            raise PhaseError("No statement has been built; nothing to execute.")
        with self._recording():
            outcome = self._repair.run(self._validated.statement)
        self._outcome = outcome

        if outcome.succeeded:
            self._validated = outcome.statement
            result = outcome.result
            if result is None or result.is_empty:
                self._controller.observe(Signal.NO_DATA)
            else:
                self._controller.observe(Signal.EXECUTION_COMPLETED)
        else:
            self._last_error = outcome.last_error
            logger.warning(
                "Execution exhausted after %d attempts: %s", len(outcome.attempts), outcome.last_error
            )
            self._controller.terminate(TerminalReason.FAILED)
        return outcome

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def report(self) -> RunReport:
        """Summarize the run.

        Available while reporting (counts a step) and after the run has
        ended (read-only, no step).
        """
        if not self._controller.is_terminal:
            self._controller.require(Capability.SUMMARIZE_RESULTS)

        result = self._outcome.result if self._outcome is not None else None
        sql = self._outcome.final_sql if self._outcome is not None else None
        if sql is None and self._validated is not None:
            sql = self._renderer.render(self._validated).sql

        error = self._last_error
        if isinstance(error, DatabaseError):
            error_class: str | None = error.error_class
        elif error is not None:
            error_class = error.code.lower()
        else:
            error_class = None

        return RunReport(
            phase=self.phase,
            terminal_reason=self._controller.terminal_reason,
            error_class=error_class,
            error_message=str(error) if error is not None else None,
            plan=self._plan,
            sql=sql,
            estimate=self._estimate,
            columns=tuple(result.column_names) if result is not None else (),
            rows=result.rows if result is not None else (),
            attempts=self._outcome.attempts if self._outcome is not None else (),
            steps=self._controller.steps,
        )

    def finalize_report(self) -> bool:
        return self._controller.observe(Signal.REPORT_FINALIZED)

    def signal(self, token: Signal | str) -> bool:
        """Forward a caller-emitted signal (e.g. ``"clarification-needed"``)."""
        return self._controller.observe(token)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _recording(self) -> Iterator[None]:
        """Record SemQL errors as ``last_error``; policy violations end the run."""
        try:
            yield
        except PolicyViolationError as exc:
            self._last_error = exc
            self._controller.terminate(TerminalReason.FAILED)
            raise
        except SemQLError as exc:
            self._last_error = exc
            raise
