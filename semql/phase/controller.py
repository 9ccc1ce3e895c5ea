"""Per-run phase state machine.

A run moves forward through ``planning → building → execution → reporting →
terminal``.  Each phase exposes a fixed set of :class:`Capability` values;
calling anything else raises :class:`~semql.errors.CapabilityError`.  The
controller also enforces a hard step ceiling, so a run that never emits a
finalizing signal still terminates.

One controller is created per run.  It holds no global state.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from semql.errors import CapabilityError

logger = logging.getLogger(__name__)


class PhaseState(str, Enum):
    PLANNING = "planning"
    BUILDING = "building"
    EXECUTION = "execution"
    REPORTING = "reporting"
    TERMINAL = "terminal"


class Signal(str, Enum):
    """Completion signals emitted by the caller (or the run itself)."""

    PLAN_FINALIZED = "plan-finalized"
    BUILD_FINALIZED = "build-finalized"
    EXECUTION_COMPLETED = "execution-completed"
    REPORT_FINALIZED = "report-finalized"
    NO_DATA = "no-data"
    CLARIFICATION_NEEDED = "clarification-needed"
    ABORT = "abort"


class Capability(str, Enum):
    SEARCH_ENTITIES = "search_entities"
    LOOKUP_ENTITY = "lookup_entity"
    FIND_JOIN_PATH = "find_join_path"
    PROPOSE_PLAN = "propose_plan"
    BUILD_STATEMENT = "build_statement"
    VALIDATE_STATEMENT = "validate_statement"
    ESTIMATE_COST = "estimate_cost"
    EXECUTE_STATEMENT = "execute_statement"
    SUMMARIZE_RESULTS = "summarize_results"


class TerminalReason(str, Enum):
    COMPLETED = "completed"
    NO_DATA = "no_data"
    CLARIFICATION_NEEDED = "clarification_needed"
    ABORTED = "aborted"
    STEP_LIMIT = "step_limit"
    FAILED = "failed"


CAPABILITIES: dict[PhaseState, frozenset[Capability]] = {
    PhaseState.PLANNING: frozenset(
        {
            Capability.SEARCH_ENTITIES,
            Capability.LOOKUP_ENTITY,
            Capability.FIND_JOIN_PATH,
            Capability.PROPOSE_PLAN,
        }
    ),
    PhaseState.BUILDING: frozenset(
        {
            Capability.LOOKUP_ENTITY,
            Capability.FIND_JOIN_PATH,
            Capability.BUILD_STATEMENT,
            Capability.VALIDATE_STATEMENT,
            Capability.ESTIMATE_COST,
        }
    ),
    PhaseState.EXECUTION: frozenset(
        {
            Capability.VALIDATE_STATEMENT,
            Capability.ESTIMATE_COST,
            Capability.EXECUTE_STATEMENT,
        }
    ),
    PhaseState.REPORTING: frozenset({Capability.SUMMARIZE_RESULTS}),
    PhaseState.TERMINAL: frozenset(),
}

#: Forward transitions: signal → (required state, next state).
_ADVANCE: dict[Signal, tuple[PhaseState, PhaseState]] = {
    Signal.PLAN_FINALIZED: (PhaseState.PLANNING, PhaseState.BUILDING),
    Signal.BUILD_FINALIZED: (PhaseState.BUILDING, PhaseState.EXECUTION),
    Signal.EXECUTION_COMPLETED: (PhaseState.EXECUTION, PhaseState.REPORTING),
    Signal.REPORT_FINALIZED: (PhaseState.REPORTING, PhaseState.TERMINAL),
}

#: Signals that end the run from any non-terminal state.
_TERMINATING: dict[Signal, TerminalReason] = {
    Signal.NO_DATA: TerminalReason.NO_DATA,
    Signal.CLARIFICATION_NEEDED: TerminalReason.CLARIFICATION_NEEDED,
    Signal.ABORT: TerminalReason.ABORTED,
}


@dataclass(frozen=True)
class Transition:
    """One recorded state change.

    Attributes:
        step: Step counter at the time of the change.
        from_state: State before.
        to_state: State after.
        cause: Signal token, ``terminate:<reason>``, or ``step_limit``.
    """

    step: int
    from_state: PhaseState
    to_state: PhaseState
    cause: str


class PhaseController:
    """Gates operations by phase and enforces the step ceiling.

    Args:
        max_steps: Hard ceiling on operations plus signals.
    """

    def __init__(self, max_steps: int = 100) -> None:
        if max_steps < 1:
            raise ValueError(f"max_steps must be at least 1, got {max_steps}.")
        self._max_steps = max_steps
        self._state = PhaseState.PLANNING
        self._steps = 0
        self._terminal_reason: TerminalReason | None = None
        self._history: list[Transition] = []

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> PhaseState:
        return self._state

    @property
    def steps(self) -> int:
        return self._steps

    @property
    def max_steps(self) -> int:
        return self._max_steps

    @property
    def is_terminal(self) -> bool:
        return self._state is PhaseState.TERMINAL

    @property
    def terminal_reason(self) -> TerminalReason | None:
        return self._terminal_reason

    @property
    def capabilities(self) -> frozenset[Capability]:
        return CAPABILITIES[self._state]

    @property
    def history(self) -> list[Transition]:
        return list(self._history)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def require(self, capability: Capability | str) -> None:
        """Count one step and check ``capability`` is callable now.

        Raises:
            CapabilityError: If the capability is not available in the
                current phase (including after the step ceiling was hit).
        """
        capability = Capability(capability)
        if capability not in self.capabilities:
            available = sorted(c.value for c in self.capabilities)
            state = self._state.value
            self._count_step()
            raise CapabilityError(capability.value, state, available)
        self._count_step()

    def observe(self, signal: Signal | str) -> bool:
        """Apply a completion signal.

        Args:
            signal: A :class:`Signal` or its token (e.g. ``"plan-finalized"``).

        Returns:
            ``True`` if the signal changed the state; ``False`` if it was
            unknown or does not apply to the current phase.
        """
        try:
            signal = Signal(signal)
        except ValueError:
            logger.info("Ignoring unknown signal %r in phase %s", signal, self._state.value)
            return False

        if self.is_terminal:
            logger.info("Ignoring signal %s: run is terminal", signal.value)
            return False

        applied = False
        if signal in _TERMINATING:
            self._move(PhaseState.TERMINAL, signal.value)
            self._terminal_reason = _TERMINATING[signal]
            applied = True
        else:
            required, target = _ADVANCE[signal]
            if self._state is required:
                self._move(target, signal.value)
                if target is PhaseState.TERMINAL:
                    self._terminal_reason = TerminalReason.COMPLETED
                applied = True
            else:
                logger.info(
                    "Ignoring signal %s in phase %s (applies to %s)",
                    signal.value,
                    self._state.value,
                    required.value,
                )
        self._count_step()
        return applied

    def terminate(self, reason: TerminalReason | str) -> None:
        """Force the run to terminal (fatal errors).  No-op when terminal."""
        reason = TerminalReason(reason)
        if self.is_terminal:
            return
        self._move(PhaseState.TERMINAL, f"terminate:{reason.value}")
        self._terminal_reason = reason

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _count_step(self) -> None:
        self._steps += 1
        if self._steps >= self._max_steps and not self.is_terminal:
            logger.warning("Step ceiling of %d reached in phase %s", self._max_steps, self._state.value)
            self._move(PhaseState.TERMINAL, "step_limit")
            self._terminal_reason = TerminalReason.STEP_LIMIT

    def _move(self, target: PhaseState, cause: str) -> None:
        logger.debug("Phase %s -> %s (%s)", self._state.value, target.value, cause)
        self._history.append(Transition(self._steps, self._state, target, cause))
        self._state = target
