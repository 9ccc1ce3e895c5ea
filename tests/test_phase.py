"""Unit tests for PhaseController."""

from __future__ import annotations

import pytest

from semql.errors import CapabilityError, PhaseError
from semql.phase.controller import (
    CAPABILITIES,
    Capability,
    PhaseController,
    PhaseState,
    Signal,
    TerminalReason,
)

FORWARD = [
    Signal.PLAN_FINALIZED,
    Signal.BUILD_FINALIZED,
    Signal.EXECUTION_COMPLETED,
    Signal.REPORT_FINALIZED,
]


def _at(state: PhaseState) -> PhaseController:
    controller = PhaseController(max_steps=100)
    for signal in FORWARD:
        if controller.state is state:
            break
        controller.observe(signal)
    assert controller.state is state
    return controller


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def test_starts_in_planning():
    controller = PhaseController()
    assert controller.state is PhaseState.PLANNING
    assert controller.steps == 0
    assert controller.terminal_reason is None
    assert not controller.is_terminal


def test_forward_path_completes():
    controller = PhaseController()
    expected = [PhaseState.BUILDING, PhaseState.EXECUTION, PhaseState.REPORTING, PhaseState.TERMINAL]
    for signal, state in zip(FORWARD, expected):
        assert controller.observe(signal)
        assert controller.state is state
    assert controller.terminal_reason is TerminalReason.COMPLETED
    assert [t.cause for t in controller.history] == [s.value for s in FORWARD]


def test_signal_tokens_are_accepted():
    controller = PhaseController()
    assert controller.observe("plan-finalized")
    assert controller.state is PhaseState.BUILDING


@pytest.mark.parametrize(
    ("signal", "reason"),
    [
        (Signal.NO_DATA, TerminalReason.NO_DATA),
        (Signal.CLARIFICATION_NEEDED, TerminalReason.CLARIFICATION_NEEDED),
        (Signal.ABORT, TerminalReason.ABORTED),
    ],
)
@pytest.mark.parametrize("state", [PhaseState.PLANNING, PhaseState.BUILDING, PhaseState.EXECUTION])
def test_terminating_signals_apply_from_any_phase(
    state: PhaseState, signal: Signal, reason: TerminalReason
):
    controller = _at(state)
    assert controller.observe(signal)
    assert controller.is_terminal
    assert controller.terminal_reason is reason


def test_out_of_phase_signal_is_ignored_but_counted():
    controller = PhaseController()
    assert not controller.observe(Signal.EXECUTION_COMPLETED)
    assert controller.state is PhaseState.PLANNING
    assert controller.steps == 1


def test_unknown_signal_is_ignored_but_counted():
    controller = PhaseController()
    assert not controller.observe("make-coffee")
    assert controller.state is PhaseState.PLANNING
    assert controller.steps == 1


def test_terminal_is_absorbing():
    controller = _at(PhaseState.TERMINAL)
    assert not controller.observe(Signal.ABORT)
    assert controller.terminal_reason is TerminalReason.COMPLETED
    assert controller.capabilities == frozenset()


def test_terminate():
    controller = _at(PhaseState.BUILDING)
    controller.terminate(TerminalReason.FAILED)
    assert controller.is_terminal
    assert controller.terminal_reason is TerminalReason.FAILED
    assert controller.history[-1].cause == "terminate:failed"
    controller.terminate("aborted")
    assert controller.terminal_reason is TerminalReason.FAILED


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("state", "capability"),
    [
        (PhaseState.PLANNING, Capability.SEARCH_ENTITIES),
        (PhaseState.PLANNING, Capability.PROPOSE_PLAN),
        (PhaseState.BUILDING, Capability.BUILD_STATEMENT),
        (PhaseState.BUILDING, Capability.LOOKUP_ENTITY),
        (PhaseState.EXECUTION, Capability.EXECUTE_STATEMENT),
        (PhaseState.REPORTING, Capability.SUMMARIZE_RESULTS),
    ],
)
def test_capability_available(state: PhaseState, capability: Capability):
    controller = _at(state)
    controller.require(capability)
    assert controller.steps == len(controller.history) + 1


@pytest.mark.parametrize(
    ("state", "capability"),
    [
        (PhaseState.PLANNING, Capability.EXECUTE_STATEMENT),
        (PhaseState.PLANNING, Capability.BUILD_STATEMENT),
        (PhaseState.BUILDING, Capability.SEARCH_ENTITIES),
        (PhaseState.EXECUTION, Capability.PROPOSE_PLAN),
        (PhaseState.REPORTING, Capability.EXECUTE_STATEMENT),
        (PhaseState.TERMINAL, Capability.SUMMARIZE_RESULTS),
    ],
)
def test_capability_unavailable(state: PhaseState, capability: Capability):
    controller = _at(state)
    with pytest.raises(CapabilityError) as exc_info:
        controller.require(capability)
    err = exc_info.value
    assert isinstance(err, PhaseError)
    assert err.details["phase"] == state.value
    assert err.details["available"] == sorted(c.value for c in CAPABILITIES[state])
    assert controller.state is state


def test_rejected_require_counts_a_step():
    controller = PhaseController()
    with pytest.raises(CapabilityError):
        controller.require("execute_statement")
    assert controller.steps == 1


def test_execution_and_reporting_never_overlap():
    for state, capabilities in CAPABILITIES.items():
        if Capability.EXECUTE_STATEMENT in capabilities:
            assert Capability.SUMMARIZE_RESULTS not in capabilities, state


# ---------------------------------------------------------------------------
# Step ceiling
# ---------------------------------------------------------------------------


def test_step_ceiling_terminates():
    controller = PhaseController(max_steps=3)
    controller.require(Capability.SEARCH_ENTITIES)
    controller.require(Capability.SEARCH_ENTITIES)
    assert not controller.is_terminal
    controller.require(Capability.SEARCH_ENTITIES)
    assert controller.is_terminal
    assert controller.terminal_reason is TerminalReason.STEP_LIMIT
    assert controller.history[-1].cause == "step_limit"
    with pytest.raises(CapabilityError):
        controller.require(Capability.SEARCH_ENTITIES)


def test_ignored_signals_count_toward_ceiling():
    controller = PhaseController(max_steps=2)
    controller.observe("nonsense")
    controller.observe("nonsense")
    assert controller.terminal_reason is TerminalReason.STEP_LIMIT


def test_invalid_step_ceiling():
    with pytest.raises(ValueError):
        PhaseController(max_steps=0)


def test_unknown_capability_name_raises_value_error():
    with pytest.raises(ValueError):
        PhaseController().require("drop_everything")
