"""Per-run phase state machine."""
from semql.phase.controller import (
    CAPABILITIES,
    Capability,
    PhaseController,
    PhaseState,
    Signal,
    TerminalReason,
    Transition,
)

__all__ = [
    "CAPABILITIES",
    "Capability",
    "PhaseController",
    "PhaseState",
    "Signal",
    "TerminalReason",
    "Transition",
]
