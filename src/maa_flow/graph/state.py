"""Typed state contract for the flow-run LangGraph workflow."""

from __future__ import annotations

from typing import Any, Literal, TypedDict

from maa_flow.models import OutcomeStatus, RunContext, RunOutcome

RunEntry = Literal["submit", "reconcile"]


class FlowState(TypedDict, total=False):
    context: RunContext
    entry: RunEntry
    # Set once the run resumes from a persisted context.
    recovered: bool
    # A job was dispatched and has not yet been observed idle.
    in_flight: bool
    # Current task was skipped by reconciliation; route straight to advance.
    skip_current: bool
    outcome: OutcomeStatus | None
    reason: str | None
    error: dict[str, Any] | None
    recognitions: dict[str, dict[str, Any]]
    run_outcome: RunOutcome


def initial_state(context: RunContext, *, entry: RunEntry = "submit") -> FlowState:
    return {
        "context": context,
        "entry": entry,
        "recovered": entry == "reconcile",
        "in_flight": False,
        "skip_current": False,
        "outcome": None,
        "reason": None,
        "error": None,
        "recognitions": {},
    }
