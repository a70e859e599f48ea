"""Pipeline step models — a strictly sequential chain per derivation."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class StepState(str, Enum):
    """State of a single pipeline step."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


# Terminal states have no outgoing transitions.
VALID_TRANSITIONS: dict[StepState, set[StepState]] = {
    StepState.NOT_STARTED: {StepState.RUNNING, StepState.SKIPPED},
    StepState.RUNNING: {StepState.PASSED, StepState.FAILED},
    StepState.PASSED: set(),
    StepState.FAILED: set(),
    StepState.SKIPPED: set(),
}


class StepDefinition(BaseModel):
    """A pipeline step and the step it must follow."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    display_name: str
    after: str | None = None


PIPELINE_STEPS: list[StepDefinition] = [
    StepDefinition(step_id="source_filter", display_name="Source Filter"),
    StepDefinition(step_id="resolve_lock", display_name="Lock Verification", after="source_filter"),
    StepDefinition(step_id="compile", display_name="Compile", after="resolve_lock"),
    StepDefinition(step_id="test", display_name="Test Suite Gate", after="compile"),
    StepDefinition(step_id="image", display_name="Image Assembly", after="test"),
]
