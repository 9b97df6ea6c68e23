"""Run state schemas.

``RunState`` is the read-only snapshot the orchestrator hands to
consumers (callers, event subscribers, persistence).
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .metrics import StepMetrics


class RunStatus(str, Enum):
    """Overall run status."""

    IDLE = "idle"
    PROCESSING = "processing"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    COMPLETE = "complete"
    ERROR = "error"


class StepState(str, Enum):
    """Status of a single step."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


class StepStatus(BaseModel):
    """Status entry for one step, with a human-readable message."""

    model_config = ConfigDict(frozen=True)

    status: StepState = StepState.PENDING
    message: str = ""


class ErrorInfo(BaseModel):
    """The error that halted a run.

    Attributes:
        step_id: Key of the step that failed.
        message: Human-readable cause.
        error_type: Exception class name of the underlying failure.
        batch_index: Batch that raised, when known.
        timestamp: ISO-8601 time the error was recorded.
    """

    model_config = ConfigDict(frozen=True)

    step_id: str
    message: str
    error_type: str = ""
    batch_index: Optional[int] = None
    timestamp: str = ""


class LogEntry(BaseModel):
    """One run log line."""

    model_config = ConfigDict(frozen=True)

    timestamp: str
    message: str


class RunState(BaseModel):
    """Snapshot of a run.

    Attributes:
        current_step_index: Cursor into the step list; only moves forward.
        status: Overall run status.
        step_status: Step key -> status entry.
        analytics: Step key -> finalized metrics for completed steps.
        processed_rows: Every row of the run, tagged or not.
        error: Pending error, if the run halted on one.
        total_steps: Number of steps in the pipeline.
    """

    model_config = ConfigDict(frozen=True)

    current_step_index: int = Field(default=0, ge=0)
    status: RunStatus = RunStatus.IDLE
    step_status: dict[str, StepStatus] = Field(default_factory=dict)
    analytics: dict[str, StepMetrics] = Field(default_factory=dict)
    processed_rows: list[dict[str, Any]] = Field(default_factory=list)
    error: Optional[ErrorInfo] = None
    total_steps: int = 0

    @property
    def processing_complete(self) -> bool:
        """True iff every step has run and no error is pending."""
        return (
            self.total_steps > 0
            and self.current_step_index == self.total_steps
            and self.error is None
        )
