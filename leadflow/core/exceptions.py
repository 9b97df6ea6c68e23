"""
Custom exceptions for the leadflow pipeline engine.

Provides specific exception types for the different failure modes of a
run, with context (step, batch, row) folded into the error message.
"""

from typing import Optional


class EnrichmentError(Exception):
    """Base exception for all pipeline-related errors."""

    def __init__(
        self,
        message: str,
        step_id: Optional[str] = None,
        batch_index: Optional[int] = None,
        row_key: Optional[str] = None,
    ):
        self.message = message
        self.step_id = step_id
        self.batch_index = batch_index
        self.row_key = row_key

        # Build descriptive error message
        error_parts = [message]
        if step_id is not None:
            error_parts.append(f"Step: {step_id}")
        if batch_index is not None:
            error_parts.append(f"Batch: {batch_index}")
        if row_key is not None:
            error_parts.append(f"Row: {row_key}")

        super().__init__(" | ".join(error_parts))


class ConfigurationError(EnrichmentError):
    """Raised when a pipeline or step definition is invalid."""
    pass


class ExecutionError(EnrichmentError):
    """Raised when an enrichment service call fails for a batch.

    Recoverable: the orchestrator records it and the caller may retry
    the same step.
    """
    pass


class PersistenceError(EnrichmentError):
    """Raised when the storage backend fails. Logged, never fatal to a run."""

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(message if key is None else f"{message} (key={key})")


class CancellationRequested(EnrichmentError):
    """Controlled early exit after a cooperative ``cancel()``.

    Raised by the batch scheduler once the in-flight batch has been merged.
    """

    def __init__(
        self,
        message: str = "Cancellation requested",
        step_id: Optional[str] = None,
        completed_batches: int = 0,
    ):
        self.completed_batches = completed_batches
        super().__init__(message, step_id=step_id)
