"""Analytics schemas: per-step metrics and the run-level summary."""

from typing import Any, Optional

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field


class StepMetrics(BaseModel):
    """Finalized metrics for one step (or sub-step).

    Immutable once created by ``RunAnalytics.finalize_step``.

    Attributes:
        step_id: Step key, or ``"<parent>.<name>"`` for sub-steps.
        input_count: Eligible rows sent to the service.
        output_count: Rows still untagged after the step's filter.
        filtered_count: Rows tagged by the step's filter.
        processing_time_ms: Wall time across all batches.
        api_calls: External API calls reported by the service.
        tokens_used: LLM tokens reported by the service.
        credits_used: Provider credits reported by the service.
        supabase_hits: Cache hits reported by the service.
        errors: Row or batch level errors (including failed attempts).
        api_tool: Human-readable label of the external tool.
        is_substep: True for metrics reported under a parent step.
        parent_step: Parent step key for sub-steps.
        specific_metrics: Free-form service-specific counters.
    """

    model_config = ConfigDict(frozen=True)

    step_id: str
    input_count: int = 0
    output_count: int = 0
    filtered_count: int = 0
    processing_time_ms: float = 0.0
    api_calls: int = 0
    tokens_used: int = 0
    credits_used: float = 0.0
    supabase_hits: int = 0
    errors: int = 0
    api_tool: str = ""
    is_substep: bool = False
    parent_step: Optional[str] = None
    specific_metrics: dict[str, Any] = Field(default_factory=dict)


class RunSummary(BaseModel):
    """Run-level rollup returned by ``get_complete_analytics``.

    Attributes:
        original_count: Rows at ``initialize``.
        final_count: Rows still untagged.
        tagged_count: Rows excluded by some filter.
        error_rows: Rows carrying a per-row processing error field.
        pass_rate: ``final_count / original_count`` (0.0 for an empty run).
        total_*: Sums across main steps and sub-steps.
        steps: Every metrics entry, main steps first.
    """

    model_config = ConfigDict(frozen=True)

    original_count: int = 0
    final_count: int = 0
    tagged_count: int = 0
    error_rows: int = 0
    pass_rate: float = 0.0
    total_processing_time_ms: float = 0.0
    total_api_calls: int = 0
    total_tokens: int = 0
    total_credits: float = 0.0
    total_supabase_hits: int = 0
    total_errors: int = 0
    steps: list[StepMetrics] = Field(default_factory=list)

    def to_dataframe(self) -> pd.DataFrame:
        """Per-step metrics as a DataFrame, one row per entry."""
        return pd.DataFrame(
            [m.model_dump(exclude={"specific_metrics"}) for m in self.steps],
            columns=[name for name in StepMetrics.model_fields if name != "specific_metrics"],
        )
