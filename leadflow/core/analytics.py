"""Run analytics aggregator.

Collects a ``MetricsContext`` per step attempt, freezes it into
``StepMetrics`` when the step completes, and rolls everything up into a
``RunSummary``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import pandas as pd

from ..data.rows import Row, count_tagged
from ..schemas.metrics import RunSummary, StepMetrics
from ..steps.base import MetricsContext, SubstepMetrics
from ..utils.logger import get_logger

logger = get_logger(__name__)

ERROR_FIELDS = ("processingError", "analysisError")


@dataclass
class _Draft:
    context: MetricsContext
    input_count: int
    api_tool: str
    elapsed_ms: float = 0.0


class RunAnalytics:
    """Per-step metrics plus run-level rollups.

    A step's draft survives failed attempts, so errors and API usage from
    an attempt that raised are still counted when the retry succeeds.
    """

    def __init__(self) -> None:
        self._drafts: dict[str, _Draft] = {}
        self._steps: dict[str, StepMetrics] = {}
        self._substeps: list[StepMetrics] = []

    # -- step lifecycle --------------------------------------------------

    def begin_step(self, step_id: str, input_count: int, api_tool: str = "") -> MetricsContext:
        """Open (or reopen, on retry) the draft for *step_id*."""
        if step_id in self._steps:
            raise ValueError(f"Metrics for step '{step_id}' are already finalized")
        draft = self._drafts.get(step_id)
        if draft is None:
            draft = _Draft(
                context=MetricsContext(step_id=step_id),
                input_count=input_count,
                api_tool=api_tool,
            )
            self._drafts[step_id] = draft
        else:
            draft.input_count = input_count
        return draft.context

    def record_failure(self, step_id: str, processing_time_ms: float) -> None:
        """Account the time of a failed attempt; the draft stays open.

        Errors are not counted here; the scheduler already recorded them
        on the draft's context.
        """
        draft = self._drafts.get(step_id)
        if draft is None:
            return
        draft.elapsed_ms += processing_time_ms

    def finalize_step(
        self,
        step_id: str,
        output_count: int,
        filtered_count: int,
        processing_time_ms: float,
    ) -> StepMetrics:
        """Freeze the draft into ``StepMetrics``; sub-steps are appended."""
        if step_id in self._steps:
            raise ValueError(f"Metrics for step '{step_id}' are already finalized")
        draft = self._drafts.pop(step_id, None)
        if draft is None:
            raise ValueError(f"Step '{step_id}' was never started")

        ctx = draft.context
        metrics = StepMetrics(
            step_id=step_id,
            input_count=draft.input_count,
            output_count=output_count,
            filtered_count=filtered_count,
            processing_time_ms=draft.elapsed_ms + processing_time_ms,
            api_calls=ctx.api_calls,
            tokens_used=ctx.tokens_used,
            credits_used=ctx.credits_used,
            supabase_hits=ctx.supabase_hits,
            errors=ctx.errors,
            api_tool=draft.api_tool,
            specific_metrics=dict(ctx.specific_metrics),
        )
        self._steps[step_id] = metrics
        for substep in ctx.substeps:
            self.record_substep(step_id, substep)

        logger.debug(
            "Step '%s' metrics: in=%d out=%d filtered=%d",
            step_id, metrics.input_count, metrics.output_count, metrics.filtered_count,
        )
        return metrics

    def record_substep(
        self,
        parent_step: str,
        substep: SubstepMetrics | str,
        **metrics: Any,
    ) -> StepMetrics:
        """Append sub-step metrics under *parent_step*.

        Entries are concatenated, never merged: reporting the same sub-step
        twice yields two entries.
        """
        if isinstance(substep, str):
            substep = SubstepMetrics(name=substep, **metrics)
        entry = StepMetrics(
            step_id=f"{parent_step}.{substep.name}",
            input_count=substep.input_count,
            output_count=substep.output_count,
            processing_time_ms=substep.processing_time_ms,
            api_calls=substep.api_calls,
            tokens_used=substep.tokens_used,
            credits_used=substep.credits_used,
            supabase_hits=substep.supabase_hits,
            errors=substep.errors,
            api_tool=substep.api_tool,
            is_substep=True,
            parent_step=parent_step,
            specific_metrics=dict(substep.specific_metrics),
        )
        self._substeps.append(entry)
        return entry

    # -- queries ---------------------------------------------------------

    def get_step_metrics(self) -> dict[str, StepMetrics]:
        """Finalized main-step metrics keyed by step key."""
        return dict(self._steps)

    def get_all_metrics(self) -> list[StepMetrics]:
        """Main steps in completion order, then sub-steps in arrival order."""
        return list(self._steps.values()) + list(self._substeps)

    def summary(self, rows: list[Row], original_count: Optional[int] = None) -> RunSummary:
        """Roll up the run.

        Args:
            rows: Current row store.
            original_count: Rows at ``initialize`` (defaults to ``len(rows)``).
        """
        original = len(rows) if original_count is None else original_count
        tagged = count_tagged(rows)
        final = len(rows) - tagged
        error_rows = sum(1 for row in rows if any(row.get(f) for f in ERROR_FIELDS))
        entries = self.get_all_metrics()

        return RunSummary(
            original_count=original,
            final_count=final,
            tagged_count=tagged,
            error_rows=error_rows,
            pass_rate=final / original if original else 0.0,
            total_processing_time_ms=sum(m.processing_time_ms for m in self._steps.values()),
            total_api_calls=sum(m.api_calls for m in entries),
            total_tokens=sum(m.tokens_used for m in entries),
            total_credits=sum(m.credits_used for m in entries),
            total_supabase_hits=sum(m.supabase_hits for m in entries),
            total_errors=sum(m.errors for m in entries),
            steps=entries,
        )

    def to_dataframe(self) -> pd.DataFrame:
        return RunSummary(steps=self.get_all_metrics()).to_dataframe()

    # -- persistence -----------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "steps": {k: m.model_dump() for k, m in self._steps.items()},
            "substeps": [m.model_dump() for m in self._substeps],
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> RunAnalytics:
        analytics = cls()
        if not data:
            return analytics
        for key, raw in (data.get("steps") or {}).items():
            analytics._steps[key] = StepMetrics.model_validate(raw)
        for raw in data.get("substeps") or []:
            analytics._substeps.append(StepMetrics.model_validate(raw))
        return analytics

    def reset(self) -> None:
        self._drafts.clear()
        self._steps.clear()
        self._substeps.clear()
