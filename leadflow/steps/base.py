"""Enrichment service protocol and the per-call metrics context."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from ..schemas.base import UsageInfo


@dataclass
class SubstepMetrics:
    """Metrics a service reports for a named part of its work.

    Attributes:
        name: Sub-step name, e.g. ``"website"`` under an enrichment step.
        input_count: Rows the sub-step looked at.
        output_count: Rows it produced results for.

    The remaining fields mirror ``StepMetrics``.
    """

    name: str
    input_count: int = 0
    output_count: int = 0
    processing_time_ms: float = 0.0
    api_calls: int = 0
    tokens_used: int = 0
    credits_used: float = 0.0
    supabase_hits: int = 0
    errors: int = 0
    api_tool: str = ""
    specific_metrics: dict[str, Any] = field(default_factory=dict)


@dataclass
class MetricsContext:
    """Mutable counters handed to every ``process_batch`` call.

    One context lives for the duration of a step attempt; services add
    to it and the analytics aggregator folds it into ``StepMetrics``.
    """

    step_id: str
    api_calls: int = 0
    tokens_used: int = 0
    credits_used: float = 0.0
    supabase_hits: int = 0
    errors: int = 0
    specific_metrics: dict[str, Any] = field(default_factory=dict)
    substeps: list[SubstepMetrics] = field(default_factory=list)

    def add_api_call(self, count: int = 1) -> None:
        self.api_calls += count

    def add_tokens(self, tokens: int) -> None:
        self.tokens_used += tokens

    def add_usage(self, usage: UsageInfo | None) -> None:
        """Count one API call plus the tokens it reported."""
        self.api_calls += 1
        if usage is not None:
            self.tokens_used += usage.total_tokens

    def add_credits(self, credits: float) -> None:
        self.credits_used += credits

    def add_supabase_hit(self, count: int = 1) -> None:
        self.supabase_hits += count

    def add_error(self, count: int = 1) -> None:
        self.errors += count

    def increment(self, name: str, amount: float = 1) -> None:
        """Bump a service-specific counter."""
        self.specific_metrics[name] = self.specific_metrics.get(name, 0) + amount

    def add_substep(self, name: str, **metrics: Any) -> SubstepMetrics:
        """Record metrics for a sub-step; repeated names are kept, not merged."""
        substep = SubstepMetrics(name=name, **metrics)
        self.substeps.append(substep)
        return substep


@runtime_checkable
class EnrichmentService(Protocol):
    """Protocol every step service must satisfy.

    ``process_batch`` receives copies of the eligible rows of one batch and
    returns one row per input row, each carrying the input's ``__row_key``.
    Raising aborts the step; the orchestrator records the error and the
    caller may retry.

    Services may also define ``validate_config(config)`` which raises
    ``ValueError`` for step configs they cannot run.
    """

    async def process_batch(
        self,
        rows: list[dict[str, Any]],
        config: dict[str, Any],
        metrics: MetricsContext,
    ) -> list[dict[str, Any]]: ...
