"""Pydantic schemas for the leadflow engine.

- StepDefinition / FilterSpec / FilterRule: what a pipeline runs
- StepMetrics / RunSummary: what a run measured
- RunState and friends: where a run stands

Example:
    from leadflow.schemas import StepDefinition

    step = StepDefinition(
        id="promptAnalysis",
        config={"prompt": "Is <company> a SaaS business? Answer yes or no."},
        filter={
            "rules": [
                {"field": "promptAnalysis", "operator": "equals",
                 "value": "no", "action": "eliminate"},
            ],
            "tagPrefix": "not_saas",
        },
    )
"""

from .base import UsageInfo
from .filters import FilterRule, FilterSpec
from .metrics import RunSummary, StepMetrics
from .state import ErrorInfo, LogEntry, RunState, RunStatus, StepState, StepStatus
from .steps import StepDefinition

__all__ = [
    "UsageInfo",
    "FilterRule",
    "FilterSpec",
    "StepDefinition",
    "StepMetrics",
    "RunSummary",
    "RunState",
    "RunStatus",
    "StepState",
    "StepStatus",
    "ErrorInfo",
    "LogEntry",
]
