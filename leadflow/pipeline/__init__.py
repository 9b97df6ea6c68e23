"""Step execution: batch scheduling and the filter engine."""

from .filters import apply_filters, evaluate_rule, rule_matches
from .scheduler import BatchScheduler

__all__ = ["BatchScheduler", "apply_filters", "evaluate_rule", "rule_matches"]
