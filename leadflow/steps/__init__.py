"""Enrichment services and the registry that resolves step ids to them."""

from .base import EnrichmentService, MetricsContext, SubstepMetrics
from .function import FunctionService
from .prompt import PromptAnalysisService
from .registry import ServiceEntry, ServiceRegistry, create_default_registry

__all__ = [
    "EnrichmentService",
    "MetricsContext",
    "SubstepMetrics",
    "FunctionService",
    "PromptAnalysisService",
    "ServiceEntry",
    "ServiceRegistry",
    "create_default_registry",
]
