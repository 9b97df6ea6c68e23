"""
leadflow - lead enrichment pipeline engine

Runs an ordered list of enrichment steps over contact/company rows in
sequential batches, tags rows out between steps with declarative filter
rules, tracks per-step analytics, and persists run state so a run can be
resumed or inspected.
"""

from .core import (
    CancellationRequested,
    ConfigurationError,
    EnrichmentError,
    ExecutionError,
    PersistenceError,
    PipelineConfig,
)
from .core.analytics import RunAnalytics
from .core.hooks import EventChannel, RunCallbacks
from .core.orchestrator import PipelineOrchestrator, create_orchestrator
from .core.persistence import InMemoryStorage, JsonFileStorage, StatePersistenceAdapter
from .data import export_csv, load_csv
from .pipeline import BatchScheduler, apply_filters
from .schemas import FilterRule, FilterSpec, RunState, RunStatus, StepDefinition, StepState
from .steps import FunctionService, PromptAnalysisService, ServiceRegistry

__version__ = "0.1.0"

__all__ = [
    'PipelineOrchestrator',
    'create_orchestrator',
    'PipelineConfig',
    'RunCallbacks',
    'EventChannel',
    'RunAnalytics',
    'BatchScheduler',
    'apply_filters',
    'ServiceRegistry',
    'FunctionService',
    'PromptAnalysisService',
    'StepDefinition',
    'FilterSpec',
    'FilterRule',
    'RunState',
    'RunStatus',
    'StepState',
    'InMemoryStorage',
    'JsonFileStorage',
    'StatePersistenceAdapter',
    'load_csv',
    'export_csv',
    'EnrichmentError',
    'ConfigurationError',
    'ExecutionError',
    'PersistenceError',
    'CancellationRequested',
]
