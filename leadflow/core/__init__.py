"""
Core functionality for the leadflow engine.
"""

from .config import PipelineConfig
from .exceptions import (
    CancellationRequested,
    ConfigurationError,
    EnrichmentError,
    ExecutionError,
    PersistenceError,
)

__all__ = [
    'PipelineConfig',
    'EnrichmentError',
    'ConfigurationError',
    'ExecutionError',
    'PersistenceError',
    'CancellationRequested',
]
