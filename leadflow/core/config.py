"""
Unified configuration for the leadflow pipeline engine.

Consolidates all run options into a single, documented configuration
class with sensible defaults and environment-variable overrides.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class PipelineConfig:
    """
    Configuration for pipeline runs.

    Passed to ``PipelineOrchestrator``; every field has a default so
    ``PipelineConfig()`` is a working setup.
    """

    # === Batching ===
    batch_size: int = 10
    """Rows sent to an enrichment service per call (steps may override)"""

    step_delay: float = 0.1
    """Pause between steps in ``run()`` in seconds (keeps a host UI responsive)"""

    # === Row keys ===
    strict_row_keys: bool = False
    """Reject rows without a derivable key or with duplicate keys instead of
    assigning positional / suffixed keys"""

    # === Persistence ===
    storage_key: str = "leadflow_run_state"
    """Key under which run state is saved in the storage backend"""

    persist_every_batch: bool = True
    """Save state after each batch, not only at step boundaries"""

    auto_resume: bool = True
    """Rehydrate from storage when the orchestrator is constructed"""

    # === Logging ===
    max_log_entries: int = 1000
    """Run log entries kept in memory (oldest dropped first)"""

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"""

    log_dir: Optional[str] = None
    """Directory for log files (None = no file logging)"""

    enable_progress_bar: bool = True
    """Enable tqdm progress bar display"""

    # === Validation ===
    def __post_init__(self):
        """Validate configuration values after initialization."""
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")

        if self.step_delay < 0:
            raise ValueError(f"step_delay must be non-negative, got {self.step_delay}")

        if not self.storage_key:
            raise ValueError("storage_key must be a non-empty string")

        if self.max_log_entries <= 0:
            raise ValueError(f"max_log_entries must be positive, got {self.max_log_entries}")

        if self.log_level.upper() not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {_LOG_LEVELS}, got {self.log_level}")

    @classmethod
    def for_development(cls) -> 'PipelineConfig':
        """Create configuration optimized for development."""
        return cls(
            batch_size=5,      # Small batches, quick feedback
            step_delay=0.0,
            strict_row_keys=True,
            log_level="DEBUG"
        )

    @classmethod
    def for_production(cls) -> 'PipelineConfig':
        """Create configuration optimized for production."""
        return cls(
            batch_size=20,          # Fewer API round trips
            step_delay=0.5,
            enable_progress_bar=False,
            log_level="INFO"
        )

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> 'PipelineConfig':
        """
        Build a configuration from ``LEADFLOW_*`` environment variables.

        A ``.env`` file is loaded first (existing variables win). Unset
        variables fall back to the dataclass defaults.

        Args:
            dotenv_path: Optional explicit path to a ``.env`` file

        Returns:
            PipelineConfig populated from the environment
        """
        load_dotenv(dotenv_path)

        kwargs = {}
        env = os.environ
        if env.get("LEADFLOW_BATCH_SIZE"):
            kwargs["batch_size"] = int(env["LEADFLOW_BATCH_SIZE"])
        if env.get("LEADFLOW_STEP_DELAY"):
            kwargs["step_delay"] = float(env["LEADFLOW_STEP_DELAY"])
        if env.get("LEADFLOW_STORAGE_KEY"):
            kwargs["storage_key"] = env["LEADFLOW_STORAGE_KEY"]
        if env.get("LEADFLOW_STRICT_ROW_KEYS"):
            kwargs["strict_row_keys"] = _parse_bool(env["LEADFLOW_STRICT_ROW_KEYS"])
        if env.get("LEADFLOW_AUTO_RESUME"):
            kwargs["auto_resume"] = _parse_bool(env["LEADFLOW_AUTO_RESUME"])
        if env.get("LEADFLOW_PROGRESS_BAR"):
            kwargs["enable_progress_bar"] = _parse_bool(env["LEADFLOW_PROGRESS_BAR"])
        if env.get("LEADFLOW_LOG_LEVEL"):
            kwargs["log_level"] = env["LEADFLOW_LOG_LEVEL"].upper()
        if env.get("LEADFLOW_LOG_DIR"):
            kwargs["log_dir"] = env["LEADFLOW_LOG_DIR"]
        return cls(**kwargs)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")
