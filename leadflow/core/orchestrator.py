"""PipelineOrchestrator - owns run progress for one pipeline run.

The orchestrator holds the row store, the step cursor and the run status.
Each ``process_current_step()`` call runs exactly one step: batch
scheduling, then the step's filter, then metrics. Callers drive it with a
loop (``run()`` is that loop) and may ``cancel()`` cooperatively.
"""

from __future__ import annotations

import asyncio
import copy
import functools
import time as _time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence, Union

import pandas as pd
from pydantic import ValidationError

from ..data.rows import Row, count_tagged, eligible_rows, prepare_rows
from ..pipeline.filters import apply_filters
from ..pipeline.scheduler import BatchScheduler
from ..schemas.metrics import RunSummary, StepMetrics
from ..schemas.state import ErrorInfo, LogEntry, RunState, RunStatus, StepState, StepStatus
from ..schemas.steps import StepDefinition
from ..steps.base import EnrichmentService
from ..steps.registry import ServiceRegistry, create_default_registry
from ..utils.logger import get_logger
from .analytics import RunAnalytics
from .config import PipelineConfig
from .exceptions import CancellationRequested, ConfigurationError, EnrichmentError, ExecutionError
from .hooks import (
    DEFAULT_CHANNEL_SIZE,
    EventBus,
    EventChannel,
    LogEvent,
    ProgressEvent,
    RunCallbacks,
    RunStateEvent,
    StatusEvent,
    _fire_callback,
)
from .persistence import StatePersistenceAdapter, Storage

logger = get_logger(__name__)

StepInput = Union[StepDefinition, Mapping[str, Any]]

_BUSY = (RunStatus.PROCESSING, RunStatus.CANCELLING)
_NO_OP = (RunStatus.PROCESSING, RunStatus.CANCELLING, RunStatus.CANCELLED, RunStatus.COMPLETE)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PipelineOrchestrator:
    """Runs an ordered list of steps over a row store.

    Collaborators are injected: the service registry resolves step ids,
    the optional storage persists state after every change, and callbacks
    receive logs, progress and step statuses. With ``auto_resume`` on, a
    run saved in storage is rehydrated at construction.
    """

    def __init__(
        self,
        services: ServiceRegistry,
        storage: Optional[Storage] = None,
        callbacks: Optional[RunCallbacks] = None,
        config: Optional[PipelineConfig] = None,
        scheduler: Optional[BatchScheduler] = None,
    ):
        self.config = config or PipelineConfig()
        self.services = services
        self.callbacks = callbacks or RunCallbacks()
        self._persistence = (
            StatePersistenceAdapter(storage, self.config.storage_key)
            if storage is not None
            else None
        )
        self._scheduler = scheduler or BatchScheduler(show_progress=self.config.enable_progress_bar)
        self._events = EventBus()
        self._analytics = RunAnalytics()
        self._logs: deque[LogEntry] = deque(maxlen=self.config.max_log_entries)

        self._steps: list[StepDefinition] = []
        self._rows: list[Row] = []
        self._original_count = 0
        self._index = 0
        self._status = RunStatus.IDLE
        self._step_status: dict[str, StepStatus] = {}
        self._error: Optional[ErrorInfo] = None
        self._initialized = False
        self._cancel_requested = False
        self._retry_snapshot: Optional[tuple[str, list[Row]]] = None

        if self._persistence is not None and self.config.auto_resume:
            self._rehydrate()

    # -- public API ------------------------------------------------------

    @property
    def status(self) -> RunStatus:
        return self._status

    @property
    def steps(self) -> list[StepDefinition]:
        return list(self._steps)

    @property
    def processing_complete(self) -> bool:
        """True iff every step has run and no error is pending."""
        return bool(self._steps) and self._index == len(self._steps) and self._error is None

    def initialize(
        self,
        rows: Union[Sequence[Row], pd.DataFrame],
        steps: Sequence[StepInput],
    ) -> None:
        """Start a new run over *rows* with *steps*.

        The rows are deep-copied; each gets ``relevanceTag`` (default ``""``)
        and a stable ``__row_key``.

        Raises:
            ConfigurationError: No steps, a step without an id, an invalid
                step or filter, a duplicate step key, an unregistered
                service, a config the service rejects, or a step currently
                processing.
        """
        if self._status in _BUSY:
            raise ConfigurationError("Cannot initialize while a step is processing")
        if not steps:
            raise ConfigurationError("Pipeline has no steps")

        parsed = [self._parse_step(step, position) for position, step in enumerate(steps)]

        seen: set[str] = set()
        for step in parsed:
            if step.key in seen:
                raise ConfigurationError(
                    "Duplicate step key; give repeated services a distinct name",
                    step_id=step.key,
                )
            seen.add(step.key)
            self._validate_service_config(step)

        if isinstance(rows, pd.DataFrame):
            rows = rows.to_dict(orient="records")
        row_store = prepare_rows(copy.deepcopy(list(rows)), strict=self.config.strict_row_keys)

        self._steps = parsed
        self._rows = row_store
        self._original_count = len(row_store)
        self._index = 0
        self._status = RunStatus.IDLE
        self._step_status = {step.key: StepStatus() for step in parsed}
        self._error = None
        self._cancel_requested = False
        self._retry_snapshot = None
        self._analytics.reset()
        self._logs.clear()
        self._initialized = True

        self._log(f"Pipeline initialized: {len(row_store)} rows, {len(parsed)} steps")
        self._emit_status()
        self._emit_run_state()
        self._persist()

    async def process_current_step(self) -> bool:
        """Run the step at the cursor.

        Returns:
            True if the step completed and more steps remain. False when
            the call was a no-op (busy, cancelled or complete), when the
            run just completed, halted on an error (retry by calling again)
            or was cancelled.
        """
        if self._status in _NO_OP:
            return False
        if not self._initialized:
            raise ConfigurationError("initialize() must be called before processing")

        if self._index >= len(self._steps):
            self._status = RunStatus.COMPLETE
            self._finish_run()
            return False

        step = self._steps[self._index]
        key = step.key
        service = self.services.get(step.id)

        # Claim the run before the first await; concurrent callers see PROCESSING.
        self._status = RunStatus.PROCESSING
        self._cancel_requested = False
        retrying = self._error is not None
        self._error = None

        if self._retry_snapshot is not None and self._retry_snapshot[0] == key:
            self._rows = copy.deepcopy(self._retry_snapshot[1])
        else:
            self._retry_snapshot = (key, copy.deepcopy(self._rows))

        input_count = len(eligible_rows(self._rows))
        tagged_before = count_tagged(self._rows)
        metrics = self._analytics.begin_step(key, input_count, self.services.api_tool_for(step.id))
        batch_size = step.batch_size or self.config.batch_size

        self._set_step_status(key, StepState.PROCESSING, "Processing")
        self._emit_run_state()
        self._log(
            f"{'Retrying' if retrying else 'Starting'} step {self._index + 1}/{len(self._steps)}: "
            f"{key} ({input_count} eligible rows)"
        )
        _fire_callback(self.callbacks.progress_callback, 0, f"Starting {key}")
        self._persist()

        started = _time.monotonic()
        try:
            await self._scheduler.run_step(
                step,
                service,
                self._rows,
                batch_size,
                on_batch_progress=functools.partial(self._on_batch_progress, key),
                metrics=metrics,
                should_cancel=lambda: self._cancel_requested,
            )
            tagged_by_service = count_tagged(self._rows)
            apply_filters(self._rows, step.filter)
        except asyncio.CancelledError:
            # In-flight batch is lost; completed batches are kept.
            self._analytics.record_failure(key, _elapsed_ms(started))
            self._retry_snapshot = None
            self._status = RunStatus.CANCELLED
            self._set_step_status(key, StepState.CANCELLED, "Step task was cancelled")
            self._log(f"Step {key} was interrupted by task cancellation")
            self._finish_run()
            raise
        except CancellationRequested as exc:
            self._analytics.record_failure(key, _elapsed_ms(started))
            self._retry_snapshot = None
            self._status = RunStatus.CANCELLED
            self._set_step_status(
                key, StepState.CANCELLED,
                f"Cancelled after {exc.completed_batches} completed batches",
            )
            self._log(f"Pipeline cancelled during step {key}; completed batches were kept")
            self._finish_run()
            return False
        except ExecutionError as exc:
            self._record_error(key, exc, started)
            return False
        except EnrichmentError as exc:
            self._record_error(key, ExecutionError(exc.message, step_id=key), started)
            return False
        except Exception as exc:
            self._record_error(key, ExecutionError(f"Unexpected error: {exc}", step_id=key), started)
            raise

        tagged_after = count_tagged(self._rows)
        output_count = len(self._rows) - tagged_after
        step_metrics = self._analytics.finalize_step(
            key,
            output_count=output_count,
            filtered_count=tagged_after - tagged_before,
            processing_time_ms=_elapsed_ms(started),
        )
        self._retry_snapshot = None
        self._set_step_status(
            key, StepState.COMPLETE,
            f"{output_count} of {input_count} rows remain",
        )
        self._index += 1
        self._log(
            f"Completed {key}: {step_metrics.filtered_count} rows tagged "
            f"({tagged_after - tagged_by_service} by filter), {output_count} remain, "
            f"{step_metrics.processing_time_ms:.0f}ms"
        )

        if self._index >= len(self._steps):
            self._status = RunStatus.COMPLETE
            self._log("Pipeline complete")
            _fire_callback(self.callbacks.progress_callback, 100, "Pipeline complete")
            self._finish_run()
            return False

        if self._cancel_requested:
            next_key = self._steps[self._index].key
            self._status = RunStatus.CANCELLED
            self._set_step_status(next_key, StepState.CANCELLED, "Cancelled before start")
            self._log(f"Pipeline cancelled after step {key}")
            self._finish_run()
            return False

        self._status = RunStatus.IDLE
        self._emit_run_state()
        self._persist()
        return True

    def cancel(self) -> bool:
        """Request cooperative cancellation of the step in flight.

        Only effective while a step is processing. The batch being
        processed finishes and is kept; no further batches or steps run.

        Returns:
            True if the request was registered.
        """
        if self._status != RunStatus.PROCESSING:
            return False
        self._cancel_requested = True
        self._status = RunStatus.CANCELLING
        self._log("Cancellation requested; finishing the current batch")
        self._emit_run_state()
        self._persist()
        return True

    def get_state(self) -> RunState:
        """Read-only snapshot; mutating it does not affect the run."""
        return RunState(
            current_step_index=self._index,
            status=self._status,
            step_status=dict(self._step_status),
            analytics=self._analytics.get_step_metrics(),
            processed_rows=copy.deepcopy(self._rows),
            error=self._error,
            total_steps=len(self._steps),
        )

    def get_logs(self) -> list[LogEntry]:
        return list(self._logs)

    def get_complete_analytics(self) -> RunSummary:
        return self._analytics.summary(self._rows, self._original_count)

    def get_all_metrics(self) -> list[StepMetrics]:
        return self._analytics.get_all_metrics()

    def subscribe(self, max_events: int = DEFAULT_CHANNEL_SIZE) -> EventChannel:
        """Open an event channel; it is closed when the run completes,
        is cancelled or is reset. A slow reader keeps the newest
        *max_events* events."""
        return self._events.subscribe(max_events)

    def unsubscribe(self, channel: EventChannel) -> None:
        self._events.unsubscribe(channel)

    async def run(self) -> RunState:
        """Process steps until the run completes, errors or is cancelled."""
        while await self.process_current_step():
            await asyncio.sleep(self.config.step_delay)
        return self.get_state()

    def run_sync(self) -> RunState:
        """Synchronous entry point for scripts.

        Raises ``RuntimeError`` if called from inside a running event loop
        (use ``await orchestrator.run()`` in that case).
        """
        try:
            asyncio.get_running_loop()
            raise RuntimeError(
                "PipelineOrchestrator.run_sync() cannot be called from inside an async context. "
                "Use 'await orchestrator.run()' instead."
            )
        except RuntimeError as exc:
            if "orchestrator.run()" in str(exc):
                raise
        return asyncio.run(self.run())

    def reset(self) -> None:
        """Forget the current run and its persisted state."""
        if self._status in _BUSY:
            raise ConfigurationError("Cannot reset while a step is processing")
        self._steps = []
        self._rows = []
        self._original_count = 0
        self._index = 0
        self._status = RunStatus.IDLE
        self._step_status = {}
        self._error = None
        self._initialized = False
        self._cancel_requested = False
        self._retry_snapshot = None
        self._analytics.reset()
        self._logs.clear()
        self._events.close_all()
        if self._persistence is not None:
            self._persistence.clear()
        logger.info("Pipeline state reset")

    # -- internals -------------------------------------------------------

    def _parse_step(self, step: StepInput, position: int) -> StepDefinition:
        if isinstance(step, StepDefinition):
            return step
        if not isinstance(step, Mapping):
            raise ConfigurationError(
                f"Step #{position + 1} must be a StepDefinition or mapping, "
                f"got {type(step).__name__}"
            )
        if not step.get("id"):
            raise ConfigurationError(f"Step #{position + 1} is missing an id")
        try:
            return StepDefinition.model_validate(dict(step))
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid step definition: {exc}", step_id=str(step.get("id"))
            ) from exc

    def _validate_service_config(self, step: StepDefinition) -> None:
        service: EnrichmentService = self.services.get(step.id)
        validate = getattr(service, "validate_config", None)
        if not callable(validate):
            return
        try:
            validate(dict(step.config))
        except (ValueError, TypeError, ConfigurationError) as exc:
            raise ConfigurationError(f"Invalid step config: {exc}", step_id=step.key) from exc

    def _record_error(self, key: str, exc: ExecutionError, started: float) -> None:
        self._analytics.record_failure(key, _elapsed_ms(started))
        cause = exc.__cause__ or exc
        self._status = RunStatus.ERROR
        self._error = ErrorInfo(
            step_id=key,
            message=exc.message,
            error_type=type(cause).__name__,
            batch_index=exc.batch_index,
            timestamp=_now(),
        )
        self._set_step_status(key, StepState.ERROR, exc.message)
        self._log(f"Error in step {key}: {exc.message}")
        logger.warning("Step '%s' failed", key, exc_info=exc)
        self._emit_run_state()
        self._persist()

    def _on_batch_progress(self, key: str, percent: int, processed: int, total: int) -> None:
        message = f"{key}: processed {processed}/{total} rows"
        self._log(message)
        _fire_callback(self.callbacks.progress_callback, percent, message)
        self._events.publish(ProgressEvent(step_id=key, percent=percent, message=message))
        if self.config.persist_every_batch:
            self._persist()

    def _log(self, message: str) -> None:
        entry = LogEntry(timestamp=_now(), message=message)
        self._logs.append(entry)
        logger.info(message)
        _fire_callback(self.callbacks.log_callback, entry)
        self._events.publish(LogEvent(entry=entry))

    def _set_step_status(self, key: str, state: StepState, message: str = "") -> None:
        self._step_status[key] = StepStatus(status=state, message=message)
        self._emit_status()

    def _emit_status(self) -> None:
        snapshot = dict(self._step_status)
        _fire_callback(self.callbacks.status_callback, snapshot)
        self._events.publish(StatusEvent(step_status=snapshot))

    def _emit_run_state(self) -> None:
        self._events.publish(RunStateEvent(
            status=self._status,
            current_step_index=self._index,
            total_steps=len(self._steps),
        ))

    def _finish_run(self) -> None:
        self._emit_run_state()
        self._persist()
        self._events.close_all()

    def _persist(self) -> None:
        if self._persistence is None:
            return
        self._persistence.save(self.get_state(), self._steps, self._analytics.to_dict())
        self._persistence.save_logs(list(self._logs))

    def _rehydrate(self) -> None:
        loaded = self._persistence.load()
        if loaded is None or not loaded['steps']:
            return

        state: RunState = loaded['state']
        self._steps = loaded['steps']
        self._rows = prepare_rows(list(state.processed_rows))
        self._original_count = len(self._rows)
        self._index = min(state.current_step_index, len(self._steps))
        self._status = state.status
        self._step_status = dict(state.step_status)
        for step in self._steps:
            self._step_status.setdefault(step.key, StepStatus())
        self._error = state.error
        self._analytics = RunAnalytics.from_dict(loaded['analytics'])
        self._logs.extend(loaded['logs'])
        self._initialized = True

        if self._status in _BUSY:
            # Interrupted mid-step: rows from finished batches are kept and
            # the step runs again over whatever is still eligible.
            self._status = RunStatus.IDLE
            if self._index < len(self._steps):
                key = self._steps[self._index].key
                self._step_status[key] = StepStatus(
                    status=StepState.PENDING, message="Interrupted; will re-run"
                )
            self._log("Resumed an interrupted run")
        else:
            logger.info("Rehydrated run at step %d (%s)", self._index, self._status.value)


def _elapsed_ms(started: float) -> float:
    return (_time.monotonic() - started) * 1000.0


def create_orchestrator(
    services: Union[ServiceRegistry, Mapping[str, EnrichmentService], None] = None,
    storage: Optional[Storage] = None,
    callbacks: Optional[RunCallbacks] = None,
    config: Optional[PipelineConfig] = None,
    llm_client: Any = None,
) -> PipelineOrchestrator:
    """Build an orchestrator with sensible defaults.

    Args:
        services: A registry, or a plain ``{step_id: service}`` mapping.
            Defaults to the built-in registry (``promptAnalysis``).
        storage: Optional key-value storage for state persistence.
        callbacks: Optional log/progress/status callbacks.
        config: Optional :class:`PipelineConfig`.
        llm_client: LLM client for the default registry's prompt service.

    Returns:
        A new, caller-owned :class:`PipelineOrchestrator`.
    """
    if services is None:
        registry = create_default_registry(llm_client)
    elif isinstance(services, ServiceRegistry):
        registry = services
    else:
        registry = ServiceRegistry()
        for service_id, service in services.items():
            registry.register(service_id, service, api_tool=getattr(service, "api_tool", "") or "Internal")
    return PipelineOrchestrator(
        services=registry,
        storage=storage,
        callbacks=callbacks,
        config=config,
    )
