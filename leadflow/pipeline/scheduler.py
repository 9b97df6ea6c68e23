"""Batch scheduler - runs one step over the eligible rows, batch by batch."""

from __future__ import annotations

import copy
from typing import Any, Callable, Optional

from tqdm.auto import tqdm

from ..core.exceptions import CancellationRequested, ExecutionError
from ..data.rows import ROW_KEY_FIELD, TAG_FIELD, Row, is_tagged
from ..schemas.steps import StepDefinition
from ..steps.base import EnrichmentService, MetricsContext
from ..utils.logger import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int, int], Any]


class BatchScheduler:
    """Splits eligible rows into fixed-size batches and drives a service.

    Batches run strictly one after another. Results are merged back into
    the row store by ``__row_key``; rows the service returns with an
    unknown key are dropped, and rows it omits keep their pre-step values.
    """

    def __init__(self, show_progress: bool = True):
        self.show_progress = show_progress

    async def run_step(
        self,
        step: StepDefinition,
        service: EnrichmentService,
        all_rows: list[Row],
        batch_size: int,
        on_batch_progress: Optional[ProgressCallback] = None,
        metrics: Optional[MetricsContext] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> list[Row]:
        """Run *step* over every untagged row of *all_rows*, in place.

        Args:
            step: The step being executed.
            service: Enrichment service resolved for ``step.id``.
            all_rows: The row store; tagged rows are never sent out.
            batch_size: Rows per service call.
            on_batch_progress: Called after each batch with
                ``(percent, processed, eligible)``; percent is floored.
            metrics: Context handed to the service (a fresh one if omitted).
            should_cancel: Checked before every batch after the first.

        Returns:
            ``all_rows`` (same list object).

        Raises:
            ExecutionError: A batch call raised or returned garbage. Batches
                merged before it are kept.
            CancellationRequested: ``should_cancel()`` turned true; every
                completed batch has been merged.
        """
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        metrics = metrics or MetricsContext(step_id=step.key)
        eligible = [idx for idx, row in enumerate(all_rows) if not is_tagged(row)]
        total = len(eligible)
        if total == 0:
            logger.info("Step '%s': no eligible rows, skipping service calls", step.key)
            return all_rows

        batches = [eligible[i:i + batch_size] for i in range(0, total, batch_size)]
        logger.info(
            "Step '%s': %d eligible rows in %d batches of up to %d",
            step.key, total, len(batches), batch_size,
        )

        processed = 0
        bar = tqdm(
            total=total,
            desc=step.key,
            unit="row",
            leave=False,
            disable=not self.show_progress,
        )
        try:
            for batch_index, indices in enumerate(batches):
                if batch_index > 0 and should_cancel is not None and should_cancel():
                    logger.info(
                        "Step '%s': cancelled after %d of %d batches",
                        step.key, batch_index, len(batches),
                    )
                    raise CancellationRequested(step_id=step.key, completed_batches=batch_index)

                batch = [copy.deepcopy(all_rows[idx]) for idx in indices]
                try:
                    result = await service.process_batch(batch, dict(step.config), metrics)
                except Exception as exc:
                    metrics.add_error()
                    raise ExecutionError(
                        f"Enrichment service failed: {exc}",
                        step_id=step.key,
                        batch_index=batch_index,
                    ) from exc

                if not isinstance(result, list):
                    metrics.add_error()
                    raise ExecutionError(
                        f"Enrichment service returned {type(result).__name__}, expected list",
                        step_id=step.key,
                        batch_index=batch_index,
                    )

                self._merge(all_rows, indices, result, step.key)

                processed += len(indices)
                bar.update(len(indices))
                if on_batch_progress is not None:
                    percent = processed * 100 // total
                    on_batch_progress(percent, processed, total)
        finally:
            bar.close()

        return all_rows

    @staticmethod
    def _merge(
        all_rows: list[Row],
        indices: list[int],
        result: list[Any],
        step_key: str,
    ) -> None:
        """Overlay returned rows onto the originals of this batch, by key."""
        by_key = {all_rows[idx][ROW_KEY_FIELD]: idx for idx in indices}
        merged_keys: set[str] = set()
        dropped = 0

        for out in result:
            key = out.get(ROW_KEY_FIELD) if isinstance(out, dict) else None
            if key not in by_key or key in merged_keys:
                dropped += 1
                continue
            idx = by_key[key]
            merged = {**all_rows[idx], **out}
            merged[ROW_KEY_FIELD] = key
            tag = merged.get(TAG_FIELD)
            merged[TAG_FIELD] = "" if tag is None else str(tag)
            all_rows[idx] = merged
            merged_keys.add(key)

        if dropped:
            logger.warning(
                "Step '%s': dropped %d result rows with unknown or duplicate keys",
                step_key, dropped,
            )
        missing = len(by_key) - len(merged_keys)
        if missing:
            logger.warning(
                "Step '%s': %d rows had no result and keep their previous values",
                step_key, missing,
            )
