"""FunctionService - wraps any sync or async per-row callable as a service."""

from __future__ import annotations

import asyncio
import functools
from typing import Any, Callable, Optional

from .base import MetricsContext


class FunctionService:
    """Wraps a user-supplied callable as an enrichment service.

    The callable receives ``(row, config)`` and must return
    ``dict[str, Any]`` of new field values, which are merged onto a copy
    of the row. Rows in a batch are processed one after another.

    Sync functions are executed via ``run_in_executor`` so they
    never block the event loop.
    """

    def __init__(
        self,
        fn: Callable[..., Any],
        fields: Optional[list[str]] = None,
        api_tool: str = "",
    ):
        self.fn = fn
        self.fields = fields
        self.api_tool = api_tool
        self._is_async = asyncio.iscoroutinefunction(fn)

    async def _call(self, row: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
        if self._is_async:
            return await self.fn(row, config)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self.fn, row, config))

    async def process_batch(
        self,
        rows: list[dict[str, Any]],
        config: dict[str, Any],
        metrics: MetricsContext,
    ) -> list[dict[str, Any]]:
        results = []
        for row in rows:
            raw = await self._call(row, config) or {}
            if not isinstance(raw, dict):
                raise TypeError(
                    f"FunctionService callable must return a dict, got {type(raw).__name__}"
                )
            # Filter to declared fields only
            if self.fields is not None:
                raw = {k: v for k, v in raw.items() if k in self.fields}
            results.append({**row, **raw})
        return results
