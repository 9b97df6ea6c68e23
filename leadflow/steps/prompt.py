"""PromptAnalysisService - per-row LLM analysis driven by a prompt template.

The step config carries a ``prompt`` with ``<field>`` placeholders, e.g.
``"Is <company> in the <industry> sector a good fit? Answer yes or no."``.
Each row's values are substituted in and the model's short answer is
written to ``promptAnalysis`` (plus ``analysisTimestamp``), ready for a
filter rule on the same step. The template is stored beside the answer
(``promptAnalysisPrompt``) so a row is only skipped when it already holds
an answer to the same prompt.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional

from ..data.rows import is_missing, resolve_field
from ..utils.logger import get_logger
from .base import MetricsContext
from .providers.base import LLMAPIError, LLMClient

logger = get_logger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"<([^<>\s][^<>]*)>")

DEFAULT_SYSTEM_PROMPT = (
    "You are a data analyst. Provide very concise analysis "
    "(1-3 words preferred for speed)."
)
FAILED_ANALYSIS = "Analysis failed"


def prompt_field(output_field: str) -> str:
    """Field recording which template produced *output_field*."""
    return f"{output_field}Prompt"


def extract_placeholders(prompt: str) -> list[str]:
    """Placeholder names in order of first appearance."""
    seen: list[str] = []
    for name in PLACEHOLDER_PATTERN.findall(prompt):
        name = name.strip()
        if name not in seen:
            seen.append(name)
    return seen


def render_prompt(prompt: str, row: dict[str, Any]) -> str:
    """Replace every ``<field>`` with the row's value (``""`` when absent)."""

    def _sub(match: re.Match) -> str:
        value = resolve_field(row, match.group(1).strip())
        return "" if is_missing(value) else str(value)

    return PLACEHOLDER_PATTERN.sub(_sub, prompt)


class PromptAnalysisService:
    """Runs one LLM call per row, sequentially.

    Step config keys:
        prompt (required): template with ``<field>`` placeholders.
        model, temperature, max_tokens: per-step overrides.
        system_prompt: replaces the default analyst instruction.
        output_field: where the answer goes; give each prompt step of a
            pipeline its own field to keep earlier answers.

    A failed LLM call marks only that row (``promptAnalysis = "Analysis
    failed"`` and ``analysisError``) and counts an error, unless
    ``raise_on_error`` is set, in which case the batch fails.
    """

    def __init__(
        self,
        client: Optional[LLMClient] = None,
        model: str = "gpt-4o-mini",
        temperature: float = 0.1,
        max_tokens: int = 50,
        output_field: str = "promptAnalysis",
        raise_on_error: bool = False,
    ):
        if client is None:
            from .providers.openai import OpenAIClient

            client = OpenAIClient()
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.output_field = output_field
        self.raise_on_error = raise_on_error

    def validate_config(self, config: dict[str, Any]) -> None:
        prompt = config.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("No prompt provided for analysis")
        output_field = config.get("output_field")
        if output_field is not None and (not isinstance(output_field, str) or not output_field.strip()):
            raise ValueError("output_field must be a non-empty string")

    async def process_batch(
        self,
        rows: list[dict[str, Any]],
        config: dict[str, Any],
        metrics: MetricsContext,
    ) -> list[dict[str, Any]]:
        self.validate_config(config)
        prompt = config["prompt"]
        model = config.get("model", self.model)
        temperature = float(config.get("temperature", self.temperature))
        max_tokens = int(config.get("max_tokens", self.max_tokens))
        system_prompt = config.get("system_prompt", DEFAULT_SYSTEM_PROMPT)
        output_field = config.get("output_field") or self.output_field
        marker = prompt_field(output_field)

        if rows:
            available = set(rows[0].keys())
            unknown = [
                p for p in extract_placeholders(prompt)
                if p not in available and "." not in p
            ]
            if unknown:
                logger.warning("Prompt placeholders not found in rows: %s", ", ".join(unknown))

        results = []
        for row in rows:
            # Already answered this prompt in an earlier run
            answer = row.get(output_field)
            if answer and answer != FAILED_ANALYSIS and row.get(marker) == prompt:
                results.append(dict(row))
                metrics.increment("skipped")
                continue

            messages = [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": render_prompt(prompt, row)},
            ]
            timestamp = datetime.now(timezone.utc).isoformat()
            try:
                response = await self.client.complete(
                    messages=messages,
                    model=model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
            except LLMAPIError as exc:
                if self.raise_on_error:
                    raise
                logger.warning("Prompt analysis failed for row %s: %s", row.get("__row_key"), exc)
                metrics.add_api_call()
                metrics.add_error()
                results.append({
                    **row,
                    output_field: FAILED_ANALYSIS,
                    "analysisError": str(exc),
                    "analysisTimestamp": timestamp,
                })
                continue

            metrics.add_usage(response.usage)
            metrics.increment("analysed")
            results.append({
                **row,
                output_field: response.content.strip() or "No analysis available",
                marker: prompt,
                "analysisTimestamp": timestamp,
            })
        return results
