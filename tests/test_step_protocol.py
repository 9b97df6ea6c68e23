"""Tests for the service protocol, metrics context and service registry."""

import pytest

from leadflow.core.exceptions import ConfigurationError
from leadflow.schemas.base import UsageInfo
from leadflow.steps.base import EnrichmentService, MetricsContext
from leadflow.steps.function import FunctionService
from leadflow.steps.prompt import PromptAnalysisService
from leadflow.steps.registry import DEFAULT_API_TOOL, ServiceRegistry, create_default_registry


class EchoService:
    async def process_batch(self, rows, config, metrics):
        return rows


class NotAService:
    def run(self, rows):
        return rows


# -- protocol ----------------------------------------------------------------


class TestEnrichmentServiceProtocol:
    def test_duck_typed_class_satisfies_protocol(self):
        assert isinstance(EchoService(), EnrichmentService)

    def test_missing_method_fails_protocol(self):
        assert not isinstance(NotAService(), EnrichmentService)


# -- MetricsContext ----------------------------------------------------------


class TestMetricsContext:
    def test_counters(self):
        ctx = MetricsContext(step_id="enrich")
        ctx.add_api_call()
        ctx.add_api_call(2)
        ctx.add_tokens(100)
        ctx.add_credits(0.5)
        ctx.add_supabase_hit()
        ctx.add_error()

        assert ctx.api_calls == 3
        assert ctx.tokens_used == 100
        assert ctx.credits_used == 0.5
        assert ctx.supabase_hits == 1
        assert ctx.errors == 1

    def test_add_usage(self):
        ctx = MetricsContext(step_id="enrich")
        ctx.add_usage(UsageInfo(prompt_tokens=8, completion_tokens=2, total_tokens=10))
        ctx.add_usage(None)

        assert ctx.api_calls == 2
        assert ctx.tokens_used == 10

    def test_increment(self):
        ctx = MetricsContext(step_id="enrich")
        ctx.increment("cache_miss")
        ctx.increment("cache_miss", 2)
        assert ctx.specific_metrics == {"cache_miss": 3}

    def test_substeps_are_kept_separately(self):
        ctx = MetricsContext(step_id="enrich")
        ctx.add_substep("website", api_calls=1)
        ctx.add_substep("website", api_calls=2)
        assert [s.api_calls for s in ctx.substeps] == [1, 2]


# -- ServiceRegistry ---------------------------------------------------------


class TestServiceRegistry:
    def test_register_and_get(self):
        registry = ServiceRegistry()
        service = EchoService()
        entry = registry.register("echo", service, api_tool="Echo API", output_fields=["x"])

        assert registry.get("echo") is service
        assert entry.display_name == "echo"
        assert entry.output_fields == ("x",)
        assert registry.api_tool_for("echo") == "Echo API"
        assert "echo" in registry
        assert len(registry) == 1
        assert registry.ids() == ["echo"]

    def test_unknown_service(self):
        with pytest.raises(ConfigurationError, match="Unknown service") as exc_info:
            ServiceRegistry().get("missing")
        assert exc_info.value.step_id == "missing"

    def test_api_tool_default(self):
        registry = ServiceRegistry()
        registry.register("echo", EchoService())
        assert registry.api_tool_for("echo") == DEFAULT_API_TOOL
        assert registry.api_tool_for("missing") == DEFAULT_API_TOOL

    def test_duplicate_rejected_unless_replace(self):
        registry = ServiceRegistry()
        registry.register("echo", EchoService())
        with pytest.raises(ConfigurationError, match="already registered"):
            registry.register("echo", EchoService())

        replacement = EchoService()
        registry.register("echo", replacement, replace=True)
        assert registry.get("echo") is replacement

    def test_rejects_non_service(self):
        with pytest.raises(ConfigurationError, match="process_batch"):
            ServiceRegistry().register("bad", NotAService())

    def test_rejects_empty_id(self):
        with pytest.raises(ConfigurationError):
            ServiceRegistry().register("", EchoService())

    def test_iteration_yields_entries(self):
        registry = ServiceRegistry()
        registry.register("a", EchoService())
        registry.register("b", FunctionService(lambda row, config: {}))
        assert [e.service_id for e in registry] == ["a", "b"]


class TestDefaultRegistry:
    def test_prompt_analysis_registered(self):
        class FakeLLM:
            async def complete(self, messages, model, temperature, max_tokens):
                raise AssertionError("not called")

        registry = create_default_registry(FakeLLM())
        entry = registry.entry("promptAnalysis")

        assert isinstance(entry.service, PromptAnalysisService)
        assert entry.api_tool == "OpenAI GPT"
        assert "promptAnalysis" in entry.output_fields
