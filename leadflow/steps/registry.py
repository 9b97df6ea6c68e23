"""Service registry: maps step ids to enrichment services."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from ..core.exceptions import ConfigurationError
from .base import EnrichmentService

DEFAULT_API_TOOL = "Internal"


@dataclass(frozen=True)
class ServiceEntry:
    """A registered service and its descriptive metadata."""

    service_id: str
    service: Any
    display_name: str = ""
    description: str = ""
    api_tool: str = DEFAULT_API_TOOL
    output_fields: tuple[str, ...] = field(default_factory=tuple)


class ServiceRegistry:
    """Lookup table from step id to ``EnrichmentService``.

    Passed to the orchestrator at construction; ``initialize`` rejects
    steps whose id is not registered.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ServiceEntry] = {}

    def register(
        self,
        service_id: str,
        service: EnrichmentService,
        *,
        display_name: str = "",
        description: str = "",
        api_tool: str = DEFAULT_API_TOOL,
        output_fields: Optional[list[str]] = None,
        replace: bool = False,
    ) -> ServiceEntry:
        if not service_id:
            raise ConfigurationError("Service id cannot be empty")
        if not callable(getattr(service, "process_batch", None)):
            raise ConfigurationError(
                f"Service {service_id!r} does not implement process_batch", step_id=service_id
            )
        if service_id in self._entries and not replace:
            raise ConfigurationError("Service already registered", step_id=service_id)

        entry = ServiceEntry(
            service_id=service_id,
            service=service,
            display_name=display_name or service_id,
            description=description,
            api_tool=api_tool,
            output_fields=tuple(output_fields or ()),
        )
        self._entries[service_id] = entry
        return entry

    def get(self, service_id: str) -> EnrichmentService:
        return self.entry(service_id).service

    def entry(self, service_id: str) -> ServiceEntry:
        try:
            return self._entries[service_id]
        except KeyError:
            raise ConfigurationError("Unknown service", step_id=service_id) from None

    def api_tool_for(self, service_id: str) -> str:
        entry = self._entries.get(service_id)
        return entry.api_tool if entry else DEFAULT_API_TOOL

    def ids(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, service_id: object) -> bool:
        return service_id in self._entries

    def __iter__(self) -> Iterator[ServiceEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


def create_default_registry(llm_client: Any = None) -> ServiceRegistry:
    """Registry with the built-in ``promptAnalysis`` service."""
    from .prompt import PromptAnalysisService

    registry = ServiceRegistry()
    registry.register(
        "promptAnalysis",
        PromptAnalysisService(client=llm_client),
        display_name="Prompt Analysis",
        description="Analyze leads with custom prompts using AI",
        api_tool="OpenAI GPT",
        output_fields=["promptAnalysis", "promptAnalysisPrompt", "analysisTimestamp"],
    )
    return registry
