"""Step definition schema."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .filters import FilterSpec


class StepDefinition(BaseModel):
    """One enrichment step in a pipeline.

    Frozen: a pipeline's steps cannot change once ``initialize`` accepts them.

    Attributes:
        id: Service identifier resolved through the service registry.
        config: Service-specific options (prompt text, model, ...).
        filter: Optional rule set applied after the step runs.
        name: Display / status key. Defaults to ``id``; set it when the
            same service appears twice in a pipeline.
        batch_size: Per-step override of ``PipelineConfig.batch_size``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    config: dict[str, Any] = Field(default_factory=dict)
    filter: Optional[FilterSpec] = None
    name: Optional[str] = None
    batch_size: Optional[int] = Field(default=None, gt=0)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("step id cannot be empty")
        return v.strip()

    @property
    def key(self) -> str:
        """Key used for step status and analytics."""
        return self.name or self.id
