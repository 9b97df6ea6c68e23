"""Filter rule schemas.

A ``FilterSpec`` is an ordered list of ``FilterRule`` objects attached to a
step. After the step runs, each still-untagged row is checked against the
rules and the first rule that fires stamps the row's ``relevanceTag``.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

FilterOperator = Literal[
    "contains",
    "equals",
    "startsWith",
    "endsWith",
    "greaterThan",
    "lessThan",
    "between",
]
FilterAction = Literal["eliminate", "pass"]

STRING_OPERATORS = frozenset({"contains", "equals", "startsWith", "endsWith"})
NUMERIC_OPERATORS = frozenset({"greaterThan", "lessThan", "between"})


class FilterRule(BaseModel):
    """A single filter rule.

    Attributes:
        field: Row field to test; dotted paths reach into nested mappings.
        operator: Comparison to apply.
        value: Comparison operand, ``"min,max"`` for ``between``.
        action: ``eliminate`` tags rows that match, ``pass`` tags rows
            that do not match.
    """

    model_config = ConfigDict(frozen=True)

    field: str = ""
    operator: FilterOperator
    value: str = ""
    action: FilterAction = "eliminate"

    @field_validator("value", mode="before")
    @classmethod
    def stringify_value(cls, v: Any) -> Any:
        """Accept numeric operands from programmatic callers."""
        if v is None:
            return ""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("field")
    @classmethod
    def strip_field(cls, v: str) -> str:
        return v.strip()

    @property
    def is_active(self) -> bool:
        """Rules without a field or operand are placeholders and never fire."""
        return bool(self.field) and self.value.strip() != ""


class FilterSpec(BaseModel):
    """Ordered rule set evaluated with OR semantics.

    Attributes:
        rules: Rules in evaluation order.
        tag_prefix: Prefix for tags written by these rules (alias ``tagPrefix``).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    rules: list[FilterRule] = Field(default_factory=list)
    tag_prefix: str = Field(default="filtered", alias="tagPrefix")

    @field_validator("tag_prefix")
    @classmethod
    def validate_tag_prefix(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("tag_prefix cannot be empty")
        return v.strip()
