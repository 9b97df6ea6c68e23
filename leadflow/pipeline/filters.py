"""Filter engine: stamp rows that a step's rules exclude.

Evaluation is pure; the only mutation is writing ``relevanceTag`` on rows
that ``apply_filters`` decides to exclude.
"""

from __future__ import annotations

import math
from typing import Any, Optional

from ..data.rows import TAG_FIELD, Row, is_missing, is_tagged, resolve_field
from ..schemas.filters import FilterRule, FilterSpec
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(str(value).strip().replace(",", "")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def _parse_range(value: str) -> Optional[tuple[float, float]]:
    parts = value.split(",")
    if len(parts) != 2:
        return None
    low, high = _to_number(parts[0]), _to_number(parts[1])
    if low is None or high is None:
        return None
    return low, high


def rule_matches(rule: FilterRule, field_value: Any) -> bool:
    """Evaluate *rule*'s operator against a resolved field value.

    String operators compare case-insensitively. Numeric operators coerce
    both sides to float; anything that does not coerce is a non-match.
    """
    op = rule.operator

    if op == "between":
        bounds = _parse_range(rule.value)
        number = _to_number(field_value)
        if bounds is None or number is None:
            return False
        low, high = bounds
        return low <= number <= high

    if op in ("greaterThan", "lessThan"):
        number = _to_number(field_value)
        target = _to_number(rule.value)
        if number is None or target is None:
            return False
        return number > target if op == "greaterThan" else number < target

    text = str(field_value).lower()
    needle = rule.value.lower()
    if op == "equals":
        return text == needle
    if op == "contains":
        return needle in text
    if op == "startsWith":
        return text.startswith(needle)
    if op == "endsWith":
        return text.endswith(needle)
    return False


def evaluate_rule(rule: FilterRule, row: Row) -> bool:
    """Return True when *rule* says *row* should be excluded.

    Inactive rules (no field or operand) and rows missing the field never
    exclude.
    """
    if not rule.is_active:
        return False
    value = resolve_field(row, rule.field)
    if is_missing(value):
        return False
    matches = rule_matches(rule, value)
    if rule.action == "eliminate":
        return matches
    return not matches


def make_tag(rule: FilterRule, tag_prefix: str) -> str:
    return f"{tag_prefix}_{rule.field}_{rule.operator}_{rule.value}"


def first_firing_rule(row: Row, spec: FilterSpec) -> Optional[FilterRule]:
    for rule in spec.rules:
        if evaluate_rule(rule, row):
            return rule
    return None


def apply_filters(rows: list[Row], spec: Optional[FilterSpec]) -> list[Row]:
    """
    Stamp every untagged row excluded by *spec*, in place.

    Rules are tried in order and the first one that fires writes the tag.
    Rows that already carry a tag are not re-evaluated.

    Args:
        rows: The row store
        spec: Filter rules for the step (None = nothing to do)

    Returns:
        ``rows`` (same list object); use ``count_tagged`` for totals
    """
    if spec is None or not spec.rules:
        return rows

    tagged = 0
    for row in rows:
        if is_tagged(row):
            continue
        rule = first_firing_rule(row, spec)
        if rule is not None:
            row[TAG_FIELD] = make_tag(rule, spec.tag_prefix)
            tagged += 1

    logger.debug("Filter pass tagged %d of %d rows", tagged, len(rows))
    return rows
