"""Tests for the filter engine (rule evaluation and tagging)."""

import pytest
from pydantic import ValidationError

from leadflow.data.rows import TAG_FIELD, count_tagged, prepare_rows
from leadflow.pipeline.filters import apply_filters, evaluate_rule, make_tag, rule_matches
from leadflow.schemas.filters import FilterRule, FilterSpec


# -- helpers -----------------------------------------------------------------


def _rule(field="headcount", operator="lessThan", value="50", action="eliminate") -> FilterRule:
    return FilterRule(field=field, operator=operator, value=value, action=action)


def _rows(*rows: dict) -> list[dict]:
    return prepare_rows([dict(r) for r in rows])


# -- operators ---------------------------------------------------------------


class TestStringOperators:
    def test_equals_is_case_insensitive(self):
        assert rule_matches(_rule(operator="equals", value="ACME"), "acme")

    def test_equals_requires_full_match(self):
        assert not rule_matches(_rule(operator="equals", value="acme"), "acme corp")

    def test_contains(self):
        assert rule_matches(_rule(operator="contains", value="Soft"), "Acme Software")

    def test_starts_with(self):
        assert rule_matches(_rule(operator="startsWith", value="vp"), "VP of Sales")
        assert not rule_matches(_rule(operator="startsWith", value="sales"), "VP of Sales")

    def test_ends_with(self):
        assert rule_matches(_rule(operator="endsWith", value=".IO"), "acme.io")

    def test_numbers_compared_as_text(self):
        assert rule_matches(_rule(operator="equals", value="500"), 500)


class TestNumericOperators:
    def test_greater_than(self):
        assert rule_matches(_rule(operator="greaterThan", value="100"), 101)
        assert not rule_matches(_rule(operator="greaterThan", value="100"), 100)

    def test_less_than_coerces_strings(self):
        assert rule_matches(_rule(operator="lessThan", value="50"), "10")

    def test_thousands_separator(self):
        assert rule_matches(_rule(operator="greaterThan", value="500"), "1,200")

    def test_non_numeric_value_never_matches(self):
        assert not rule_matches(_rule(operator="lessThan", value="50"), "unknown")
        assert not rule_matches(_rule(operator="greaterThan", value="50"), "unknown")

    def test_nan_never_matches(self):
        assert not rule_matches(_rule(operator="lessThan", value="50"), float("nan"))

    def test_between_is_inclusive(self):
        rule = _rule(operator="between", value="10,50")
        assert rule_matches(rule, 10)
        assert rule_matches(rule, 50)
        assert rule_matches(rule, "25")
        assert not rule_matches(rule, 51)

    @pytest.mark.parametrize("value", ["10", "10,", "a,b", "1,2,3"])
    def test_malformed_between_never_matches(self, value):
        assert not rule_matches(_rule(operator="between", value=value), 10)


# -- evaluate_rule -----------------------------------------------------------


class TestEvaluateRule:
    def test_eliminate_excludes_on_match(self):
        assert evaluate_rule(_rule(), {"headcount": 10})
        assert not evaluate_rule(_rule(), {"headcount": 500})

    def test_pass_excludes_on_non_match(self):
        rule = _rule(operator="equals", value="yes", action="pass", field="fit")
        assert evaluate_rule(rule, {"fit": "no"})
        assert not evaluate_rule(rule, {"fit": "Yes"})

    def test_missing_field_is_skipped(self):
        assert not evaluate_rule(_rule(), {"company": "Acme"})
        # even for pass rules, a missing field does not exclude
        assert not evaluate_rule(_rule(action="pass"), {"company": "Acme"})

    def test_none_value_is_skipped(self):
        assert not evaluate_rule(_rule(action="pass"), {"headcount": None})

    def test_empty_value_rule_is_inactive(self):
        assert not evaluate_rule(_rule(value=""), {"headcount": 10})

    def test_dotted_path_into_nested_row(self):
        rule = _rule(field="organization.estimated_num_employees")
        assert evaluate_rule(rule, {"organization": {"estimated_num_employees": 12}})

    def test_literal_dotted_key_wins(self):
        rule = _rule(field="organization.size")
        row = {"organization.size": 5, "organization": {"size": 5000}}
        assert evaluate_rule(rule, row)


# -- apply_filters -----------------------------------------------------------


class TestApplyFilters:
    def test_headcount_example(self):
        rows = _rows({"company": "Acme", "headcount": 10}, {"company": "Beta", "headcount": 500})
        spec = FilterSpec(rules=[_rule()])

        result = apply_filters(rows, spec)

        assert result is rows
        assert count_tagged(rows) == 1
        assert "headcount" in rows[0][TAG_FIELD]
        assert rows[1][TAG_FIELD] == ""

    def test_tag_format(self):
        rows = _rows({"id": 1, "headcount": 10})
        spec = FilterSpec(rules=[_rule()], tag_prefix="small")

        apply_filters(rows, spec)

        assert rows[0][TAG_FIELD] == "small_headcount_lessThan_50"

    def test_first_firing_rule_wins(self):
        rows = _rows({"id": 1, "headcount": 10, "country": "FR"})
        spec = FilterSpec(rules=[
            _rule(field="country", operator="equals", value="fr"),
            _rule(),
        ])

        apply_filters(rows, spec)

        assert rows[0][TAG_FIELD] == "filtered_country_equals_fr"

    def test_or_semantics_across_rules(self):
        rows = _rows(
            {"id": 1, "headcount": 10, "country": "US"},
            {"id": 2, "headcount": 900, "country": "FR"},
            {"id": 3, "headcount": 900, "country": "US"},
        )
        spec = FilterSpec(rules=[
            _rule(),
            _rule(field="country", operator="equals", value="FR"),
        ])

        assert apply_filters(rows, spec) is rows
        assert count_tagged(rows) == 2
        assert rows[2][TAG_FIELD] == ""

    def test_already_tagged_rows_are_not_reevaluated(self):
        rows = _rows({"id": 1, "headcount": 10, "relevanceTag": "earlier_tag"})

        assert apply_filters(rows, FilterSpec(rules=[_rule()])) is rows
        assert count_tagged(rows) == 1
        assert rows[0][TAG_FIELD] == "earlier_tag"

    def test_none_spec_is_noop(self):
        rows = _rows({"id": 1, "headcount": 10})
        assert apply_filters(rows, None) is rows
        assert count_tagged(rows) == 0
        assert rows[0][TAG_FIELD] == ""

    def test_tagging_never_changes_other_fields(self):
        rows = _rows({"id": 1, "headcount": 10, "company": "Acme"})
        apply_filters(rows, FilterSpec(rules=[_rule()]))
        assert rows[0]["company"] == "Acme"
        assert rows[0]["headcount"] == 10

    def test_make_tag(self):
        assert make_tag(_rule(operator="between", value="1,5"), "x") == "x_headcount_between_1,5"


# -- schema validation -------------------------------------------------------


class TestFilterSchemas:
    def test_unknown_operator_rejected(self):
        with pytest.raises(ValidationError):
            FilterRule(field="a", operator="matches", value="x")

    def test_unknown_action_rejected(self):
        with pytest.raises(ValidationError):
            FilterRule(field="a", operator="equals", value="x", action="drop")

    def test_numeric_value_is_stringified(self):
        assert FilterRule(field="a", operator="lessThan", value=50).value == "50"

    def test_tag_prefix_alias(self):
        spec = FilterSpec.model_validate({"rules": [], "tagPrefix": "not_saas"})
        assert spec.tag_prefix == "not_saas"

    def test_empty_tag_prefix_rejected(self):
        with pytest.raises(ValidationError):
            FilterSpec(rules=[], tag_prefix="  ")
