"""Tests for travel order field validation."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from travel_order_portal.errors import ValidationError
from travel_order_portal.validation import (
    DateOrderRule,
    NonNegativeAmountRule,
    OrderValidator,
    RequiredFieldsRule,
)


@pytest.fixture()
def validator() -> OrderValidator:
    return OrderValidator.default()


def test_valid_fields_have_no_issues(validator, valid_fields) -> None:
    assert validator.validate(valid_fields) == []


def test_end_date_before_start_fails_on_end_date(validator, valid_fields) -> None:
    valid_fields.update(start_date="2026-02-15", end_date="2026-02-14")

    with pytest.raises(ValidationError) as excinfo:
        validator.ensure_valid(valid_fields)

    assert excinfo.value.field == "end_date"
    assert excinfo.value.message == "End date must be after start date."


def test_same_day_travel_is_rejected(validator, valid_fields) -> None:
    valid_fields.update(start_date=date(2026, 2, 15), end_date=date(2026, 2, 15))

    issues = validator.validate(valid_fields)

    assert [issue.field for issue in issues] == ["end_date"]


def test_first_failing_field_follows_form_order(validator) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validator.ensure_valid({"destination": "Cebu City", "start_date": "2026-02-15"})

    assert excinfo.value.field == "travel_purpose"
    assert "end_date" in excinfo.value.errors
    assert "remarks" not in excinfo.value.errors


def test_blank_strings_count_as_missing(validator, valid_fields) -> None:
    valid_fields["objectives"] = "   "

    errors = validator.errors_by_field(valid_fields)

    assert errors == {"objectives": ["Objectives is required."]}


@pytest.mark.parametrize("amount", ["-1", "abc", "NaN"])
def test_invalid_amounts(validator, valid_fields, amount: str) -> None:
    valid_fields["per_diems_expenses"] = amount

    errors = validator.errors_by_field(valid_fields)

    assert errors == {
        "per_diems_expenses": ["Enter a valid amount for per diems / expenses."]
    }


def test_zero_amount_is_allowed(validator, valid_fields) -> None:
    valid_fields["per_diems_expenses"] = 0

    assert validator.validate(valid_fields) == []


def test_unparseable_date(validator, valid_fields) -> None:
    valid_fields["start_date"] = "15/02/2026"

    errors = validator.errors_by_field(valid_fields)

    assert errors["start_date"] == ["Enter a valid date."]


def test_partial_validation_skips_required_fields(validator) -> None:
    values = {"start_date": "2026-02-15", "end_date": "2026-02-10"}

    issues = validator.validate(values, partial=True)

    assert [(issue.field, issue.rule_name) for issue in issues] == [
        ("end_date", "end_after_start")
    ]
    assert validator.validate({"travel_purpose": "Visit"}, partial=True) == []


def test_validate_order_uses_model_fields(validator, order_factory) -> None:
    order = order_factory(appropriation=None)

    issues = validator.validate_order(order)

    assert [issue.code for issue in issues] == ["TO-REQUIRED"]


def test_from_yaml_builds_rules() -> None:
    validator = OrderValidator.from_yaml(
        """
rules:
  - name: must_have_destination
    code: X-REQ
    type: required_fields
    fields: [destination]
  - name: dates
    code: X-DATES
    type: date_order
"""
    )

    assert isinstance(validator.rules[0], RequiredFieldsRule)
    assert isinstance(validator.rules[1], DateOrderRule)
    assert validator.errors_by_field({}) == {"destination": ["Destination is required."]}


def test_from_yaml_rejects_unknown_rule_type() -> None:
    with pytest.raises(ValueError, match="Unsupported rule type"):
        OrderValidator.from_yaml("rules:\n  - name: x\n    code: X\n    type: nope\n")


def test_from_yaml_requires_rules() -> None:
    with pytest.raises(ValueError, match="rules"):
        OrderValidator.from_yaml("other: 1\n")


def test_from_file_loads_repository_config() -> None:
    config_path = Path(__file__).resolve().parents[2] / "config" / "validation.yaml"

    validator = OrderValidator.from_file(config_path)

    assert [rule.code for rule in validator.rules] == ["TO-REQUIRED", "TO-DATES", "TO-AMOUNT"]
    assert isinstance(validator.rules[2], NonNegativeAmountRule)


def test_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(
        "ORDER_VALIDATION_RULES",
        "rules:\n  - name: amount\n    code: A\n    type: non_negative_amount\n",
    )

    validator = OrderValidator.from_environment()

    assert validator.errors_by_field({"per_diems_expenses": "-5"})


def test_from_environment_requires_variable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ORDER_VALIDATION_RULES", raising=False)

    with pytest.raises(ValueError, match="ORDER_VALIDATION_RULES"):
        OrderValidator.from_environment()
