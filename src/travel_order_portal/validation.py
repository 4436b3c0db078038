"""Field validation rules for travel orders."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

from .errors import ValidationError

if TYPE_CHECKING:
    from .models import TravelOrder

# Form order of travel order fields; the first failing field is reported first.
FIELD_ORDER: tuple[str, ...] = (
    "travel_purpose",
    "destination",
    "official_station",
    "start_date",
    "end_date",
    "objectives",
    "per_diems_expenses",
    "per_diems_note",
    "assistant_or_laborers_allowed",
    "appropriation",
    "remarks",
)

REQUIRED_FIELDS: tuple[str, ...] = (
    "travel_purpose",
    "destination",
    "start_date",
    "end_date",
    "objectives",
    "per_diems_expenses",
    "appropriation",
)

_FIELD_LABELS = {
    "travel_purpose": "Travel purpose",
    "destination": "Destination",
    "start_date": "Start date",
    "end_date": "End date",
    "objectives": "Objectives",
    "per_diems_expenses": "Per diems / expenses amount",
    "appropriation": "Appropriation",
}


class FieldIssue(BaseModel):
    """A single field-level validation failure."""

    field: str = Field(..., description="Name of the failing field")
    code: str = Field(..., description="Stable validation code")
    message: str = Field(..., description="Human-readable explanation")
    rule_name: str = Field(..., description="Rule that produced the issue")


def _is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _as_date(value: object) -> date | None:
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def _as_decimal(value: object) -> Decimal | None:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, str)):
        try:
            return Decimal(str(value).strip())
        except InvalidOperation:
            return None
    return None


class ValidationRule(BaseModel):
    """Base class for travel order validation rules."""

    name: str = Field(..., description="Unique rule name")
    code: str = Field(..., description="Stable validation code")

    model_config = ConfigDict(extra="forbid")

    def evaluate(self, values: Mapping[str, object]) -> list[FieldIssue]:
        """Evaluate field values and return any issues."""

        raise NotImplementedError

    def _issue(self, field: str, message: str) -> FieldIssue:
        return FieldIssue(field=field, code=self.code, message=message, rule_name=self.name)


class RequiredFieldsRule(ValidationRule):
    """Every listed field must be present and non-blank."""

    type: Literal["required_fields"] = Field(
        default="required_fields", description="Rule type discriminator"
    )
    fields: list[str] = Field(default_factory=lambda: list(REQUIRED_FIELDS))

    def evaluate(self, values: Mapping[str, object]) -> list[FieldIssue]:
        issues = []
        for field in self.fields:
            if _is_blank(values.get(field)):
                label = _FIELD_LABELS.get(field, field.replace("_", " ").capitalize())
                issues.append(self._issue(field, f"{label} is required."))
        return issues


class DateOrderRule(ValidationRule):
    """The end date must be strictly later than the start date."""

    type: Literal["date_order"] = Field(default="date_order", description="Rule type")
    start_field: str = Field(default="start_date")
    end_field: str = Field(default="end_date")

    def evaluate(self, values: Mapping[str, object]) -> list[FieldIssue]:
        issues = []
        raw_start = values.get(self.start_field)
        raw_end = values.get(self.end_field)
        start = _as_date(raw_start)
        end = _as_date(raw_end)
        if not _is_blank(raw_start) and start is None:
            issues.append(self._issue(self.start_field, "Enter a valid date."))
        if not _is_blank(raw_end) and end is None:
            issues.append(self._issue(self.end_field, "Enter a valid date."))
        if start is not None and end is not None and end <= start:
            issues.append(self._issue(self.end_field, "End date must be after start date."))
        return issues


class NonNegativeAmountRule(ValidationRule):
    """An amount field, when given, must be a number no lower than zero."""

    type: Literal["non_negative_amount"] = Field(
        default="non_negative_amount", description="Rule type"
    )
    field: str = Field(default="per_diems_expenses")

    def evaluate(self, values: Mapping[str, object]) -> list[FieldIssue]:
        raw = values.get(self.field)
        if _is_blank(raw):
            return []
        amount = _as_decimal(raw)
        if amount is None or not amount.is_finite() or amount < 0:
            return [self._issue(self.field, "Enter a valid amount for per diems / expenses.")]
        return []


_RULE_TYPES = {
    "required_fields": RequiredFieldsRule,
    "date_order": DateOrderRule,
    "non_negative_amount": NonNegativeAmountRule,
}


def _default_rules_path() -> Path | None:
    for parent in Path(__file__).resolve().parents:
        candidate = parent / "config" / "validation.yaml"
        if candidate.exists():
            return candidate
    return None


def _load_rules(raw_rules: Iterable[dict[str, object]]) -> list[ValidationRule]:
    rules: list[ValidationRule] = []
    for raw_rule in raw_rules:
        rule_type = raw_rule.get("type")
        if not isinstance(rule_type, str):
            raise ValueError("Each rule must include a string 'type'")
        rule_cls = _RULE_TYPES.get(rule_type)
        if rule_cls is None:
            raise ValueError(f"Unsupported rule type: {rule_type}")
        rules.append(rule_cls.model_validate(raw_rule))
    return rules


def _field_rank(field: str) -> int:
    try:
        return FIELD_ORDER.index(field)
    except ValueError:
        return len(FIELD_ORDER)


class OrderValidator:
    """Evaluate travel order field values against the configured rules."""

    def __init__(self, rules: Iterable[ValidationRule]):
        self.rules = list(rules)

    @classmethod
    def default(cls) -> OrderValidator:
        return cls(
            [
                RequiredFieldsRule(name="required_fields", code="TO-REQUIRED"),
                DateOrderRule(name="end_after_start", code="TO-DATES"),
                NonNegativeAmountRule(name="per_diems_non_negative", code="TO-AMOUNT"),
            ]
        )

    @classmethod
    def from_yaml(cls, content: str) -> OrderValidator:
        data = yaml.safe_load(content) or {}
        raw_rules = data.get("rules")
        if not raw_rules:
            raise ValueError("Validation configuration must include a 'rules' list")
        return cls(_load_rules(raw_rules))

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> OrderValidator:
        target_path = Path(path) if path is not None else _default_rules_path()
        if target_path is None:
            raise FileNotFoundError("No validation.yaml file found")
        return cls.from_yaml(target_path.read_text(encoding="utf-8"))

    @classmethod
    def from_environment(cls, env_var: str = "ORDER_VALIDATION_RULES") -> OrderValidator:
        content = os.getenv(env_var)
        if not content:
            raise ValueError(f"Environment variable '{env_var}' is not set or empty")
        return cls.from_yaml(content)

    def validate(
        self, values: Mapping[str, object], *, partial: bool = False
    ) -> list[FieldIssue]:
        """Return all issues, ordered by the field's position on the form.

        With ``partial`` the required-field rules are skipped, so a draft can be
        saved incomplete while the values it does carry are still checked.
        """

        issues: list[FieldIssue] = []
        for rule in self.rules:
            if partial and isinstance(rule, RequiredFieldsRule):
                continue
            issues.extend(rule.evaluate(values))
        return sorted(issues, key=lambda issue: _field_rank(issue.field))

    def validate_order(self, order: TravelOrder) -> list[FieldIssue]:
        return self.validate(order.model_dump(include=set(FIELD_ORDER)))

    def errors_by_field(self, values: Mapping[str, object]) -> dict[str, list[str]]:
        """Group issue messages by field, keeping form order."""

        grouped: dict[str, list[str]] = {}
        for issue in self.validate(values):
            grouped.setdefault(issue.field, []).append(issue.message)
        return grouped

    def ensure_valid(
        self, values: Mapping[str, object], *, partial: bool = False
    ) -> None:
        """Raise ValidationError naming the first failing field."""

        issues = self.validate(values, partial=partial)
        if not issues:
            return
        first = issues[0]
        grouped: dict[str, list[str]] = {}
        for issue in issues:
            grouped.setdefault(issue.field, []).append(issue.message)
        raise ValidationError(first.field, first.message, grouped)

    def ensure_order_valid(self, order: TravelOrder) -> None:
        self.ensure_valid(order.model_dump(include=set(FIELD_ORDER)))
