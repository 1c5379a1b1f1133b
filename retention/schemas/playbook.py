"""
Playbook definitions: trigger conditions + ordered steps.

Trigger conditions are a tagged union keyed on ``operator``. The value type
is checked when the playbook is authored (pydantic validation), so evaluation
never has to guess what ``value`` holds.
"""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, StrictBool, StrictFloat, StrictInt, StrictStr, model_validator


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class EqCondition(BaseModel):
    field: str
    operator: Literal["eq"] = "eq"
    value: Union[StrictBool, StrictInt, StrictFloat, StrictStr]

    def test(self, candidate: Any) -> bool:
        # No cross-type coercion: "1" != 1 and True != 1
        if isinstance(candidate, bool) or isinstance(self.value, bool):
            return type(candidate) is type(self.value) and candidate == self.value
        if _is_number(candidate) and _is_number(self.value):
            return candidate == self.value
        return type(candidate) is type(self.value) and candidate == self.value


class ComparisonCondition(BaseModel):
    field: str
    operator: Literal["gt", "lt", "gte", "lte"]
    value: Union[StrictInt, StrictFloat]

    def test(self, candidate: Any) -> bool:
        if not _is_number(candidate):
            return False
        if self.operator == "gt":
            return candidate > self.value
        if self.operator == "lt":
            return candidate < self.value
        if self.operator == "gte":
            return candidate >= self.value
        return candidate <= self.value


class InCondition(BaseModel):
    field: str
    operator: Literal["in"] = "in"
    value: list[str]

    def test(self, candidate: Any) -> bool:
        return _stringify(candidate) in self.value


TriggerCondition = Annotated[
    Union[EqCondition, ComparisonCondition, InCondition],
    Field(discriminator="operator"),
]


class StepType(str, Enum):
    EMAIL = "email"
    WAIT = "wait"
    CHECK_STATUS = "check_status"


class PlaybookStep(BaseModel):
    step_number: int = Field(ge=1)
    type: StepType
    delay_hours: float = Field(0, ge=0, description="Relative to the previous step")
    template_id: Optional[str] = None
    subject: Optional[str] = None
    content: Optional[str] = None


class Playbook(BaseModel):
    id: Optional[str] = None
    community_id: Optional[str] = None
    name: str
    emoji: Optional[str] = None
    description: Optional[str] = None
    playbook_type: Literal["system", "custom"] = "custom"
    min_tier: str = "starter"
    active: bool = True
    trigger_conditions: list[TriggerCondition] = []
    steps: list[PlaybookStep] = []

    total_enrollments: int = 0
    total_completions: int = 0

    @model_validator(mode="after")
    def validate_step_numbers(self) -> "Playbook":
        numbers = [s.step_number for s in self.steps]
        if numbers != list(range(1, len(numbers) + 1)):
            raise ValueError("steps must be numbered 1..n, contiguous and in order")
        return self
