from datetime import date, time
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator

from loyalty_rules.core.id_utils import generate_shortuuid
from loyalty_rules.core.money import to_money


class DomainModel(BaseModel):
    """Immutable, structurally comparable base for every rule-model value."""

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)


def _money(value: Decimal) -> Decimal:
    return to_money(value)


def _positive_money(value: Decimal) -> Decimal:
    money = to_money(value)
    if money <= 0:
        raise ValueError("Amount must be greater than 0")
    return money


def _non_negative_money(value: Decimal) -> Decimal:
    money = to_money(value)
    if money < 0:
        raise ValueError("Amount cannot be negative")
    return money


def _percentage(value: Decimal) -> Decimal:
    if value <= 0 or value > 100:
        raise ValueError("Percentage must be greater than 0 and at most 100")
    return value


Money = Annotated[Decimal, AfterValidator(_money)]
PositiveMoney = Annotated[Decimal, AfterValidator(_positive_money)]
NonNegativeMoney = Annotated[Decimal, AfterValidator(_non_negative_money)]
Percentage = Annotated[Decimal, AfterValidator(_percentage)]
DayCount = Annotated[int, Field(ge=0)]
PositiveDayCount = Annotated[int, Field(ge=1)]
EntityId = Annotated[str, Field(min_length=1, max_length=64)]


def id_field():
    return Field(default_factory=generate_shortuuid)


Weekday = Literal["mon", "tue", "wed", "thu", "fri", "sat", "sun"]
WEEKDAY_ORDER: tuple[str, ...] = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def _ordered_weekdays(value: tuple[str, ...]) -> tuple[str, ...]:
    unique = set(value)
    if not unique:
        raise ValueError("At least one weekday is required")
    return tuple(day for day in WEEKDAY_ORDER if day in unique)


WeekdaySet = Annotated[tuple[Weekday, ...], AfterValidator(_ordered_weekdays)]


def weekday_of(day: date) -> str:
    return WEEKDAY_ORDER[day.weekday()]


class DateRange(DomainModel):
    start: date
    end: date | None = None

    @model_validator(mode="after")
    def validate_order(self) -> "DateRange":
        if self.end is not None and self.end < self.start:
            raise ValueError("Date range end cannot be before start")
        return self

    def contains(self, day: date) -> bool:
        if day < self.start:
            return False
        return self.end is None or day <= self.end


class TimeWindow(DomainModel):
    """Active hours; a window whose end is before its start wraps past midnight."""

    start: time
    end: time

    @model_validator(mode="after")
    def validate_span(self) -> "TimeWindow":
        if self.start == self.end:
            raise ValueError("Time window start and end must differ")
        return self

    def contains(self, moment: time) -> bool:
        if self.start < self.end:
            return self.start <= moment < self.end
        return moment >= self.start or moment < self.end
