import re
from typing import Annotated, Any, Literal, Union

from pydantic import Field, field_validator

from loyalty_rules.schemas.values import (
    WEEKDAY_ORDER,
    DateRange,
    DayCount,
    DomainModel,
    Money,
    TimeWindow,
    WeekdaySet,
)


_ID_DELIMITER_RE = re.compile(r"[,;\s]+")
_NAME_DELIMITER_RE = re.compile(r"[,;\n]+")

ChannelRestriction = Literal["all", "in_store_only", "online_only"]


def _split_tokens(value: Any, pattern: re.Pattern[str]) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        raw = pattern.split(value)
    elif isinstance(value, (list, tuple)):
        raw = []
        for item in value:
            raw.extend(pattern.split(str(item)))
    else:
        raise ValueError("Expected a delimited string or a list")

    seen: set[str] = set()
    tokens: list[str] = []
    for item in raw:
        token = item.strip()
        if not token or token in seen:
            continue
        seen.add(token)
        tokens.append(token)
    return tuple(tokens)


def normalize_id_tokens(value: Any) -> tuple[str, ...]:
    """Split a delimited string (or list) into trimmed, de-duplicated ids in first-seen order."""
    return _split_tokens(value, _ID_DELIMITER_RE)


def normalize_name_list(value: Any) -> tuple[str, ...]:
    """Like ``normalize_id_tokens`` but keeps inner spaces, e.g. ``"Home Goods"``."""
    return _split_tokens(value, _NAME_DELIMITER_RE)


class AllCustomers(DomainModel):
    case: Literal["all_customers"] = "all_customers"


class SegmentListAudience(DomainModel):
    case: Literal["segment_list"] = "segment_list"
    segment_ids: tuple[str, ...] = ()

    @field_validator("segment_ids", mode="before")
    @classmethod
    def normalize_segment_ids(cls, value: Any) -> tuple[str, ...]:
        return normalize_id_tokens(value)


class CustomExpressionAudience(DomainModel):
    """Opaque expression evaluated by an external collaborator."""

    case: Literal["custom_expression"] = "custom_expression"
    expression: str = Field(default="", max_length=2000)


class ExplicitCustomersAudience(DomainModel):
    case: Literal["explicit_customer_ids"] = "explicit_customer_ids"
    customer_ids: tuple[str, ...] = ()

    @field_validator("customer_ids", mode="before")
    @classmethod
    def normalize_customer_ids(cls, value: Any) -> tuple[str, ...]:
        return normalize_id_tokens(value)


Audience = Annotated[
    Union[AllCustomers, SegmentListAudience, CustomExpressionAudience, ExplicitCustomersAudience],
    Field(discriminator="case"),
]


class AllLocations(DomainModel):
    case: Literal["all_locations"] = "all_locations"


class StoreListLocation(DomainModel):
    case: Literal["store_list"] = "store_list"
    store_ids: tuple[str, ...] = ()

    @field_validator("store_ids", mode="before")
    @classmethod
    def normalize_store_ids(cls, value: Any) -> tuple[str, ...]:
        return normalize_id_tokens(value)


class RegionLocation(DomainModel):
    case: Literal["region"] = "region"
    name: str = Field(default="", max_length=120)


LocationRestriction = Annotated[
    Union[AllLocations, StoreListLocation, RegionLocation],
    Field(discriminator="case"),
]


class Schedule(DomainModel):
    active_dates: DateRange | None = None
    active_hours: TimeWindow | None = None
    weekdays: WeekdaySet = WEEKDAY_ORDER


class ConditionSet(DomainModel):
    audience: Audience = Field(default_factory=AllCustomers)
    location: LocationRestriction = Field(default_factory=AllLocations)
    channel: ChannelRestriction = "all"
    usage_limit_per_customer: int = -1
    minimum_purchase: Money | None = None
    schedule: Schedule | None = None
    cooldown_days: DayCount = 0

    @field_validator("usage_limit_per_customer")
    @classmethod
    def validate_usage_limit(cls, value: int) -> int:
        if value == -1 or value >= 1:
            return value
        raise ValueError("Usage limit must be -1 (unlimited) or at least 1")

    @field_validator("minimum_purchase")
    @classmethod
    def validate_minimum_purchase(cls, value):
        if value is not None and value < 0:
            raise ValueError("Minimum purchase cannot be negative")
        return value
