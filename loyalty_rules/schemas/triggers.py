from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter

from loyalty_rules.schemas.values import DayCount, DomainModel, EntityId, PositiveDayCount, id_field


MilestoneMetric = Literal["purchase_count", "lifetime_spend", "points_earned", "referrals"]
TriggerCase = Literal[
    "segment_transition",
    "milestone",
    "inactivity",
    "birthday",
    "points_expiry",
    "tier_change",
]


class BirthdayDaysBefore(DomainModel):
    case: Literal["days_before"] = "days_before"
    days: DayCount = 7


class BirthdayOnDay(DomainModel):
    case: Literal["on_day"] = "on_day"


class BirthdayDuringWeek(DomainModel):
    case: Literal["during_week"] = "during_week"


class BirthdayDuringMonth(DomainModel):
    case: Literal["during_month"] = "during_month"


BirthdayTiming = Annotated[
    Union[BirthdayDaysBefore, BirthdayOnDay, BirthdayDuringWeek, BirthdayDuringMonth],
    Field(discriminator="case"),
]


class AnyTierChange(DomainModel):
    case: Literal["any"] = "any"


class TierUpgrade(DomainModel):
    case: Literal["upgrade"] = "upgrade"


class TierDowngrade(DomainModel):
    case: Literal["downgrade"] = "downgrade"


class ReachesTier(DomainModel):
    case: Literal["reaches_tier"] = "reaches_tier"
    tier: str = Field(default="", max_length=120)


TierDirection = Annotated[
    Union[AnyTierChange, TierUpgrade, TierDowngrade, ReachesTier],
    Field(discriminator="case"),
]


class SegmentTransitionTrigger(DomainModel):
    """Customer moves into ``to_segment``; ``from_segment=None`` means from any segment."""

    id: EntityId = id_field()
    case: Literal["segment_transition"] = "segment_transition"
    from_segment: str | None = Field(default=None, max_length=120)
    to_segment: str | None = Field(default=None, max_length=120)


class MilestoneTrigger(DomainModel):
    """Lifetime metric crosses ``threshold`` on the evaluated event.

    ``lifetime_spend`` thresholds are whole currency units.
    """

    id: EntityId = id_field()
    case: Literal["milestone"] = "milestone"
    metric: MilestoneMetric = "purchase_count"
    threshold: int = Field(default=100, gt=0)


class InactivityTrigger(DomainModel):
    id: EntityId = id_field()
    case: Literal["inactivity"] = "inactivity"
    days: PositiveDayCount = 30
    exclude_recently_contacted: bool = False


class BirthdayTrigger(DomainModel):
    id: EntityId = id_field()
    case: Literal["birthday"] = "birthday"
    timing: BirthdayTiming = Field(default_factory=BirthdayOnDay)
    require_opt_in: bool = False


class PointsExpiryTrigger(DomainModel):
    id: EntityId = id_field()
    case: Literal["points_expiry"] = "points_expiry"
    warning_days: PositiveDayCount = 14
    min_points: int = Field(default=100, ge=0)


class TierChangeTrigger(DomainModel):
    id: EntityId = id_field()
    case: Literal["tier_change"] = "tier_change"
    direction: TierDirection = Field(default_factory=AnyTierChange)


Trigger = Annotated[
    Union[
        SegmentTransitionTrigger,
        MilestoneTrigger,
        InactivityTrigger,
        BirthdayTrigger,
        PointsExpiryTrigger,
        TierChangeTrigger,
    ],
    Field(discriminator="case"),
]

TRIGGER_CASES: tuple[str, ...] = (
    "segment_transition",
    "milestone",
    "inactivity",
    "birthday",
    "points_expiry",
    "tier_change",
)

trigger_adapter: TypeAdapter[Trigger] = TypeAdapter(Trigger)


def default_trigger() -> SegmentTransitionTrigger:
    return SegmentTransitionTrigger()


def switch_trigger(current: Trigger, case: str, **fields: Any) -> Trigger:
    """Build a fresh trigger of ``case``; only the stable id carries over."""
    payload = {key: value for key, value in fields.items() if key not in {"id", "case"}}
    payload["id"] = current.id
    payload["case"] = case
    return trigger_adapter.validate_python(payload)
