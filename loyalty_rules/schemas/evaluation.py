from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from loyalty_rules.schemas.values import Money


EventType = Literal[
    "purchase",
    "visit",
    "referral",
    "points_earned",
    "segment_change",
    "tier_change",
    "scheduled_check",
]
EventChannel = Literal["in_store", "online"]
TierDirectionValue = Literal["upgrade", "downgrade"]


class SnapshotModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", str_strip_whitespace=True)


class LineItem(SnapshotModel):
    sku: str = Field(min_length=1, max_length=120)
    category: str | None = Field(default=None, max_length=120)
    quantity: int = Field(default=1, ge=1)
    unit_price: Money = Decimal("0.00")


class Event(SnapshotModel):
    """Customer event handed to the evaluator by the event/customer data collaborator."""

    event_id: str = Field(min_length=1, max_length=64)
    type: EventType
    occurred_at: datetime
    amount: Money | None = None
    line_items: tuple[LineItem, ...] = ()
    store_id: str | None = None
    region: str | None = None
    channel: EventChannel | None = None
    segment_from: str | None = None
    segment_to: str | None = None
    tier_from: str | None = None
    tier_to: str | None = None
    tier_direction: TierDirectionValue | None = None
    metric_deltas: dict[str, Decimal] = Field(default_factory=dict)
    base_points: int | None = Field(default=None, ge=0)


class CustomerSnapshot(SnapshotModel):
    """Point-in-time customer view; ``metrics`` hold pre-event lifetime values."""

    customer_id: str = Field(min_length=1, max_length=64)
    segment: str | None = None
    tier: str | None = None
    email: str | None = None
    phone: str | None = None
    first_name: str | None = None
    birthday: date | None = None
    birthday_opt_in: bool = False
    last_activity_at: datetime | None = None
    last_contacted_at: datetime | None = None
    metrics: dict[str, Decimal] = Field(default_factory=dict)
    expiring_points: int | None = Field(default=None, ge=0)
    points_expire_at: datetime | None = None
    usage_counts: dict[str, int] = Field(default_factory=dict)
    last_matched_at: dict[str, datetime] = Field(default_factory=dict)


class ResolvedReward(SnapshotModel):
    reward_id: str
    case: str
    amount: Money | None = None
    points: int | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class PlannedAction(SnapshotModel):
    action_id: str
    type: str
    idempotency_key: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class ActionPlan(SnapshotModel):
    rule_id: str
    customer_id: str
    event_id: str
    reward: ResolvedReward | None = None
    actions: tuple[PlannedAction, ...] = ()


class EvaluationOutcome(SnapshotModel):
    rule_id: str
    matched: bool
    reason: str | None = None
    plan: ActionPlan | None = None
