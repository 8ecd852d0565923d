"""Decision layer: does a rule fire for this event and customer, and what should run.

Evaluation is pure. It reads the rule, the event, the customer snapshot and
``now``; it never sends anything and never updates counters. Callers that act
on a plan own the usage counter and must check-and-increment it atomically
(see ``usage_counter_service.try_consume_usage``) before executing the plan.
"""

import json
import logging
import re
from collections.abc import Callable, Iterable
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from loyalty_rules.core.config import settings
from loyalty_rules.core.observability import log_engine_event
from loyalty_rules.schemas.actions import (
    ActionInstance,
    BonusPointsAction,
    CampaignEnrollAction,
    EmailAction,
    ManagerAlertAction,
    PushAction,
    SmsAction,
    TagAction,
    TierAdjustAction,
    VoucherAction,
)
from loyalty_rules.schemas.conditions import (
    ConditionSet,
    CustomExpressionAudience,
    ExplicitCustomersAudience,
    RegionLocation,
    SegmentListAudience,
    StoreListLocation,
)
from loyalty_rules.schemas.evaluation import (
    ActionPlan,
    CustomerSnapshot,
    EvaluationOutcome,
    Event,
    PlannedAction,
    ResolvedReward,
)
from loyalty_rules.schemas.rewards import VoucherValue
from loyalty_rules.schemas.rule import Rule
from loyalty_rules.schemas.triggers import (
    BirthdayDaysBefore,
    BirthdayDuringMonth,
    BirthdayDuringWeek,
    BirthdayTrigger,
    InactivityTrigger,
    MilestoneTrigger,
    PointsExpiryTrigger,
    ReachesTier,
    SegmentTransitionTrigger,
    TierChangeTrigger,
    TierDowngrade,
    TierUpgrade,
    Trigger,
)
from loyalty_rules.schemas.values import weekday_of
from loyalty_rules.services.reward_service import resolve_reward

ExpressionEvaluator = Callable[[str, CustomerSnapshot, Event], bool]

_TEMPLATE_VAR_RE = re.compile(r"{{\s*([a-zA-Z0-9_.]+)\s*}}")


class _MissingData(Exception):
    def __init__(self, field: str):
        super().__init__(field)
        self.field = field


def _require(value: Any, field: str) -> Any:
    if value is None:
        raise _MissingData(field)
    if isinstance(value, str) and not value.strip():
        raise _MissingData(field)
    return value


def evaluate(
    rule: Rule,
    event: Event,
    customer: CustomerSnapshot,
    now: datetime,
    *,
    expression_evaluator: ExpressionEvaluator | None = None,
) -> ActionPlan | None:
    """The ordered action plan when ``rule`` matches, otherwise ``None``."""
    return explain(rule, event, customer, now, expression_evaluator=expression_evaluator).plan


def evaluate_rules(
    rules: Iterable[Rule],
    event: Event,
    customer: CustomerSnapshot,
    now: datetime,
    *,
    expression_evaluator: ExpressionEvaluator | None = None,
) -> list[ActionPlan]:
    plans: list[ActionPlan] = []
    for rule in rules:
        plan = evaluate(rule, event, customer, now, expression_evaluator=expression_evaluator)
        if plan is not None:
            plans.append(plan)
    return plans


def explain(
    rule: Rule,
    event: Event,
    customer: CustomerSnapshot,
    now: datetime,
    *,
    expression_evaluator: ExpressionEvaluator | None = None,
) -> EvaluationOutcome:
    """Same decision as ``evaluate`` plus the reason a rule did not match."""
    if not rule.enabled:
        return EvaluationOutcome(rule_id=rule.id, matched=False, reason="Rule is not live")

    now = _aware(now)
    try:
        reason = trigger_mismatch(rule.trigger, event, customer, now)
        if reason is None:
            reason = condition_mismatch(
                rule,
                event,
                customer,
                now,
                expression_evaluator=expression_evaluator,
            )
    except _MissingData as missing:
        log_engine_event(
            logging.WARNING,
            "evaluation_missing_data",
            rule_id=rule.id,
            event_id=event.event_id,
            customer_id=customer.customer_id,
            field=missing.field,
        )
        return EvaluationOutcome(
            rule_id=rule.id,
            matched=False,
            reason=f"Missing data: {missing.field}",
        )

    if reason is not None:
        return EvaluationOutcome(rule_id=rule.id, matched=False, reason=reason)

    resolved = resolve_reward(rule.reward, event) if rule.reward is not None else None
    context = _template_context(rule, event, customer, resolved)
    plan = ActionPlan(
        rule_id=rule.id,
        customer_id=customer.customer_id,
        event_id=event.event_id,
        reward=resolved,
        actions=tuple(
            _plan_action(rule, action, event, customer, context)
            for action in rule.actions
            if action.enabled
        ),
    )
    log_engine_event(
        logging.DEBUG,
        "evaluation_matched",
        rule_id=rule.id,
        event_id=event.event_id,
        customer_id=customer.customer_id,
        actions=len(plan.actions),
    )
    return EvaluationOutcome(rule_id=rule.id, matched=True, plan=plan)


def trigger_mismatch(trigger: Trigger, event: Event, customer: CustomerSnapshot, now: datetime) -> str | None:
    """``None`` when the trigger fires, else the reason it does not."""
    if isinstance(trigger, SegmentTransitionTrigger):
        return _segment_transition_mismatch(trigger, event)
    if isinstance(trigger, MilestoneTrigger):
        return _milestone_mismatch(trigger, event, customer)
    if isinstance(trigger, InactivityTrigger):
        return _inactivity_mismatch(trigger, event, customer, now)
    if isinstance(trigger, BirthdayTrigger):
        return _birthday_mismatch(trigger, event, customer, now)
    if isinstance(trigger, PointsExpiryTrigger):
        return _points_expiry_mismatch(trigger, event, customer, now)
    return _tier_change_mismatch(trigger, event)


def condition_mismatch(
    rule: Rule,
    event: Event,
    customer: CustomerSnapshot,
    now: datetime,
    *,
    expression_evaluator: ExpressionEvaluator | None = None,
) -> str | None:
    conditions = rule.conditions
    checks = (
        lambda: _audience_mismatch(conditions, event, customer, expression_evaluator),
        lambda: _location_mismatch(conditions, event),
        lambda: _channel_mismatch(conditions, event),
        lambda: _schedule_mismatch(conditions, event),
        lambda: _usage_mismatch(rule, customer),
        lambda: _cooldown_mismatch(rule, customer, now),
        lambda: _minimum_purchase_mismatch(conditions, event),
    )
    for run_check in checks:
        reason = run_check()
        if reason is not None:
            return reason
    return None


def metric_delta(metric: str, event: Event) -> Decimal:
    """How much ``event`` moves a lifetime metric."""
    if metric in event.metric_deltas:
        return event.metric_deltas[metric]
    if metric == "purchase_count" and event.type == "purchase":
        return Decimal(1)
    if metric == "lifetime_spend" and event.type == "purchase":
        return Decimal(_require(event.amount, "event.amount"))
    if metric == "points_earned" and event.base_points is not None:
        return Decimal(event.base_points)
    if metric == "referrals" and event.type == "referral":
        return Decimal(1)
    return Decimal(0)


def _segment_transition_mismatch(trigger: SegmentTransitionTrigger, event: Event) -> str | None:
    if event.type != "segment_change":
        return "Event is not a segment change"
    if not trigger.to_segment:
        return "Trigger has no target segment"
    to_segment = _require(event.segment_to, "event.segment_to")
    if to_segment != trigger.to_segment:
        return f"Customer moved to '{to_segment}', not '{trigger.to_segment}'"
    if trigger.from_segment is not None:
        from_segment = _require(event.segment_from, "event.segment_from")
        if from_segment != trigger.from_segment:
            return f"Customer moved from '{from_segment}', not '{trigger.from_segment}'"
    return None


def _milestone_mismatch(trigger: MilestoneTrigger, event: Event, customer: CustomerSnapshot) -> str | None:
    before = Decimal(_require(customer.metrics.get(trigger.metric), f"customer.metrics.{trigger.metric}"))
    after = before + metric_delta(trigger.metric, event)
    threshold = Decimal(trigger.threshold)
    if before >= threshold:
        return f"{trigger.metric} was already at or above {trigger.threshold}"
    if after < threshold:
        return f"{trigger.metric} has not reached {trigger.threshold}"
    return None


def _inactivity_mismatch(
    trigger: InactivityTrigger,
    event: Event,
    customer: CustomerSnapshot,
    now: datetime,
) -> str | None:
    if event.type != "scheduled_check":
        return "Inactivity is only checked on scheduled checks"
    last_activity = _aware(_require(customer.last_activity_at, "customer.last_activity_at"))
    if now - last_activity < timedelta(days=trigger.days):
        return f"Customer was active within the last {trigger.days} days"
    if trigger.exclude_recently_contacted:
        last_contacted = _aware(_require(customer.last_contacted_at, "customer.last_contacted_at"))
        window = timedelta(days=settings.recent_contact_window_days)
        if now - last_contacted < window:
            return "Customer was contacted recently"
    return None


def _birthday_mismatch(
    trigger: BirthdayTrigger,
    event: Event,
    customer: CustomerSnapshot,
    now: datetime,
) -> str | None:
    if event.type != "scheduled_check":
        return "Birthdays are only checked on scheduled checks"
    birthday = _require(customer.birthday, "customer.birthday")
    if trigger.require_opt_in and not customer.birthday_opt_in:
        return "Customer has not opted in to birthday messages"

    today = now.date()
    timing = trigger.timing
    if isinstance(timing, BirthdayDaysBefore):
        target = today + timedelta(days=timing.days)
        matched = birthday_in_year(birthday, target.year) == target
    elif isinstance(timing, BirthdayDuringWeek):
        # ISO weeks straddle New Year, so the neighbouring years' occurrences count too.
        week = today.isocalendar()[:2]
        matched = any(
            birthday_in_year(birthday, year).isocalendar()[:2] == week
            for year in (today.year - 1, today.year, today.year + 1)
        )
    elif isinstance(timing, BirthdayDuringMonth):
        matched = birthday.month == today.month
    else:
        matched = birthday_in_year(birthday, today.year) == today
    return None if matched else f"Birthday timing '{timing.case}' does not match today"


def birthday_in_year(birthday: date, year: int) -> date:
    """This year's occurrence; 29 February falls on the 28th in common years."""
    try:
        return birthday.replace(year=year)
    except ValueError:
        return date(year, 2, 28)


def _points_expiry_mismatch(
    trigger: PointsExpiryTrigger,
    event: Event,
    customer: CustomerSnapshot,
    now: datetime,
) -> str | None:
    if event.type != "scheduled_check":
        return "Points expiry is only checked on scheduled checks"
    expiring = _require(customer.expiring_points, "customer.expiring_points")
    expires_at = _aware(_require(customer.points_expire_at, "customer.points_expire_at"))
    if expiring <= 0 or expiring < trigger.min_points:
        return f"Fewer than {max(trigger.min_points, 1)} points are expiring"
    days_left = (expires_at.date() - now.date()).days
    if days_left < 0 or days_left > trigger.warning_days:
        return f"Points do not expire within {trigger.warning_days} days"
    return None


def _tier_change_mismatch(trigger: TierChangeTrigger, event: Event) -> str | None:
    if event.type != "tier_change":
        return "Event is not a tier change"
    tier_to = _require(event.tier_to, "event.tier_to")
    direction = trigger.direction
    if isinstance(direction, ReachesTier):
        if not direction.tier or tier_to.casefold() != direction.tier.casefold():
            return f"Customer reached '{tier_to}', not '{direction.tier}'"
        return None
    if isinstance(direction, (TierUpgrade, TierDowngrade)):
        actual = _require(event.tier_direction, "event.tier_direction")
        if actual != direction.case:
            return f"Tier change was a {actual}, not a {direction.case}"
        return None
    if event.tier_from is not None and event.tier_from.casefold() == tier_to.casefold():
        return "Tier did not change"
    return None


def _audience_mismatch(
    conditions: ConditionSet,
    event: Event,
    customer: CustomerSnapshot,
    expression_evaluator: ExpressionEvaluator | None,
) -> str | None:
    audience = conditions.audience
    if isinstance(audience, SegmentListAudience):
        segment = _require(customer.segment, "customer.segment")
        if segment not in audience.segment_ids:
            return f"Segment '{segment}' is not targeted"
    elif isinstance(audience, ExplicitCustomersAudience):
        if customer.customer_id not in audience.customer_ids:
            return "Customer is not in the explicit audience"
    elif isinstance(audience, CustomExpressionAudience):
        if expression_evaluator is None:
            raise _MissingData("audience.expression_evaluator")
        try:
            included = bool(expression_evaluator(audience.expression, customer, event))
        except Exception as exc:  # noqa: BLE001
            log_engine_event(
                logging.WARNING,
                "audience_expression_failed",
                customer_id=customer.customer_id,
                event_id=event.event_id,
                error=str(exc)[:255],
            )
            return "Audience expression could not be evaluated"
        if not included:
            return "Customer does not match the audience expression"
    return None


def _location_mismatch(conditions: ConditionSet, event: Event) -> str | None:
    location = conditions.location
    if isinstance(location, StoreListLocation):
        store_id = _require(event.store_id, "event.store_id")
        if store_id not in location.store_ids:
            return f"Store '{store_id}' is not included"
    elif isinstance(location, RegionLocation):
        region = _require(event.region, "event.region")
        if region.casefold() != location.name.casefold():
            return f"Region '{region}' is not included"
    return None


def _channel_mismatch(conditions: ConditionSet, event: Event) -> str | None:
    if conditions.channel == "all":
        return None
    channel = _require(event.channel, "event.channel")
    wanted = "in_store" if conditions.channel == "in_store_only" else "online"
    if channel != wanted:
        return f"Channel '{channel}' is excluded"
    return None


def _schedule_mismatch(conditions: ConditionSet, event: Event) -> str | None:
    schedule = conditions.schedule
    if schedule is None:
        return None
    moment = event.occurred_at
    if schedule.active_dates is not None and not schedule.active_dates.contains(moment.date()):
        return "Event is outside the active dates"
    if weekday_of(moment.date()) not in schedule.weekdays:
        return "Event is outside the active weekdays"
    if schedule.active_hours is not None and not schedule.active_hours.contains(moment.time()):
        return "Event is outside the active hours"
    return None


def _usage_mismatch(rule: Rule, customer: CustomerSnapshot) -> str | None:
    limit = rule.conditions.usage_limit_per_customer
    if limit == -1:
        return None
    used = customer.usage_counts.get(rule.id, 0)
    if used >= limit:
        return f"Usage limit of {limit} reached"
    return None


def _cooldown_mismatch(rule: Rule, customer: CustomerSnapshot, now: datetime) -> str | None:
    cooldown_days = rule.conditions.cooldown_days
    if cooldown_days <= 0:
        return None
    last_matched = customer.last_matched_at.get(rule.id)
    if last_matched is not None and now - _aware(last_matched) < timedelta(days=cooldown_days):
        return f"Rule matched for this customer within the last {cooldown_days} days"
    return None


def _minimum_purchase_mismatch(conditions: ConditionSet, event: Event) -> str | None:
    minimum = conditions.minimum_purchase
    if minimum is None:
        return None
    amount = event.amount
    if amount is None and event.line_items:
        amount = sum((line.unit_price * line.quantity for line in event.line_items), Decimal("0"))
    amount = _require(amount, "event.amount")
    if amount < minimum:
        return f"Purchase of {amount} is below the minimum of {minimum}"
    return None


def _plan_action(
    rule: Rule,
    action: ActionInstance,
    event: Event,
    customer: CustomerSnapshot,
    context: dict[str, Any],
) -> PlannedAction:
    parameters: dict[str, Any] = {"customer_id": customer.customer_id}
    if isinstance(action, EmailAction):
        parameters.update(
            provider=action.config.provider,
            template_ref=action.config.template_ref,
            recipient=customer.email,
            merge_data=_merge_data(context),
        )
    elif isinstance(action, SmsAction):
        parameters.update(
            provider=action.config.provider,
            recipient=customer.phone,
            message=_render_template(action.config.message_body, context),
        )
    elif isinstance(action, PushAction):
        parameters.update(message=_render_template(action.config.message_body, context))
    elif isinstance(action, VoucherAction):
        voucher = action.config.voucher
        if isinstance(voucher, VoucherValue):
            parameters.update(voucher_kind="value", amount=str(voucher.amount))
        else:
            parameters.update(voucher_kind="sku", sku=voucher.sku)
    elif isinstance(action, BonusPointsAction):
        parameters.update(points=action.config.amount)
    elif isinstance(action, ManagerAlertAction):
        parameters.update(
            recipient_role=action.config.recipient_role,
            summary=f"Rule '{rule.name}' matched for customer {customer.customer_id}",
        )
    elif isinstance(action, CampaignEnrollAction):
        parameters.update(campaign_ref=action.config.campaign_ref)
    elif isinstance(action, TierAdjustAction):
        parameters.update(mode=action.config.mode, current_tier=customer.tier)
    elif isinstance(action, TagAction):
        parameters.update(tag_name=action.config.tag_name)

    return PlannedAction(
        action_id=action.id,
        type=action.type,
        idempotency_key=f"{rule.id}:{event.event_id}:{action.id}",
        parameters=parameters,
    )


def _template_context(
    rule: Rule,
    event: Event,
    customer: CustomerSnapshot,
    reward: ResolvedReward | None,
) -> dict[str, Any]:
    return {
        "rule": {"id": rule.id, "name": rule.name},
        "event": event.model_dump(mode="json"),
        "customer": customer.model_dump(mode="json"),
        "reward": reward.model_dump(mode="json") if reward is not None else None,
    }


def _merge_data(context: dict[str, Any]) -> dict[str, Any]:
    customer = context["customer"]
    return {
        "first_name": customer.get("first_name"),
        "tier": customer.get("tier"),
        "segment": customer.get("segment"),
        "rule_name": context["rule"]["name"],
        "reward": context["reward"],
    }


def _resolve_path(container: Any, path: str) -> Any:
    current: Any = container
    for part in [item for item in (path or "").strip().split(".") if item]:
        if isinstance(current, dict):
            if part not in current:
                return None
            current = current[part]
            continue
        if isinstance(current, list):
            if not part.isdigit() or int(part) >= len(current):
                return None
            current = current[int(part)]
            continue
        return None
    return current


def _render_template(template: str, context: dict[str, Any]) -> str:
    def _replace(match: re.Match[str]) -> str:
        resolved = _resolve_path(context, match.group(1))
        if resolved is None:
            return ""
        if isinstance(resolved, (dict, list)):
            return json.dumps(resolved, ensure_ascii=True)
        return str(resolved)

    return _TEMPLATE_VAR_RE.sub(_replace, template).strip()


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
