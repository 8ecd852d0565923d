from datetime import date, time
from decimal import Decimal

import pytest
from pydantic import ValidationError

from loyalty_rules.core.money import format_money, round_percent, to_money
from loyalty_rules.schemas.actions import ACTION_TYPES, EmailAction, build_action
from loyalty_rules.schemas.conditions import (
    ConditionSet,
    Schedule,
    SegmentListAudience,
    StoreListLocation,
    normalize_id_tokens,
    normalize_name_list,
)
from loyalty_rules.schemas.rewards import BundleReward, CategoryScope, MultiplierReward, PercentageDiscount
from loyalty_rules.schemas.rule import Rule, new_rule
from loyalty_rules.schemas.triggers import (
    BirthdayTrigger,
    MilestoneTrigger,
    SegmentTransitionTrigger,
    default_trigger,
    switch_trigger,
)
from loyalty_rules.schemas.values import DateRange, TimeWindow, weekday_of


def test_money_rounds_half_up_to_cents():
    assert to_money("10.005") == Decimal("10.01")
    assert to_money(3) == Decimal("3.00")
    assert round_percent(Decimal("16.5")) == 17
    assert format_money(Decimal("4.5"), "EUR ") == "EUR 4.50"


def test_percentage_discount_range_is_enforced():
    assert PercentageDiscount(value="100").value == Decimal("100")
    with pytest.raises(ValidationError):
        PercentageDiscount(value="0")
    with pytest.raises(ValidationError):
        PercentageDiscount(value="100.5")


def test_multiplier_must_exceed_one():
    assert MultiplierReward(factor="1.5").factor == Decimal("1.5")
    with pytest.raises(ValidationError):
        MultiplierReward(factor="1")


def test_bundle_original_price_cannot_undercut_price():
    with pytest.raises(ValidationError):
        BundleReward(price="20.00", original_price="15.00")
    bundle = BundleReward(price="20.00", original_price="20.00")
    assert bundle.original_price == Decimal("20.00")


def test_date_range_and_time_window():
    window = DateRange(start=date(2026, 12, 1), end=date(2026, 12, 31))
    assert window.contains(date(2026, 12, 1))
    assert window.contains(date(2026, 12, 31))
    assert not window.contains(date(2027, 1, 1))
    assert DateRange(start=date(2026, 1, 1)).contains(date(2030, 6, 1))
    with pytest.raises(ValidationError):
        DateRange(start=date(2026, 2, 1), end=date(2026, 1, 1))

    late = TimeWindow(start=time(22, 0), end=time(2, 0))
    assert late.contains(time(23, 30))
    assert late.contains(time(1, 59))
    assert not late.contains(time(2, 0))
    assert not late.contains(time(12, 0))
    with pytest.raises(ValidationError):
        TimeWindow(start=time(9, 0), end=time(9, 0))


def test_weekday_set_is_deduplicated_and_ordered():
    schedule = Schedule(weekdays=["sun", "mon", "sun", "wed"])
    assert schedule.weekdays == ("mon", "wed", "sun")
    assert weekday_of(date(2026, 10, 19)) == "mon"
    with pytest.raises(ValidationError):
        Schedule(weekdays=[])


def test_id_lists_are_split_trimmed_and_deduplicated():
    assert normalize_id_tokens("s1, s2;s3  s1\n") == ("s1", "s2", "s3")
    assert normalize_name_list("Home Goods, Garden ;Home Goods") == ("Home Goods", "Garden")
    assert SegmentListAudience(segment_ids="vip, lapsed").segment_ids == ("vip", "lapsed")
    assert StoreListLocation(store_ids=["a b", "c"]).store_ids == ("a", "b", "c")
    assert CategoryScope(categories="Home Goods\nToys").categories == ("Home Goods", "Toys")


def test_condition_set_usage_limit_and_minimum_purchase():
    assert ConditionSet().usage_limit_per_customer == -1
    assert ConditionSet(usage_limit_per_customer=3).usage_limit_per_customer == 3
    with pytest.raises(ValidationError):
        ConditionSet(usage_limit_per_customer=0)
    with pytest.raises(ValidationError):
        ConditionSet(minimum_purchase="-1")


def test_default_trigger_is_segment_transition_without_segment():
    trigger = default_trigger()
    assert isinstance(trigger, SegmentTransitionTrigger)
    assert trigger.to_segment is None
    assert trigger.from_segment is None


def test_switch_trigger_keeps_only_id():
    original = SegmentTransitionTrigger(to_segment="vip")
    switched = switch_trigger(original, "milestone", threshold=50)
    assert isinstance(switched, MilestoneTrigger)
    assert switched.id == original.id
    assert switched.threshold == 50
    assert "to_segment" not in switched.model_dump()

    back = switch_trigger(switched, "segment_transition")
    assert isinstance(back, SegmentTransitionTrigger)
    assert back.to_segment is None


def test_switch_trigger_rejects_fields_of_other_cases():
    with pytest.raises(ValidationError):
        switch_trigger(default_trigger(), "birthday", threshold=5)
    with pytest.raises(ValidationError):
        switch_trigger(default_trigger(), "lottery")


def test_birthday_trigger_defaults_to_on_day():
    trigger = BirthdayTrigger()
    assert trigger.timing.case == "on_day"
    assert trigger.require_opt_in is False


def test_build_action_covers_every_type_with_defaults():
    for action_type in ACTION_TYPES:
        action = build_action(action_type)
        assert action.type == action_type
        assert action.enabled is True
        assert action.id

    email = build_action("email", template_ref="welcome")
    assert isinstance(email, EmailAction)
    assert email.config.provider == "sendgrid"
    assert email.config.template_ref == "welcome"
    assert build_action("sms").config.provider == "twilio"
    with pytest.raises(ValidationError):
        build_action("fax")
    with pytest.raises(ValidationError):
        build_action("bonus_points", amount=0)


def test_new_rule_starts_as_draft_with_fresh_ids():
    first = new_rule("Win back")
    second = new_rule("Win back")
    assert first.enabled is False
    assert first.id != second.id
    assert first.trigger.id != second.trigger.id
    assert first.reward is None
    assert first.actions == ()


def test_rule_is_immutable_and_rejects_unknown_fields():
    rule = new_rule("Frozen")
    with pytest.raises(ValidationError):
        rule.name = "Changed"
    with pytest.raises(ValidationError):
        Rule(name="x", colour="blue")


def test_action_index_lookup():
    first = build_action("tag", tag_name="a")
    second = build_action("tag", tag_name="b")
    rule = new_rule("Indexed", actions=(first, second))
    assert rule.action_index(second.id) == 1
    with pytest.raises(KeyError):
        rule.action_index("missing")
