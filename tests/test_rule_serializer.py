import json
from datetime import date, time

import pytest

from loyalty_rules.schemas.actions import ACTION_TYPES, build_action
from loyalty_rules.schemas.conditions import (
    ConditionSet,
    CustomExpressionAudience,
    ExplicitCustomersAudience,
    RegionLocation,
    Schedule,
    SegmentListAudience,
    StoreListLocation,
)
from loyalty_rules.schemas.rewards import (
    BogoBuy,
    BogoDiscount,
    BogoGet,
    BogoGetDifferent,
    BogoSpec,
    BundleItem,
    BundleReward,
    CategoryScope,
    CreditReward,
    DiscountReward,
    FixedAmountDiscount,
    FreeCategory,
    FreeItemReward,
    MultiplierReward,
    PointsReward,
    SkuScope,
    VoucherReward,
    VoucherSku,
)
from loyalty_rules.schemas.rule import ApprovalSettings, new_rule
from loyalty_rules.schemas.triggers import (
    BirthdayDaysBefore,
    BirthdayDuringMonth,
    BirthdayTrigger,
    InactivityTrigger,
    MilestoneTrigger,
    PointsExpiryTrigger,
    ReachesTier,
    SegmentTransitionTrigger,
    TierChangeTrigger,
    TierDowngrade,
)
from loyalty_rules.schemas.values import DateRange, TimeWindow
from loyalty_rules.services.rule_serializer import (
    RuleDocumentError,
    deserialize_rule,
    dumps_rule,
    loads_rule,
    serialize_rule,
)

TRIGGERS = [
    SegmentTransitionTrigger(from_segment="new", to_segment="vip"),
    MilestoneTrigger(metric="lifetime_spend", threshold=5000),
    InactivityTrigger(days=45, exclude_recently_contacted=True),
    BirthdayTrigger(timing=BirthdayDaysBefore(days=3), require_opt_in=True),
    BirthdayTrigger(timing=BirthdayDuringMonth()),
    PointsExpiryTrigger(warning_days=10, min_points=0),
    TierChangeTrigger(direction=TierDowngrade()),
    TierChangeTrigger(direction=ReachesTier(tier="Gold")),
]

REWARDS = [
    None,
    DiscountReward(kind=FixedAmountDiscount(amount="5.00"), applies_to=SkuScope(skus="a1 a2")),
    DiscountReward(
        kind=BogoDiscount(
            spec=BogoSpec(buy=BogoBuy(product="burger", qty=2), get=BogoGet(mode=BogoGetDifferent(skus="fries"), qty=1))
        ),
        applies_to=CategoryScope(categories="Food"),
    ),
    BundleReward(items=(BundleItem(sku="a", display_name="A"),), price="9.99", original_price="15.00"),
    PointsReward(amount=300),
    CreditReward(amount="12.50"),
    MultiplierReward(factor="2.25"),
    VoucherReward(voucher=VoucherSku(sku="free-coffee")),
    FreeItemReward(item=FreeCategory(category="Snacks")),
]

CONDITIONS = [
    ConditionSet(),
    ConditionSet(
        audience=SegmentListAudience(segment_ids="vip lapsed"),
        location=StoreListLocation(store_ids="s1,s2"),
        channel="online_only",
        usage_limit_per_customer=2,
        minimum_purchase="25.00",
        cooldown_days=7,
        schedule=Schedule(
            active_dates=DateRange(start=date(2026, 11, 1), end=date(2026, 12, 31)),
            active_hours=TimeWindow(start=time(18, 0), end=time(2, 0)),
            weekdays=("fri", "sat"),
        ),
    ),
    ConditionSet(audience=CustomExpressionAudience(expression="visits > 3"), location=RegionLocation(name="North")),
    ConditionSet(audience=ExplicitCustomersAudience(customer_ids="c1;c2"), channel="in_store_only"),
]


def _all_actions():
    return tuple(build_action(action_type, enabled=index % 2 == 0) for index, action_type in enumerate(ACTION_TYPES))


@pytest.mark.parametrize("trigger", TRIGGERS, ids=lambda item: item.case)
def test_round_trip_every_trigger(trigger):
    rule = new_rule("Trigger round trip", trigger=trigger, actions=_all_actions())
    assert deserialize_rule(serialize_rule(rule)) == rule
    assert loads_rule(dumps_rule(rule)) == rule


@pytest.mark.parametrize("reward", REWARDS, ids=lambda item: item.case if item else "none")
def test_round_trip_every_reward(reward):
    rule = new_rule("Reward round trip", reward=reward, approval=ApprovalSettings(requires_approval=True, min_roi="1.5"))
    assert loads_rule(dumps_rule(rule)) == rule


@pytest.mark.parametrize("conditions", CONDITIONS)
def test_round_trip_every_condition_shape(conditions):
    rule = new_rule("Condition round trip", conditions=conditions)
    assert deserialize_rule(json.loads(json.dumps(serialize_rule(rule)))) == rule


def test_serialized_document_uses_case_tags_and_string_money():
    rule = new_rule("Tags", reward=CreditReward(amount="12.50"), actions=(build_action("tag", tag_name="x"),))
    document = serialize_rule(rule)
    assert document["trigger"]["case"] == "segment_transition"
    assert document["reward"] == {"id": rule.reward.id, "case": "credit", "amount": "12.50"}
    assert document["actions"][0]["type"] == "tag"
    assert document["enabled"] is False


def test_unknown_trigger_case_is_rejected():
    document = serialize_rule(new_rule("Unknown"))
    document["trigger"]["case"] = "full_moon"
    with pytest.raises(RuleDocumentError) as exc_info:
        deserialize_rule(document)
    assert any(err["field"].startswith("trigger") for err in exc_info.value.errors)


def test_unknown_reward_and_action_cases_are_rejected():
    document = serialize_rule(new_rule("Unknown"))
    document["reward"] = {"case": "lottery_ticket"}
    with pytest.raises(RuleDocumentError):
        deserialize_rule(document)

    document = serialize_rule(new_rule("Unknown"))
    document["actions"] = [{"type": "carrier_pigeon", "config": {}}]
    with pytest.raises(RuleDocumentError):
        deserialize_rule(document)


def test_fields_from_another_case_are_rejected():
    document = serialize_rule(new_rule("Stale"))
    document["trigger"]["threshold"] = 10
    with pytest.raises(RuleDocumentError):
        deserialize_rule(document)


def test_non_object_and_bad_json_are_rejected():
    with pytest.raises(RuleDocumentError):
        deserialize_rule(["not", "a", "rule"])
    with pytest.raises(RuleDocumentError):
        loads_rule("{not json")
