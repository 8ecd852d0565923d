from decimal import Decimal

from loyalty_rules.schemas.actions import build_action
from loyalty_rules.schemas.conditions import ConditionSet, RegionLocation, SegmentListAudience
from loyalty_rules.schemas.rewards import (
    BogoBuy,
    BogoDiscount,
    BogoGet,
    BogoGetDifferent,
    BogoGetEqualOrLesser,
    BogoSpec,
    BundleItem,
    BundleReward,
    DiscountReward,
    PointsReward,
)
from loyalty_rules.schemas.rule import ApprovalSettings, new_rule
from loyalty_rules.schemas.triggers import SegmentTransitionTrigger
from loyalty_rules.services import rule_editor
from loyalty_rules.services.rule_validator import check, has_blocking


def _codes(issues):
    return {issue.code for issue in issues}


def _ready_rule(**fields):
    fields.setdefault("trigger", SegmentTransitionTrigger(to_segment="vip"))
    fields.setdefault("reward", PointsReward(amount=200))
    return new_rule("VIP welcome", **fields)


def test_ready_rule_has_no_blocking_issues():
    issues = check(_ready_rule())
    assert not has_blocking(issues)


def test_draft_may_be_incomplete_but_issues_are_reported():
    rule = new_rule()
    issues = check(rule)
    assert "segment_required" in _codes(issues)
    assert "name_required" not in _codes(issues)
    assert "rule_has_no_effect" not in _codes(issues)


def test_live_candidate_needs_name_and_effect():
    candidate = new_rule(trigger=SegmentTransitionTrigger(to_segment="vip")).model_copy(update={"enabled": True})
    codes = _codes(check(candidate))
    assert {"name_required", "rule_has_no_effect"} <= codes


def test_disabled_actions_do_not_count_as_effect():
    action = build_action("tag", enabled=False, tag_name="vip")
    rule = _ready_rule(reward=None, actions=(action,)).model_copy(update={"enabled": True})
    assert "rule_has_no_effect" in _codes(check(rule))


def test_empty_reference_lists_are_blocking():
    conditions = ConditionSet(audience=SegmentListAudience(), location=RegionLocation())
    issues = check(_ready_rule(conditions=conditions))
    paths = {issue.path for issue in issues if issue.severity == "blocking"}
    assert "conditions.audience.segment_ids" in paths
    assert "conditions.location.name" in paths


def test_bogo_same_mode_only_requires_buy_product():
    same = DiscountReward(kind=BogoDiscount(spec=BogoSpec(buy=BogoBuy(product="latte"))))
    assert not has_blocking(check(_ready_rule(reward=same)))

    lesser = DiscountReward(
        kind=BogoDiscount(spec=BogoSpec(buy=BogoBuy(product="latte"), get=BogoGet(mode=BogoGetEqualOrLesser())))
    )
    assert not has_blocking(check(_ready_rule(reward=lesser)))

    missing_product = DiscountReward(kind=BogoDiscount())
    assert "bogo_buy_product_required" in _codes(check(_ready_rule(reward=missing_product)))


def test_bogo_different_mode_requires_get_skus():
    reward = DiscountReward(
        kind=BogoDiscount(spec=BogoSpec(buy=BogoBuy(product="burger"), get=BogoGet(mode=BogoGetDifferent())))
    )
    issues = check(_ready_rule(reward=reward))
    assert "bogo_get_skus_required" in _codes(issues)

    filled = DiscountReward(
        kind=BogoDiscount(
            spec=BogoSpec(buy=BogoBuy(product="burger"), get=BogoGet(mode=BogoGetDifferent(skus="fries")))
        )
    )
    assert not has_blocking(check(_ready_rule(reward=filled)))


def test_bundle_needs_items_with_skus():
    empty = BundleReward(price="10.00")
    assert "bundle_items_required" in _codes(check(_ready_rule(reward=empty)))
    unnamed = BundleReward(items=(BundleItem(display_name="Mystery"),), price="10.00")
    issues = check(_ready_rule(reward=unnamed))
    assert any(issue.path == "reward.items.0.sku" for issue in issues)


def test_enabled_action_fields_are_checked_by_path():
    email = build_action("email")
    sms = build_action("sms", enabled=False)
    issues = check(_ready_rule(actions=(sms, email)))
    paths = {issue.path for issue in issues}
    assert "actions.1.config.template_ref" in paths
    assert not any(path.startswith("actions.0") for path in paths)


def test_duplicate_action_ids_are_blocking():
    action = build_action("tag", tag_name="vip")
    issues = check(_ready_rule(actions=(action, action)))
    assert "duplicate_action_id" in _codes(issues)


def test_approval_without_limits_is_only_a_warning():
    rule = _ready_rule(approval=ApprovalSettings(requires_approval=True))
    issues = check(rule)
    assert [issue.severity for issue in issues] == ["warning"]
    assert not has_blocking(issues)

    capped = _ready_rule(approval=ApprovalSettings(requires_approval=True, budget_cap=Decimal("500")))
    assert check(capped) == []


def test_promotion_refused_until_blocking_issues_are_fixed():
    draft = new_rule("Untargeted", reward=PointsReward(amount=50))
    rule, issues = rule_editor.transition_to_live(draft)
    assert rule is draft
    assert rule.enabled is False
    assert "segment_required" in _codes(issues)

    fixed, _ = rule_editor.set_trigger(draft, "segment_transition", to_segment="vip")
    live, issues = rule_editor.transition_to_live(fixed)
    assert live.enabled is True
    assert not has_blocking(issues)

    paused, _ = rule_editor.transition_to_draft(live)
    assert paused.enabled is False


def test_live_rule_cannot_be_edited_into_blocking_state():
    live, _ = rule_editor.transition_to_live(_ready_rule())
    assert live.enabled

    unchanged, issues = rule_editor.set_trigger(live, "segment_transition")
    assert unchanged is live
    assert "segment_required" in _codes(issues)

    unchanged, issues = rule_editor.update_rule(live, name="")
    assert unchanged is live
    assert "name_required" in _codes(issues)


def test_update_rule_cannot_toggle_enabled_or_id():
    rule = _ready_rule()
    same, issues = rule_editor.update_rule(rule, enabled=True)
    assert same is rule
    assert _codes(issues) == {"use_transition"}
    same, issues = rule_editor.update_rule(rule, id="other")
    assert _codes(issues) == {"immutable_id"}


def test_structurally_invalid_edit_returns_previous_rule():
    rule = _ready_rule()
    same, issues = rule_editor.set_reward(rule, {"case": "points", "amount": 0})
    assert same is rule
    assert has_blocking(issues)
    assert issues[0].path.startswith("reward")


def test_action_ordering_and_soft_remove():
    rule = _ready_rule()
    rule, _ = rule_editor.add_action(rule, "email", template_ref="welcome")
    rule, _ = rule_editor.add_action(rule, "tag", tag_name="vip")
    rule, _ = rule_editor.add_action(rule, {"type": "bonus_points", "config": {"amount": 25}})
    email_id, tag_id, bonus_id = (action.id for action in rule.actions)

    rule, _ = rule_editor.move_action(rule, bonus_id, 0)
    assert [action.id for action in rule.actions] == [bonus_id, email_id, tag_id]

    rule, _ = rule_editor.set_action_enabled(rule, email_id, False)
    assert rule.actions[1].enabled is False
    assert rule.actions[1].config.template_ref == "welcome"

    rule, _ = rule_editor.remove_action(rule, tag_id)
    assert [action.id for action in rule.actions] == [bonus_id, email_id]

    same, issues = rule_editor.move_action(rule, email_id, 5)
    assert same is rule
    assert _codes(issues) == {"index_out_of_range"}
    same, issues = rule_editor.remove_action(rule, "missing")
    assert _codes(issues) == {"action_not_found"}


def test_update_action_config_merges_fields():
    rule, _ = rule_editor.add_action(_ready_rule(), "sms", message_body="Hi")
    action_id = rule.actions[0].id
    rule, _ = rule_editor.update_action_config(rule, action_id, provider="Vonage")
    assert rule.actions[0].config.provider == "Vonage"
    assert rule.actions[0].config.message_body == "Hi"

    same, issues = rule_editor.update_action_config(rule, action_id, colour="red")
    assert same is rule
    assert has_blocking(issues)


def test_bogo_sku_list_check_only_applies_to_different_mode():
    different = DiscountReward(
        kind=BogoDiscount(spec=BogoSpec(buy=BogoBuy(product="", qty=1), get=BogoGet(mode=BogoGetDifferent(), qty=1)))
    )
    assert "bogo_get_skus_required" in _codes(check(_ready_rule(reward=different)))

    same = DiscountReward(kind=BogoDiscount(spec=BogoSpec(buy=BogoBuy(product="", qty=1), get=BogoGet(qty=1))))
    codes = _codes(check(_ready_rule(reward=same)))
    assert "bogo_get_skus_required" not in codes
    assert "bogo_buy_product_required" in codes


def test_malformed_changes_are_flagged_apart_from_incomplete_rules():
    live, _ = rule_editor.transition_to_live(_ready_rule(actions=(build_action("tag", tag_name="vip"),)))
    action_id = live.actions[0].id

    same, issues = rule_editor.update_action_config(live, action_id, colour="red")
    assert same is live
    assert issues and all(issue.structural for issue in issues)

    same, issues = rule_editor.update_action_config(live, action_id, tag_name="")
    assert same is live
    assert _codes(issues) == {"action_field_required"}
    assert not any(issue.structural for issue in issues)
