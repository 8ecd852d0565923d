from dataclasses import dataclass
from typing import Literal

from pydantic import ValidationError

from loyalty_rules.schemas.actions import (
    ActionInstance,
    CampaignEnrollAction,
    EmailAction,
    ManagerAlertAction,
    PushAction,
    SmsAction,
    TagAction,
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
from loyalty_rules.schemas.rewards import (
    AppliesTo,
    BogoDiscount,
    BundleReward,
    CategoryScope,
    DiscountReward,
    FreeItemReward,
    FreeSku,
    Reward,
    SkuScope,
    VoucherReward,
    VoucherSku,
)
from loyalty_rules.schemas.rule import Rule
from loyalty_rules.schemas.triggers import ReachesTier, SegmentTransitionTrigger, TierChangeTrigger, Trigger

IssueSeverity = Literal["blocking", "warning"]


@dataclass(frozen=True)
class ValidationIssue:
    severity: IssueSeverity
    path: str
    code: str
    message: str
    # Set when the change itself is malformed rather than the resulting rule incomplete.
    structural: bool = False


def blocking_issue(path: str, code: str, message: str, *, structural: bool = False) -> ValidationIssue:
    return ValidationIssue(severity="blocking", path=path, code=code, message=message, structural=structural)


def _warning(path: str, code: str, message: str) -> ValidationIssue:
    return ValidationIssue(severity="warning", path=path, code=code, message=message)


def check(rule: Rule) -> list[ValidationIssue]:
    """Every outstanding problem on ``rule``; never raises."""
    issues: list[ValidationIssue] = []

    if rule.enabled and not rule.name:
        issues.append(blocking_issue("name", "name_required", "A live rule needs a name"))

    issues.extend(_check_trigger(rule.trigger))
    issues.extend(_check_conditions(rule.conditions))
    if rule.reward is not None:
        issues.extend(_check_reward(rule.reward))

    enabled_actions = [action for action in rule.actions if action.enabled]
    if rule.enabled and rule.reward is None and not enabled_actions:
        issues.append(
            blocking_issue(
                "actions",
                "rule_has_no_effect",
                "A live rule needs a reward or at least one enabled action",
            )
        )

    seen_ids: set[str] = set()
    for index, action in enumerate(rule.actions):
        path = f"actions.{index}"
        if action.id in seen_ids:
            issues.append(blocking_issue(f"{path}.id", "duplicate_action_id", f"Action id '{action.id}' is used twice"))
        seen_ids.add(action.id)
        if action.enabled:
            issues.extend(_check_action(action, path))

    approval = rule.approval
    if approval.requires_approval and approval.budget_cap is None and approval.min_roi is None:
        issues.append(
            _warning(
                "approval",
                "approval_without_limits",
                "Approval is required but neither a budget cap nor a minimum ROI is set",
            )
        )
    return issues


def has_blocking(issues: list[ValidationIssue]) -> bool:
    return any(issue.severity == "blocking" for issue in issues)


def issues_from_validation_error(exc: ValidationError, *, prefix: str = "") -> list[ValidationIssue]:
    """Turn pydantic construction errors into blocking issues with dotted field paths."""
    issues: list[ValidationIssue] = []
    for err in exc.errors():
        parts = [str(part) for part in err.get("loc", ())]
        if prefix:
            parts.insert(0, prefix)
        issues.append(
            blocking_issue(
                ".".join(parts) or prefix or "rule",
                str(err.get("type") or "invalid"),
                str(err.get("msg") or "Invalid value"),
                structural=True,
            )
        )
    return issues


def _check_trigger(trigger: Trigger) -> list[ValidationIssue]:
    if isinstance(trigger, SegmentTransitionTrigger) and not trigger.to_segment:
        return [blocking_issue("trigger.to_segment", "segment_required", "Select the segment customers move into")]
    if isinstance(trigger, TierChangeTrigger) and isinstance(trigger.direction, ReachesTier):
        if not trigger.direction.tier:
            return [blocking_issue("trigger.direction.tier", "tier_required", "Select the tier to watch for")]
    return []


def _check_conditions(conditions: ConditionSet) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    audience = conditions.audience
    if isinstance(audience, SegmentListAudience) and not audience.segment_ids:
        issues.append(blocking_issue("conditions.audience.segment_ids", "segments_required", "Select at least one segment"))
    elif isinstance(audience, CustomExpressionAudience) and not audience.expression:
        issues.append(blocking_issue("conditions.audience.expression", "expression_required", "Enter the audience expression"))
    elif isinstance(audience, ExplicitCustomersAudience) and not audience.customer_ids:
        issues.append(
            blocking_issue("conditions.audience.customer_ids", "customers_required", "Enter at least one customer id")
        )

    location = conditions.location
    if isinstance(location, StoreListLocation) and not location.store_ids:
        issues.append(blocking_issue("conditions.location.store_ids", "stores_required", "Select at least one store"))
    elif isinstance(location, RegionLocation) and not location.name:
        issues.append(blocking_issue("conditions.location.name", "region_required", "Enter the region name"))
    return issues


def _check_reward(reward: Reward) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    if isinstance(reward, DiscountReward):
        if isinstance(reward.kind, BogoDiscount):
            spec = reward.kind.spec
            if not spec.buy.product:
                issues.append(
                    blocking_issue("reward.kind.spec.buy.product", "bogo_buy_product_required", "Enter the product to buy")
                )
            if spec.get.mode.case == "different" and not spec.get.mode.skus:
                issues.append(
                    blocking_issue(
                        "reward.kind.spec.get.mode.skus",
                        "bogo_get_skus_required",
                        "List at least one SKU the customer can get",
                    )
                )
        issues.extend(_check_applies_to(reward.applies_to))
    elif isinstance(reward, BundleReward):
        if not reward.items:
            issues.append(blocking_issue("reward.items", "bundle_items_required", "Add at least one bundle item"))
        for index, item in enumerate(reward.items):
            if not item.sku:
                issues.append(blocking_issue(f"reward.items.{index}.sku", "bundle_item_sku_required", "Bundle item needs a SKU"))
    elif isinstance(reward, VoucherReward):
        if isinstance(reward.voucher, VoucherSku) and not reward.voucher.sku:
            issues.append(blocking_issue("reward.voucher.sku", "voucher_sku_required", "Enter the voucher SKU"))
    elif isinstance(reward, FreeItemReward):
        if isinstance(reward.item, FreeSku):
            if not reward.item.sku:
                issues.append(blocking_issue("reward.item.sku", "free_item_sku_required", "Enter the free item SKU"))
        elif not reward.item.category:
            issues.append(
                blocking_issue("reward.item.category", "free_item_category_required", "Enter the free item category")
            )
        issues.extend(_check_applies_to(reward.applies_to))
    return issues


def _check_applies_to(applies_to: AppliesTo) -> list[ValidationIssue]:
    if isinstance(applies_to, CategoryScope) and not applies_to.categories:
        return [blocking_issue("reward.applies_to.categories", "categories_required", "Select at least one category")]
    if isinstance(applies_to, SkuScope) and not applies_to.skus:
        return [blocking_issue("reward.applies_to.skus", "skus_required", "Enter at least one SKU")]
    return []


def _check_action(action: ActionInstance, path: str) -> list[ValidationIssue]:
    missing: list[str] = []
    if isinstance(action, EmailAction):
        missing = [name for name in ("provider", "template_ref") if not getattr(action.config, name)]
    elif isinstance(action, SmsAction):
        missing = [name for name in ("provider", "message_body") if not getattr(action.config, name)]
    elif isinstance(action, PushAction) and not action.config.message_body:
        missing = ["message_body"]
    elif isinstance(action, VoucherAction):
        if isinstance(action.config.voucher, VoucherSku) and not action.config.voucher.sku:
            missing = ["voucher.sku"]
    elif isinstance(action, ManagerAlertAction) and not action.config.recipient_role:
        missing = ["recipient_role"]
    elif isinstance(action, CampaignEnrollAction) and not action.config.campaign_ref:
        missing = ["campaign_ref"]
    elif isinstance(action, TagAction) and not action.config.tag_name:
        missing = ["tag_name"]

    return [
        blocking_issue(
            f"{path}.config.{name}",
            "action_field_required",
            f"{action.type} action requires {name.split('.')[-1]}",
        )
        for name in missing
    ]
