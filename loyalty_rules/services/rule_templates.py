import json
from typing import Any

from loyalty_rules.schemas.rule import Rule


_RULE_TEMPLATE_LIBRARY: list[dict[str, Any]] = [
    {
        "template_key": "welcome_back",
        "name": "Welcome Back Win-back",
        "description": "Re-engage customers who have gone quiet with a voucher and a friendly email.",
        "document": {
            "trigger": {"case": "inactivity", "days": 60, "exclude_recently_contacted": True},
            "conditions": {"usage_limit_per_customer": 1},
            "reward": {"case": "voucher", "voucher": {"case": "value", "amount": "10.00"}},
            "actions": [
                {"type": "email", "config": {"template_ref": "win-back-voucher"}},
                {"type": "tag", "config": {"tag_name": "win-back"}},
            ],
        },
    },
    {
        "template_key": "birthday_reward",
        "name": "Birthday Reward",
        "description": "Send bonus points and a greeting a week before the customer's birthday.",
        "document": {
            "trigger": {
                "case": "birthday",
                "timing": {"case": "days_before", "days": 7},
                "require_opt_in": True,
            },
            "conditions": {"usage_limit_per_customer": 1, "cooldown_days": 300},
            "reward": {"case": "points", "amount": 500},
            "actions": [
                {"type": "email", "config": {"template_ref": "birthday-greeting"}},
                {
                    "type": "sms",
                    "config": {"message_body": "Happy birthday {{ customer.first_name }}! 500 points are on us."},
                },
            ],
        },
    },
    {
        "template_key": "vip_milestone",
        "name": "VIP Spend Milestone",
        "description": "Move big spenders into the VIP campaign and up one tier.",
        "document": {
            "trigger": {"case": "milestone", "metric": "lifetime_spend", "threshold": 5000},
            "conditions": {"usage_limit_per_customer": 1},
            "actions": [
                {"type": "campaign_enroll", "config": {"campaign_ref": "vip-onboarding"}},
                {"type": "tier_adjust", "config": {"mode": "upgrade_one"}},
                {"type": "manager_alert", "config": {"recipient_role": "account_manager"}},
            ],
        },
    },
    {
        "template_key": "points_expiry_reminder",
        "name": "Points Expiry Reminder",
        "description": "Remind customers before their points lapse.",
        "document": {
            "trigger": {"case": "points_expiry", "warning_days": 14, "min_points": 100},
            "conditions": {"cooldown_days": 7},
            "actions": [
                {"type": "email", "config": {"template_ref": "points-expiring"}},
                {
                    "type": "push",
                    "config": {
                        "message_body": (
                            "{{ customer.expiring_points }} points expire soon. Use them before they are gone."
                        )
                    },
                },
            ],
        },
    },
    {
        "template_key": "tier_upgrade_celebration",
        "name": "Tier Upgrade Celebration",
        "description": "Celebrate tier upgrades with a points multiplier on the next visit.",
        "document": {
            "trigger": {"case": "tier_change", "direction": {"case": "upgrade"}},
            "reward": {"case": "multiplier", "factor": "2"},
            "actions": [
                {"type": "push", "config": {"message_body": "Welcome to {{ event.tier_to }}! Enjoy double points."}},
                {"type": "bonus_points", "config": {"amount": 250}},
            ],
        },
    },
]


def list_rule_templates() -> list[dict[str, Any]]:
    return [json.loads(json.dumps(item)) for item in _RULE_TEMPLATE_LIBRARY]


def get_rule_template(template_key: str) -> dict[str, Any]:
    normalized = (template_key or "").strip().lower()
    for template in _RULE_TEMPLATE_LIBRARY:
        if template["template_key"] == normalized:
            return json.loads(json.dumps(template))
    available = ", ".join(sorted(item["template_key"] for item in _RULE_TEMPLATE_LIBRARY))
    raise ValueError(f"Unknown template '{template_key}'. Available: {available}")


def build_rule_from_template(template_key: str, *, name: str | None = None) -> Rule:
    """Draft rule pre-filled from a template; every entity gets a fresh id."""
    template = get_rule_template(template_key)
    document = dict(template["document"])
    document.update(
        name=name or template["name"],
        description=template["description"],
        template_key=template["template_key"],
        enabled=False,
    )
    return Rule.model_validate(document)
