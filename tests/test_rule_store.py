from datetime import datetime, timezone

import pytest

from loyalty_rules.schemas.rewards import PointsReward
from loyalty_rules.schemas.rule import new_rule
from loyalty_rules.schemas.triggers import SegmentTransitionTrigger
from loyalty_rules.services import rule_editor
from loyalty_rules.services.rule_store import delete_rule, get_rule, list_live_rules, list_rules, save_rule
from loyalty_rules.services.rule_templates import build_rule_from_template, get_rule_template, list_rule_templates
from loyalty_rules.services.rule_validator import check, has_blocking
from loyalty_rules.services.usage_counter_service import try_consume_usage, usage_snapshot

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def test_save_rule_upserts_and_bumps_version(db_session):
    rule = new_rule("Store me")
    row, issues = save_rule(db_session, rule)
    db_session.commit()
    assert row.version == 1
    assert row.trigger_case == "segment_transition"
    assert any(issue.code == "segment_required" for issue in issues)

    renamed, _ = rule_editor.update_rule(rule, name="Stored")
    row, _ = save_rule(db_session, renamed)
    db_session.commit()
    assert row.version == 2
    assert get_rule(db_session, rule.id) == renamed


def test_list_rules_filters_by_enabled(db_session):
    draft = new_rule("Draft one")
    live, _ = rule_editor.transition_to_live(
        new_rule("Live one", trigger=SegmentTransitionTrigger(to_segment="vip"), reward=PointsReward(amount=5))
    )
    save_rule(db_session, draft)
    save_rule(db_session, live)
    db_session.commit()

    rows, total = list_rules(db_session)
    assert total == 2
    assert {row.id for row in rows} == {draft.id, live.id}

    rows, total = list_rules(db_session, enabled=True)
    assert total == 1
    assert rows[0].id == live.id
    assert [rule.id for rule in list_live_rules(db_session)] == [live.id]

    rows, total = list_rules(db_session, limit=1, offset=1)
    assert total == 2
    assert len(rows) == 1


def test_delete_rule(db_session):
    rule = new_rule("Delete me")
    save_rule(db_session, rule)
    db_session.commit()
    assert delete_rule(db_session, rule.id) is True
    db_session.commit()
    assert get_rule(db_session, rule.id) is None
    assert delete_rule(db_session, rule.id) is False


def test_usage_counter_respects_limit(db_session):
    claims = [
        try_consume_usage(db_session, rule_id="r1", customer_id="c1", limit=2, now=NOW)
        for _ in range(3)
    ]
    db_session.commit()
    assert claims == [True, True, False]

    counts, last_matched = usage_snapshot(db_session, "c1")
    assert counts == {"r1": 2}
    assert "r1" in last_matched


def test_usage_counter_unlimited(db_session):
    for _ in range(4):
        assert try_consume_usage(db_session, rule_id="r2", customer_id="c1", limit=-1, now=NOW)
    db_session.commit()
    counts, _ = usage_snapshot(db_session, "c1")
    assert counts == {"r2": 4}


def test_template_catalog_and_unknown_key():
    keys = [item["template_key"] for item in list_rule_templates()]
    assert keys == [
        "welcome_back",
        "birthday_reward",
        "vip_milestone",
        "points_expiry_reminder",
        "tier_upgrade_celebration",
    ]
    assert get_rule_template(" VIP_Milestone ")["name"] == "VIP Spend Milestone"
    with pytest.raises(ValueError, match="Available:"):
        get_rule_template("mystery")


@pytest.mark.parametrize("template_key", [item["template_key"] for item in list_rule_templates()])
def test_every_template_builds_a_promotable_draft(template_key):
    rule = build_rule_from_template(template_key)
    assert rule.enabled is False
    assert rule.template_key == template_key
    live, issues = rule_editor.transition_to_live(rule)
    assert live.enabled, issues
    assert not has_blocking(check(live))


def test_templates_get_fresh_ids():
    first = build_rule_from_template("vip_milestone")
    second = build_rule_from_template("vip_milestone", name="VIP again")
    assert first.id != second.id
    assert first.actions[0].id != second.actions[0].id
    assert second.name == "VIP again"


def test_sqlite_engine_allows_cross_thread_connections():
    from loyalty_rules.db import session as db_session_module

    assert db_session_module.IS_SQLITE
    assert db_session_module.engine_kwargs["connect_args"] == {"check_same_thread": False}
    assert "pool_size" not in db_session_module.engine_kwargs
