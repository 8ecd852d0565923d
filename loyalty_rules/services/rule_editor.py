"""Mutation operations used by the editing surface.

Every operation returns ``(rule, issues)``. When the requested change is
structurally invalid the previous rule comes back unchanged together with the
blocking issues describing why; otherwise the new rule is returned with the
validator's current findings. Rules are never mutated in place.
"""

from typing import Any

from pydantic import ValidationError

from loyalty_rules.schemas.actions import ActionInstance, action_adapter, build_action
from loyalty_rules.schemas.rule import Rule
from loyalty_rules.schemas.triggers import switch_trigger
from loyalty_rules.services.rule_validator import (
    ValidationIssue,
    blocking_issue,
    check,
    has_blocking,
    issues_from_validation_error,
)

EditResult = tuple[Rule, list[ValidationIssue]]


def _rebuild(rule: Rule, changes: dict[str, Any]) -> EditResult:
    payload = dict(rule)
    payload.update(changes)
    try:
        updated = Rule.model_validate(payload)
    except ValidationError as exc:
        return rule, issues_from_validation_error(exc)
    return updated, check(updated)


def update_rule(rule: Rule, **changes: Any) -> EditResult:
    """Replace top-level fields. ``id`` is immutable and ``enabled`` only moves through the transitions."""
    if "id" in changes and changes["id"] != rule.id:
        return rule, [blocking_issue("id", "immutable_id", "Rule id cannot be changed", structural=True)]
    if "enabled" in changes and changes["enabled"] != rule.enabled:
        return rule, [
            blocking_issue(
                "enabled",
                "use_transition",
                "Use go-live or pause to change the enabled state",
                structural=True,
            )
        ]
    return _guard_live(rule, *_rebuild(rule, changes))


def set_trigger(rule: Rule, case: str, **fields: Any) -> EditResult:
    """Switch (or re-configure) the trigger; no field from the old case survives."""
    try:
        trigger = switch_trigger(rule.trigger, case, **fields)
    except ValidationError as exc:
        return rule, issues_from_validation_error(exc, prefix="trigger")
    return _guard_live(rule, *_rebuild(rule, {"trigger": trigger}))


def set_reward(rule: Rule, reward: Any) -> EditResult:
    return _guard_live(rule, *_rebuild(rule, {"reward": reward}))


def set_conditions(rule: Rule, conditions: Any) -> EditResult:
    return _guard_live(rule, *_rebuild(rule, {"conditions": conditions}))


def add_action(rule: Rule, action: ActionInstance | dict[str, Any] | str, **config: Any) -> EditResult:
    """Append an action; a bare type name builds one with default config."""
    try:
        if isinstance(action, str):
            instance = build_action(action, **config)
        else:
            instance = action_adapter.validate_python(action)
    except ValidationError as exc:
        return rule, issues_from_validation_error(exc, prefix=f"actions.{len(rule.actions)}")
    return _guard_live(rule, *_rebuild(rule, {"actions": (*rule.actions, instance)}))


def remove_action(rule: Rule, action_id: str) -> EditResult:
    if not any(action.id == action_id for action in rule.actions):
        return rule, [_action_not_found(action_id)]
    remaining = tuple(action for action in rule.actions if action.id != action_id)
    return _guard_live(rule, *_rebuild(rule, {"actions": remaining}))


def move_action(rule: Rule, action_id: str, to_index: int) -> EditResult:
    try:
        index = rule.action_index(action_id)
    except KeyError:
        return rule, [_action_not_found(action_id)]
    if to_index < 0 or to_index >= len(rule.actions):
        issue = blocking_issue("actions", "index_out_of_range", f"Position {to_index} is out of range", structural=True)
        return rule, [issue]
    ordered = list(rule.actions)
    moved = ordered.pop(index)
    ordered.insert(to_index, moved)
    return _rebuild(rule, {"actions": tuple(ordered)})


def set_action_enabled(rule: Rule, action_id: str, enabled: bool) -> EditResult:
    """Soft remove / restore; the action's config is kept either way."""
    return _replace_action(rule, action_id, {"enabled": enabled})


def update_action_config(rule: Rule, action_id: str, **config: Any) -> EditResult:
    try:
        index = rule.action_index(action_id)
    except KeyError:
        return rule, [_action_not_found(action_id)]
    merged = {**dict(rule.actions[index].config), **config}
    return _replace_action(rule, action_id, {"config": merged})


def transition_to_live(rule: Rule) -> EditResult:
    """Draft -> Live; refused (rule returned unchanged) while any blocking issue remains."""
    candidate = rule.model_copy(update={"enabled": True})
    issues = check(candidate)
    if has_blocking(issues):
        return rule, issues
    return candidate, issues


def transition_to_draft(rule: Rule) -> EditResult:
    draft = rule.model_copy(update={"enabled": False})
    return draft, check(draft)


def _replace_action(rule: Rule, action_id: str, changes: dict[str, Any]) -> EditResult:
    try:
        index = rule.action_index(action_id)
    except KeyError:
        return rule, [_action_not_found(action_id)]
    current = rule.actions[index]
    payload = {**dict(current), **changes}
    try:
        replacement = action_adapter.validate_python(payload)
    except ValidationError as exc:
        return rule, issues_from_validation_error(exc, prefix=f"actions.{index}")
    actions = list(rule.actions)
    actions[index] = replacement
    return _guard_live(rule, *_rebuild(rule, {"actions": tuple(actions)}))


def _action_not_found(action_id: str) -> ValidationIssue:
    return blocking_issue("actions", "action_not_found", f"Action '{action_id}' not found", structural=True)


def _guard_live(previous: Rule, updated: Rule, issues: list[ValidationIssue]) -> EditResult:
    """A live rule may not be edited into a state that would fail promotion."""
    if updated is not previous and updated.enabled and has_blocking(issues):
        return previous, issues
    return updated, issues
