from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from loyalty_rules.core.api_docs import error_responses
from loyalty_rules.core.deps import get_db
from loyalty_rules.models.rule import RuleDocument
from loyalty_rules.schemas.common import PaginationMeta
from loyalty_rules.schemas.evaluation import EvaluationOutcome
from loyalty_rules.schemas.rule import Rule, new_rule
from loyalty_rules.schemas.rule_api import (
    ActionAddIn,
    ActionMoveIn,
    ActionPatchIn,
    EvaluationIn,
    RuleCreateIn,
    RuleIssueOut,
    RuleListItemOut,
    RuleListOut,
    RuleOut,
    RuleTemplateCatalogOut,
    RuleTemplateOut,
    RuleValidationOut,
)
from loyalty_rules.services import rule_editor
from loyalty_rules.services.reward_service import describe_reward
from loyalty_rules.services.rule_evaluator import explain
from loyalty_rules.services.rule_serializer import RuleDocumentError, deserialize_rule, serialize_rule
from loyalty_rules.services.rule_store import delete_rule, get_rule_row, list_rules, rule_from_row, save_rule
from loyalty_rules.services.rule_templates import build_rule_from_template, list_rule_templates
from loyalty_rules.services.rule_validator import ValidationIssue, check, has_blocking

router = APIRouter(prefix="/rules", tags=["rules"])


def _rule_or_404(db: Session, rule_id: str) -> tuple[RuleDocument, Rule]:
    row = get_rule_row(db, rule_id)
    if not row:
        raise HTTPException(status_code=404, detail="Rule not found")
    return row, rule_from_row(row)


def _issue_out(issue: ValidationIssue) -> RuleIssueOut:
    return RuleIssueOut(severity=issue.severity, path=issue.path, code=issue.code, message=issue.message)


def _issues_detail(message: str, issues: list[ValidationIssue]) -> dict[str, Any]:
    return {
        "message": message,
        "details": [
            {"field": issue.path, "message": issue.message, "type": issue.code}
            for issue in issues
            if issue.severity == "blocking"
        ],
    }


def _rule_out(row: RuleDocument, rule: Rule, issues: list[ValidationIssue]) -> RuleOut:
    return RuleOut(
        id=row.id,
        name=row.name,
        enabled=row.enabled,
        status="live" if row.enabled else "draft",
        trigger_case=row.trigger_case,
        version=row.version,
        reward_summary=describe_reward(rule.reward) if rule.reward is not None else None,
        document=serialize_rule(rule),
        issues=[_issue_out(issue) for issue in issues],
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _template_out(item: dict) -> RuleTemplateOut:
    document = item["document"]
    return RuleTemplateOut(
        template_key=item["template_key"],
        name=item["name"],
        description=item["description"],
        trigger_case=document["trigger"]["case"],
        action_types=[action["type"] for action in document.get("actions", [])],
    )


def _persist(db: Session, rule: Rule) -> RuleOut:
    row, issues = save_rule(db, rule)
    db.commit()
    db.refresh(row)
    return _rule_out(row, rule, issues)


def _raise_if_rejected(previous: Rule, result: rule_editor.EditResult) -> Rule:
    updated, issues = result
    if updated is previous and has_blocking(issues):
        if any(issue.code == "action_not_found" for issue in issues):
            raise HTTPException(status_code=404, detail="Action not found")
        if previous.enabled and not any(issue.structural for issue in issues):
            raise HTTPException(
                status_code=409,
                detail=_issues_detail("Change would leave a live rule with blocking issues", issues),
            )
        raise HTTPException(status_code=422, detail=_issues_detail("Invalid rule change", issues))
    return updated


def _apply_edit(db: Session, previous: Rule, result: rule_editor.EditResult) -> RuleOut:
    return _persist(db, _raise_if_rejected(previous, result))


@router.get(
    "/templates",
    response_model=RuleTemplateCatalogOut,
    summary="List rule templates",
    responses=error_responses(500),
)
def list_templates():
    return RuleTemplateCatalogOut(items=[_template_out(item) for item in list_rule_templates()])


@router.post(
    "",
    response_model=RuleOut,
    status_code=201,
    summary="Create draft rule",
    responses=error_responses(400, 409, 422, 500),
)
def create_rule(payload: RuleCreateIn, db: Session = Depends(get_db)):
    if payload.template_key:
        try:
            rule = build_rule_from_template(payload.template_key, name=payload.name)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from None
    elif payload.document is not None:
        document = {**payload.document, "enabled": False}
        if payload.name is not None:
            document["name"] = payload.name
        try:
            rule = deserialize_rule(document)
        except RuleDocumentError as exc:
            raise HTTPException(status_code=422, detail={"message": str(exc), "details": exc.errors}) from None
    else:
        rule = new_rule(payload.name or "")

    if get_rule_row(db, rule.id) is not None:
        raise HTTPException(status_code=409, detail="Rule id already exists")
    return _persist(db, rule)


@router.get(
    "",
    response_model=RuleListOut,
    summary="List rules",
    responses=error_responses(422, 500),
)
def list_rule_documents(
    enabled: bool | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    rows, total = list_rules(db, enabled=enabled, limit=limit, offset=offset)
    items = [
        RuleListItemOut(
            id=row.id,
            name=row.name,
            enabled=row.enabled,
            status="live" if row.enabled else "draft",
            trigger_case=row.trigger_case,
            version=row.version,
            updated_at=row.updated_at,
        )
        for row in rows
    ]
    count = len(items)
    return RuleListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
        enabled=enabled,
    )


@router.get(
    "/{rule_id}",
    response_model=RuleOut,
    summary="Get rule",
    responses=error_responses(404, 500),
)
def get_rule_document(rule_id: str, db: Session = Depends(get_db)):
    row, rule = _rule_or_404(db, rule_id)
    return _rule_out(row, rule, check(rule))


@router.put(
    "/{rule_id}",
    response_model=RuleOut,
    summary="Replace rule document",
    responses=error_responses(404, 409, 422, 500),
)
def replace_rule(rule_id: str, payload: dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    _rule_or_404(db, rule_id)
    try:
        candidate = deserialize_rule({**payload, "id": rule_id})
    except RuleDocumentError as exc:
        raise HTTPException(status_code=422, detail={"message": str(exc), "details": exc.errors}) from None

    issues = check(candidate)
    if candidate.enabled and has_blocking(issues):
        raise HTTPException(
            status_code=409,
            detail=_issues_detail("Live rule cannot have blocking issues", issues),
        )
    return _persist(db, candidate)


@router.delete(
    "/{rule_id}",
    status_code=204,
    summary="Delete rule",
    responses=error_responses(404, 500),
)
def remove_rule(rule_id: str, db: Session = Depends(get_db)):
    if not delete_rule(db, rule_id):
        raise HTTPException(status_code=404, detail="Rule not found")
    db.commit()


@router.post(
    "/{rule_id}/validate",
    response_model=RuleValidationOut,
    summary="Validate rule",
    responses=error_responses(404, 500),
)
def validate_rule(rule_id: str, db: Session = Depends(get_db)):
    _, rule = _rule_or_404(db, rule_id)
    issues = check(rule.model_copy(update={"enabled": True}))
    return RuleValidationOut(
        rule_id=rule.id,
        can_go_live=not has_blocking(issues),
        issues=[_issue_out(issue) for issue in issues],
    )


@router.post(
    "/{rule_id}/go-live",
    response_model=RuleOut,
    summary="Promote rule to live",
    responses=error_responses(404, 409, 500),
)
def go_live(rule_id: str, db: Session = Depends(get_db)):
    _, rule = _rule_or_404(db, rule_id)
    promoted, issues = rule_editor.transition_to_live(rule)
    if not promoted.enabled:
        raise HTTPException(
            status_code=409,
            detail=_issues_detail("Rule has blocking issues", issues),
        )
    return _persist(db, promoted)


@router.post(
    "/{rule_id}/pause",
    response_model=RuleOut,
    summary="Return rule to draft",
    responses=error_responses(404, 500),
)
def pause(rule_id: str, db: Session = Depends(get_db)):
    _, rule = _rule_or_404(db, rule_id)
    draft, _ = rule_editor.transition_to_draft(rule)
    return _persist(db, draft)


@router.post(
    "/{rule_id}/actions",
    response_model=RuleOut,
    summary="Append action",
    responses=error_responses(404, 409, 422, 500),
)
def add_action(rule_id: str, payload: ActionAddIn, db: Session = Depends(get_db)):
    _, rule = _rule_or_404(db, rule_id)
    result = rule_editor.add_action(rule, {"type": payload.type, "enabled": payload.enabled, "config": payload.config})
    return _apply_edit(db, rule, result)


@router.post(
    "/{rule_id}/actions/{action_id}/move",
    response_model=RuleOut,
    summary="Reorder action",
    responses=error_responses(404, 422, 500),
)
def move_action(rule_id: str, action_id: str, payload: ActionMoveIn, db: Session = Depends(get_db)):
    _, rule = _rule_or_404(db, rule_id)
    return _apply_edit(db, rule, rule_editor.move_action(rule, action_id, payload.to_index))


@router.patch(
    "/{rule_id}/actions/{action_id}",
    response_model=RuleOut,
    summary="Enable, disable or reconfigure action",
    responses=error_responses(404, 409, 422, 500),
)
def patch_action(rule_id: str, action_id: str, payload: ActionPatchIn, db: Session = Depends(get_db)):
    _, rule = _rule_or_404(db, rule_id)
    updated = rule
    if payload.config is not None:
        updated = _raise_if_rejected(updated, rule_editor.update_action_config(updated, action_id, **payload.config))
    if payload.enabled is not None:
        updated = _raise_if_rejected(updated, rule_editor.set_action_enabled(updated, action_id, payload.enabled))
    return _persist(db, updated)


@router.delete(
    "/{rule_id}/actions/{action_id}",
    response_model=RuleOut,
    summary="Remove action",
    responses=error_responses(404, 409, 500),
)
def remove_action(rule_id: str, action_id: str, db: Session = Depends(get_db)):
    _, rule = _rule_or_404(db, rule_id)
    return _apply_edit(db, rule, rule_editor.remove_action(rule, action_id))


@router.post(
    "/{rule_id}/evaluate",
    response_model=EvaluationOutcome,
    summary="Evaluate rule against an event (dry run)",
    responses=error_responses(404, 422, 500),
)
def evaluate_rule(rule_id: str, payload: EvaluationIn, db: Session = Depends(get_db)):
    _, rule = _rule_or_404(db, rule_id)
    now = payload.now or datetime.now(timezone.utc)
    return explain(rule, payload.event, payload.customer, now)
