from sqlalchemy import func, select
from sqlalchemy.orm import Session

from loyalty_rules.models.rule import RuleDocument
from loyalty_rules.schemas.rule import Rule
from loyalty_rules.services.rule_serializer import deserialize_rule, serialize_rule
from loyalty_rules.services.rule_validator import ValidationIssue, check


def save_rule(db: Session, rule: Rule) -> tuple[RuleDocument, list[ValidationIssue]]:
    """Insert or overwrite the stored document (last write wins); the caller commits."""
    issues = check(rule)
    document = serialize_rule(rule)
    row = db.get(RuleDocument, rule.id)
    if row is None:
        row = RuleDocument(
            id=rule.id,
            name=rule.name,
            enabled=rule.enabled,
            trigger_case=rule.trigger.case,
            document_json=document,
            version=1,
        )
        db.add(row)
    else:
        row.name = rule.name
        row.enabled = rule.enabled
        row.trigger_case = rule.trigger.case
        row.document_json = document
        row.version = (row.version or 0) + 1
    db.flush()
    return row, issues


def rule_from_row(row: RuleDocument) -> Rule:
    return deserialize_rule(row.document_json)


def get_rule_row(db: Session, rule_id: str) -> RuleDocument | None:
    return db.get(RuleDocument, rule_id)


def get_rule(db: Session, rule_id: str) -> Rule | None:
    row = get_rule_row(db, rule_id)
    if row is None:
        return None
    return rule_from_row(row)


def list_rules(
    db: Session,
    *,
    enabled: bool | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[RuleDocument], int]:
    count_stmt = select(func.count(RuleDocument.id))
    stmt = select(RuleDocument)
    if enabled is not None:
        count_stmt = count_stmt.where(RuleDocument.enabled.is_(enabled))
        stmt = stmt.where(RuleDocument.enabled.is_(enabled))
    total = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(
        stmt.order_by(RuleDocument.updated_at.desc(), RuleDocument.id.asc()).limit(limit).offset(offset)
    ).scalars().all()
    return list(rows), total


def list_live_rules(db: Session, *, limit: int | None = None) -> list[Rule]:
    stmt = select(RuleDocument).where(RuleDocument.enabled.is_(True)).order_by(RuleDocument.created_at.asc(), RuleDocument.id.asc())
    if limit is not None:
        stmt = stmt.limit(limit)
    return [rule_from_row(row) for row in db.execute(stmt).scalars().all()]


def delete_rule(db: Session, rule_id: str) -> bool:
    row = get_rule_row(db, rule_id)
    if row is None:
        return False
    db.delete(row)
    db.flush()
    return True
