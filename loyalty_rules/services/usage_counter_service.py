"""Per-customer usage counters for live rules.

The evaluator only reads ``usage_counts``; whoever executes a plan claims a
use here first. ``try_consume_usage`` is a single conditional UPDATE so two
concurrent executions can never both pass the limit.
"""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from loyalty_rules.core.id_utils import generate_shortuuid
from loyalty_rules.models.rule import RuleUsageCounter


def _ensure_counter(db: Session, *, rule_id: str, customer_id: str) -> None:
    exists = db.execute(
        select(RuleUsageCounter.id).where(
            RuleUsageCounter.rule_id == rule_id,
            RuleUsageCounter.customer_id == customer_id,
        )
    ).scalar_one_or_none()
    if exists is not None:
        return
    try:
        with db.begin_nested():
            db.add(RuleUsageCounter(id=generate_shortuuid(), rule_id=rule_id, customer_id=customer_id, used_count=0))
    except IntegrityError:
        # Another writer created the row first.
        pass


def try_consume_usage(
    db: Session,
    *,
    rule_id: str,
    customer_id: str,
    limit: int,
    now: datetime,
) -> bool:
    """Atomically check-and-increment; ``False`` when the limit is already spent."""
    _ensure_counter(db, rule_id=rule_id, customer_id=customer_id)
    stmt = (
        update(RuleUsageCounter)
        .where(
            RuleUsageCounter.rule_id == rule_id,
            RuleUsageCounter.customer_id == customer_id,
        )
        .values(used_count=RuleUsageCounter.used_count + 1, last_matched_at=now)
        .execution_options(synchronize_session=False)
    )
    if limit != -1:
        stmt = stmt.where(RuleUsageCounter.used_count < limit)
    result = db.execute(stmt)
    return result.rowcount == 1


def usage_snapshot(db: Session, customer_id: str) -> tuple[dict[str, int], dict[str, datetime]]:
    """Stored counters for a customer as ``(usage_counts, last_matched_at)`` keyed by rule id."""
    rows = db.execute(
        select(RuleUsageCounter).where(RuleUsageCounter.customer_id == customer_id)
    ).scalars().all()
    usage_counts = {row.rule_id: row.used_count for row in rows}
    last_matched = {row.rule_id: row.last_matched_at for row in rows if row.last_matched_at is not None}
    return usage_counts, last_matched
