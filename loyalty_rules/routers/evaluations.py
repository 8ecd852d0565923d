import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from loyalty_rules.core.api_docs import error_responses
from loyalty_rules.core.config import settings
from loyalty_rules.core.deps import get_db
from loyalty_rules.core.observability import log_engine_event
from loyalty_rules.schemas.evaluation import EvaluationOutcome
from loyalty_rules.schemas.rule_api import EvaluationBatchIn, EvaluationBatchOut
from loyalty_rules.services.rule_evaluator import explain
from loyalty_rules.services.rule_store import list_live_rules
from loyalty_rules.services.usage_counter_service import try_consume_usage, usage_snapshot

router = APIRouter(prefix="/evaluations", tags=["evaluations"])


@router.post(
    "",
    response_model=EvaluationBatchOut,
    summary="Evaluate every live rule against an event",
    responses=error_responses(422, 500),
)
def evaluate_live_rules(payload: EvaluationBatchIn, db: Session = Depends(get_db)):
    now = payload.now or datetime.now(timezone.utc)
    customer = payload.customer
    if payload.record_usage:
        stored_counts, stored_matched = usage_snapshot(db, customer.customer_id)
        customer = customer.model_copy(
            update={
                "usage_counts": {**customer.usage_counts, **stored_counts},
                "last_matched_at": {**customer.last_matched_at, **stored_matched},
            }
        )

    rules = list_live_rules(db, limit=settings.evaluation_batch_limit)
    outcomes = []
    plans = []
    for rule in rules:
        outcome = explain(rule, payload.event, customer, now)
        outcomes.append(outcome)
        if outcome.plan is None:
            continue
        if payload.record_usage:
            claimed = try_consume_usage(
                db,
                rule_id=rule.id,
                customer_id=customer.customer_id,
                limit=rule.conditions.usage_limit_per_customer,
                now=now,
            )
            if not claimed:
                log_engine_event(
                    logging.INFO,
                    "usage_limit_race",
                    rule_id=rule.id,
                    customer_id=customer.customer_id,
                    event_id=payload.event.event_id,
                )
                outcomes[-1] = EvaluationOutcome(rule_id=rule.id, matched=False, reason="Usage limit reached")
                continue
        plans.append(outcome.plan)

    if payload.record_usage:
        db.commit()

    return EvaluationBatchOut(
        event_id=payload.event.event_id,
        customer_id=customer.customer_id,
        evaluated=len(rules),
        matched=len(plans),
        plans=plans,
        outcomes=outcomes,
    )
