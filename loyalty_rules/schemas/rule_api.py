from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from loyalty_rules.schemas.actions import ActionType
from loyalty_rules.schemas.common import PaginationMeta
from loyalty_rules.schemas.evaluation import ActionPlan, CustomerSnapshot, EvaluationOutcome, Event


class RuleIssueOut(BaseModel):
    severity: Literal["blocking", "warning"]
    path: str
    code: str
    message: str


class RuleCreateIn(BaseModel):
    """Start a Draft from scratch, from a template, or from a full rule document."""

    name: str | None = Field(default=None, max_length=120)
    template_key: str | None = Field(default=None, max_length=60)
    document: dict[str, Any] | None = None

    @model_validator(mode="after")
    def validate_single_source(self) -> "RuleCreateIn":
        if self.template_key and self.document is not None:
            raise ValueError("Provide either template_key or document, not both")
        return self


class RuleOut(BaseModel):
    id: str
    name: str
    enabled: bool
    status: Literal["draft", "live"]
    trigger_case: str
    version: int
    reward_summary: str | None = None
    document: dict[str, Any]
    issues: list[RuleIssueOut]
    created_at: datetime
    updated_at: datetime


class RuleListItemOut(BaseModel):
    id: str
    name: str
    enabled: bool
    status: Literal["draft", "live"]
    trigger_case: str
    version: int
    updated_at: datetime


class RuleListOut(BaseModel):
    items: list[RuleListItemOut]
    pagination: PaginationMeta
    enabled: bool | None = None


class RuleValidationOut(BaseModel):
    rule_id: str
    can_go_live: bool
    issues: list[RuleIssueOut]


class RuleTemplateOut(BaseModel):
    template_key: str
    name: str
    description: str
    trigger_case: str
    action_types: list[str]


class RuleTemplateCatalogOut(BaseModel):
    items: list[RuleTemplateOut]


class ActionAddIn(BaseModel):
    type: ActionType
    enabled: bool = True
    config: dict[str, Any] = Field(default_factory=dict)


class ActionMoveIn(BaseModel):
    to_index: int = Field(ge=0)


class ActionPatchIn(BaseModel):
    enabled: bool | None = None
    config: dict[str, Any] | None = None

    @model_validator(mode="after")
    def validate_has_updates(self) -> "ActionPatchIn":
        if self.enabled is None and self.config is None:
            raise ValueError("At least one field must be provided")
        return self


class EvaluationIn(BaseModel):
    event: Event
    customer: CustomerSnapshot
    now: datetime | None = None


class EvaluationBatchIn(EvaluationIn):
    record_usage: bool = False


class EvaluationBatchOut(BaseModel):
    event_id: str
    customer_id: str
    evaluated: int
    matched: int
    plans: list[ActionPlan]
    outcomes: list[EvaluationOutcome]
