from decimal import Decimal

from pydantic import Field

from loyalty_rules.schemas.actions import ActionInstance
from loyalty_rules.schemas.conditions import ConditionSet
from loyalty_rules.schemas.rewards import Reward
from loyalty_rules.schemas.triggers import Trigger, default_trigger
from loyalty_rules.schemas.values import DomainModel, EntityId, PositiveMoney, id_field


class ApprovalSettings(DomainModel):
    requires_approval: bool = False
    budget_cap: PositiveMoney | None = None
    min_roi: Decimal | None = Field(default=None, ge=0)


class Rule(DomainModel):
    """Aggregate root: one trigger, a condition set, an optional reward and ordered actions.

    ``enabled=False`` is the Draft state and ``enabled=True`` is Live. Promotion only
    happens through ``rule_editor.transition_to_live``.
    """

    id: EntityId = id_field()
    name: str = Field(default="", max_length=120)
    description: str | None = Field(default=None, max_length=255)
    template_key: str | None = Field(default=None, max_length=60)
    enabled: bool = False
    trigger: Trigger = Field(default_factory=default_trigger)
    conditions: ConditionSet = Field(default_factory=ConditionSet)
    reward: Reward | None = None
    actions: tuple[ActionInstance, ...] = ()
    approval: ApprovalSettings = Field(default_factory=ApprovalSettings)

    def action_index(self, action_id: str) -> int:
        for index, action in enumerate(self.actions):
            if action.id == action_id:
                return index
        raise KeyError(action_id)


def new_rule(name: str = "", **fields) -> Rule:
    return Rule(name=name, enabled=False, **fields)
