from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter

from loyalty_rules.core.config import settings
from loyalty_rules.schemas.rewards import VoucherKind, VoucherSku
from loyalty_rules.schemas.values import DomainModel, EntityId, id_field


ActionType = Literal[
    "email",
    "sms",
    "push",
    "voucher",
    "bonus_points",
    "manager_alert",
    "campaign_enroll",
    "tier_adjust",
    "tag",
]
TierAdjustMode = Literal["upgrade_one", "downgrade_one", "maintain", "reset_to_base"]


class EmailConfig(DomainModel):
    provider: str = Field(default_factory=lambda: settings.email_provider_default, max_length=60)
    template_ref: str = Field(default="", max_length=255)


class SmsConfig(DomainModel):
    provider: str = Field(default_factory=lambda: settings.sms_provider_default, max_length=60)
    message_body: str = Field(default="", max_length=1600)


class PushConfig(DomainModel):
    message_body: str = Field(default="", max_length=1000)


class VoucherActionConfig(DomainModel):
    voucher: VoucherKind = Field(default_factory=VoucherSku)


class BonusPointsConfig(DomainModel):
    amount: int = Field(default=100, gt=0)


class ManagerAlertConfig(DomainModel):
    recipient_role: str = Field(default="account_manager", max_length=60)


class CampaignEnrollConfig(DomainModel):
    campaign_ref: str = Field(default="", max_length=120)


class TierAdjustConfig(DomainModel):
    mode: TierAdjustMode = "upgrade_one"


class TagConfig(DomainModel):
    tag_name: str = Field(default="", max_length=120)


class EmailAction(DomainModel):
    id: EntityId = id_field()
    type: Literal["email"] = "email"
    enabled: bool = True
    config: EmailConfig = Field(default_factory=EmailConfig)


class SmsAction(DomainModel):
    id: EntityId = id_field()
    type: Literal["sms"] = "sms"
    enabled: bool = True
    config: SmsConfig = Field(default_factory=SmsConfig)


class PushAction(DomainModel):
    id: EntityId = id_field()
    type: Literal["push"] = "push"
    enabled: bool = True
    config: PushConfig = Field(default_factory=PushConfig)


class VoucherAction(DomainModel):
    id: EntityId = id_field()
    type: Literal["voucher"] = "voucher"
    enabled: bool = True
    config: VoucherActionConfig = Field(default_factory=VoucherActionConfig)


class BonusPointsAction(DomainModel):
    id: EntityId = id_field()
    type: Literal["bonus_points"] = "bonus_points"
    enabled: bool = True
    config: BonusPointsConfig = Field(default_factory=BonusPointsConfig)


class ManagerAlertAction(DomainModel):
    id: EntityId = id_field()
    type: Literal["manager_alert"] = "manager_alert"
    enabled: bool = True
    config: ManagerAlertConfig = Field(default_factory=ManagerAlertConfig)


class CampaignEnrollAction(DomainModel):
    id: EntityId = id_field()
    type: Literal["campaign_enroll"] = "campaign_enroll"
    enabled: bool = True
    config: CampaignEnrollConfig = Field(default_factory=CampaignEnrollConfig)


class TierAdjustAction(DomainModel):
    id: EntityId = id_field()
    type: Literal["tier_adjust"] = "tier_adjust"
    enabled: bool = True
    config: TierAdjustConfig = Field(default_factory=TierAdjustConfig)


class TagAction(DomainModel):
    id: EntityId = id_field()
    type: Literal["tag"] = "tag"
    enabled: bool = True
    config: TagConfig = Field(default_factory=TagConfig)


ActionInstance = Annotated[
    Union[
        EmailAction,
        SmsAction,
        PushAction,
        VoucherAction,
        BonusPointsAction,
        ManagerAlertAction,
        CampaignEnrollAction,
        TierAdjustAction,
        TagAction,
    ],
    Field(discriminator="type"),
]

ACTION_TYPES: tuple[str, ...] = (
    "email",
    "sms",
    "push",
    "voucher",
    "bonus_points",
    "manager_alert",
    "campaign_enroll",
    "tier_adjust",
    "tag",
)

action_adapter: TypeAdapter[ActionInstance] = TypeAdapter(ActionInstance)


def build_action(action_type: str, *, enabled: bool = True, **config: Any) -> ActionInstance:
    """Create an action whose config class is picked by ``action_type``."""
    return action_adapter.validate_python(
        {"type": action_type, "enabled": enabled, "config": config}
    )
