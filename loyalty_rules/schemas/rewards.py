from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter, field_validator, model_validator

from loyalty_rules.schemas.conditions import normalize_id_tokens, normalize_name_list
from loyalty_rules.schemas.values import (
    DomainModel,
    EntityId,
    NonNegativeMoney,
    Percentage,
    PositiveMoney,
    id_field,
)


RewardCase = Literal["discount", "bundle", "points", "credit", "multiplier", "voucher", "free_item"]


class EntirePurchase(DomainModel):
    case: Literal["entire_purchase"] = "entire_purchase"


class CategoryScope(DomainModel):
    case: Literal["categories"] = "categories"
    categories: tuple[str, ...] = ()

    @field_validator("categories", mode="before")
    @classmethod
    def normalize_categories(cls, value: Any) -> tuple[str, ...]:
        return normalize_name_list(value)


class SkuScope(DomainModel):
    case: Literal["skus"] = "skus"
    skus: tuple[str, ...] = ()

    @field_validator("skus", mode="before")
    @classmethod
    def normalize_skus(cls, value: Any) -> tuple[str, ...]:
        return normalize_id_tokens(value)


AppliesTo = Annotated[
    Union[EntirePurchase, CategoryScope, SkuScope],
    Field(discriminator="case"),
]


class BogoBuy(DomainModel):
    product: str = Field(default="", max_length=120)
    qty: int = Field(default=1, ge=1)


class BogoGetSame(DomainModel):
    case: Literal["same"] = "same"


class BogoGetDifferent(DomainModel):
    case: Literal["different"] = "different"
    skus: tuple[str, ...] = ()

    @field_validator("skus", mode="before")
    @classmethod
    def normalize_skus(cls, value: Any) -> tuple[str, ...]:
        return normalize_id_tokens(value)


class BogoGetEqualOrLesser(DomainModel):
    case: Literal["equal_or_lesser"] = "equal_or_lesser"


BogoGetMode = Annotated[
    Union[BogoGetSame, BogoGetDifferent, BogoGetEqualOrLesser],
    Field(discriminator="case"),
]


class BogoGet(DomainModel):
    mode: BogoGetMode = Field(default_factory=BogoGetSame)
    qty: int = Field(default=1, ge=1)


class BogoSpec(DomainModel):
    buy: BogoBuy = Field(default_factory=BogoBuy)
    get: BogoGet = Field(default_factory=BogoGet)


class PercentageDiscount(DomainModel):
    case: Literal["percentage"] = "percentage"
    value: Percentage = Decimal("10")


class FixedAmountDiscount(DomainModel):
    case: Literal["fixed_amount"] = "fixed_amount"
    amount: PositiveMoney


class BogoDiscount(DomainModel):
    case: Literal["bogo"] = "bogo"
    spec: BogoSpec = Field(default_factory=BogoSpec)


DiscountKind = Annotated[
    Union[PercentageDiscount, FixedAmountDiscount, BogoDiscount],
    Field(discriminator="case"),
]


class BundleItem(DomainModel):
    sku: str = Field(default="", max_length=120)
    display_name: str = Field(default="", max_length=160)


class VoucherValue(DomainModel):
    case: Literal["value"] = "value"
    amount: PositiveMoney


class VoucherSku(DomainModel):
    case: Literal["sku"] = "sku"
    sku: str = Field(default="", max_length=120)


VoucherKind = Annotated[Union[VoucherValue, VoucherSku], Field(discriminator="case")]


class FreeSku(DomainModel):
    case: Literal["sku"] = "sku"
    sku: str = Field(default="", max_length=120)


class FreeCategory(DomainModel):
    case: Literal["category"] = "category"
    category: str = Field(default="", max_length=120)


FreeItemTarget = Annotated[Union[FreeSku, FreeCategory], Field(discriminator="case")]


class DiscountReward(DomainModel):
    id: EntityId = id_field()
    case: Literal["discount"] = "discount"
    kind: DiscountKind = Field(default_factory=PercentageDiscount)
    applies_to: AppliesTo = Field(default_factory=EntirePurchase)


class BundleReward(DomainModel):
    id: EntityId = id_field()
    case: Literal["bundle"] = "bundle"
    items: tuple[BundleItem, ...] = ()
    price: NonNegativeMoney
    original_price: NonNegativeMoney | None = None

    @model_validator(mode="after")
    def validate_original_price(self) -> "BundleReward":
        if self.original_price is not None and self.original_price < self.price:
            raise ValueError("Bundle original price cannot be lower than the bundle price")
        return self


class PointsReward(DomainModel):
    id: EntityId = id_field()
    case: Literal["points"] = "points"
    amount: int = Field(gt=0)


class CreditReward(DomainModel):
    id: EntityId = id_field()
    case: Literal["credit"] = "credit"
    amount: PositiveMoney


class MultiplierReward(DomainModel):
    id: EntityId = id_field()
    case: Literal["multiplier"] = "multiplier"
    factor: Decimal = Field(gt=1, max_digits=6, decimal_places=2)


class VoucherReward(DomainModel):
    id: EntityId = id_field()
    case: Literal["voucher"] = "voucher"
    voucher: VoucherKind


class FreeItemReward(DomainModel):
    id: EntityId = id_field()
    case: Literal["free_item"] = "free_item"
    item: FreeItemTarget
    applies_to: AppliesTo = Field(default_factory=EntirePurchase)


Reward = Annotated[
    Union[
        DiscountReward,
        BundleReward,
        PointsReward,
        CreditReward,
        MultiplierReward,
        VoucherReward,
        FreeItemReward,
    ],
    Field(discriminator="case"),
]

REWARD_CASES: tuple[str, ...] = (
    "discount",
    "bundle",
    "points",
    "credit",
    "multiplier",
    "voucher",
    "free_item",
)

reward_adapter: TypeAdapter[Reward] = TypeAdapter(Reward)
