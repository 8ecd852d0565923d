from dataclasses import dataclass
from decimal import Decimal

from loyalty_rules.core.config import settings
from loyalty_rules.core.money import ZERO_MONEY, floor_points, format_money, round_percent, to_money
from loyalty_rules.schemas.evaluation import Event, LineItem, ResolvedReward
from loyalty_rules.schemas.rewards import (
    AppliesTo,
    BogoSpec,
    BundleReward,
    CategoryScope,
    CreditReward,
    DiscountReward,
    FixedAmountDiscount,
    FreeItemReward,
    FreeSku,
    MultiplierReward,
    PercentageDiscount,
    PointsReward,
    Reward,
    SkuScope,
    VoucherReward,
    VoucherValue,
)


@dataclass(frozen=True)
class BundleSavings:
    savings: Decimal
    savings_pct: int


def bundle_savings(price: Decimal, original_price: Decimal | None) -> BundleSavings | None:
    """Savings shown for a bundle; ``None`` when no original price was configured."""
    if original_price is None:
        return None
    savings = to_money(max(ZERO_MONEY, original_price - price))
    if original_price <= 0:
        return BundleSavings(savings=savings, savings_pct=0)
    pct = round_percent(savings / original_price * 100)
    return BundleSavings(savings=savings, savings_pct=min(max(pct, 0), 100))


def eligible_subtotal(applies_to: AppliesTo, event: Event) -> Decimal | None:
    if isinstance(applies_to, CategoryScope):
        if not event.line_items:
            return None
        wanted = {item.lower() for item in applies_to.categories}
        lines = [line for line in event.line_items if (line.category or "").lower() in wanted]
        return _lines_total(lines)
    if isinstance(applies_to, SkuScope):
        if not event.line_items:
            return None
        wanted = set(applies_to.skus)
        return _lines_total([line for line in event.line_items if line.sku in wanted])
    if event.amount is not None:
        return event.amount
    if event.line_items:
        return _lines_total(list(event.line_items))
    return None


def bogo_discount(spec: BogoSpec, line_items: tuple[LineItem, ...]) -> Decimal | None:
    """Value of the free units earned by ``spec`` on a basket; ``None`` without a basket."""
    product = spec.buy.product
    if not product or not line_items:
        return None

    bought = [line for line in line_items if line.sku == product]
    bought_units = sum(line.quantity for line in bought)
    if bought_units == 0:
        return ZERO_MONEY

    mode = spec.get.mode
    if mode.case == "same":
        group_size = spec.buy.qty + spec.get.qty
        free_units = (bought_units // group_size) * spec.get.qty
        unit_price = min(line.unit_price for line in bought)
        return to_money(unit_price * free_units)

    max_free = (bought_units // spec.buy.qty) * spec.get.qty
    if mode.case == "different":
        wanted = set(mode.skus)
        candidates = [line for line in line_items if line.sku in wanted and line.sku != product]
    else:
        ceiling = max(line.unit_price for line in bought)
        candidates = [
            line for line in line_items if line.sku != product and line.unit_price <= ceiling
        ]

    unit_prices = sorted(
        price for line in candidates for price in [line.unit_price] * line.quantity
    )
    return to_money(sum(unit_prices[:max_free], ZERO_MONEY))


def resolve_reward(reward: Reward, event: Event) -> ResolvedReward:
    """Concrete reward value for ``event``; amounts stay ``None`` when the event lacks the base data."""
    if isinstance(reward, DiscountReward):
        return _resolve_discount(reward, event)

    if isinstance(reward, BundleReward):
        savings = bundle_savings(reward.price, reward.original_price)
        return ResolvedReward(
            reward_id=reward.id,
            case=reward.case,
            amount=savings.savings if savings else None,
            details={
                "price": str(reward.price),
                "original_price": str(reward.original_price) if reward.original_price is not None else None,
                "savings_pct": savings.savings_pct if savings else None,
                "skus": [item.sku for item in reward.items],
            },
        )

    if isinstance(reward, PointsReward):
        return ResolvedReward(reward_id=reward.id, case=reward.case, points=reward.amount)

    if isinstance(reward, CreditReward):
        return ResolvedReward(reward_id=reward.id, case=reward.case, amount=reward.amount)

    if isinstance(reward, MultiplierReward):
        bonus = None
        if event.base_points is not None:
            bonus = floor_points(Decimal(event.base_points) * (reward.factor - 1))
        return ResolvedReward(
            reward_id=reward.id,
            case=reward.case,
            points=bonus,
            details={"factor": str(reward.factor), "base_points": event.base_points},
        )

    if isinstance(reward, VoucherReward):
        if isinstance(reward.voucher, VoucherValue):
            return ResolvedReward(
                reward_id=reward.id,
                case=reward.case,
                amount=reward.voucher.amount,
                details={"voucher": "value"},
            )
        return ResolvedReward(
            reward_id=reward.id,
            case=reward.case,
            details={"voucher": "sku", "sku": reward.voucher.sku},
        )

    return _resolve_free_item(reward, event)


def _resolve_discount(reward: DiscountReward, event: Event) -> ResolvedReward:
    kind = reward.kind
    if isinstance(kind, PercentageDiscount):
        base = eligible_subtotal(reward.applies_to, event)
        amount = to_money(base * kind.value / 100) if base is not None else None
        details = {"kind": kind.case, "value": str(kind.value), "base": _text(base)}
    elif isinstance(kind, FixedAmountDiscount):
        base = eligible_subtotal(reward.applies_to, event)
        amount = min(kind.amount, base) if base is not None else kind.amount
        details = {"kind": kind.case, "value": str(kind.amount), "base": _text(base)}
    else:
        amount = bogo_discount(kind.spec, event.line_items)
        details = {
            "kind": kind.case,
            "buy_product": kind.spec.buy.product,
            "buy_qty": kind.spec.buy.qty,
            "get_mode": kind.spec.get.mode.case,
            "get_qty": kind.spec.get.qty,
        }
    return ResolvedReward(reward_id=reward.id, case=reward.case, amount=amount, details=details)


def _resolve_free_item(reward: FreeItemReward, event: Event) -> ResolvedReward:
    if isinstance(reward.item, FreeSku):
        matches = [line for line in event.line_items if line.sku == reward.item.sku]
        details = {"sku": reward.item.sku}
    else:
        wanted = reward.item.category.lower()
        matches = [line for line in event.line_items if (line.category or "").lower() == wanted]
        details = {"category": reward.item.category}
    amount = min(line.unit_price for line in matches) if matches else None
    return ResolvedReward(reward_id=reward.id, case=reward.case, amount=amount, details=details)


def describe_reward(reward: Reward, *, currency_symbol: str | None = None) -> str:
    """Human-readable offer text for review screens; never persisted."""
    symbol = currency_symbol if currency_symbol is not None else settings.currency_symbol

    if isinstance(reward, DiscountReward):
        kind = reward.kind
        scope = _describe_scope(reward.applies_to)
        if isinstance(kind, PercentageDiscount):
            return f"{_number(kind.value)}% off {scope}"
        if isinstance(kind, FixedAmountDiscount):
            return f"{format_money(kind.amount, symbol)} off {scope}"
        spec = kind.spec
        if spec.get.mode.case == "same":
            return f"Buy {spec.buy.qty} get {spec.get.qty} free"
        if spec.get.mode.case == "different":
            return f"Buy {spec.buy.qty} {spec.buy.product} get {spec.get.qty} selected item(s) free".replace("  ", " ")
        return f"Buy {spec.buy.qty} get {spec.get.qty} of equal or lesser value free"

    if isinstance(reward, BundleReward):
        text = f"Bundle of {len(reward.items)} item(s) for {format_money(reward.price, symbol)}"
        savings = bundle_savings(reward.price, reward.original_price)
        if savings and savings.savings > 0:
            text += f" (save {savings.savings_pct}%)"
        return text

    if isinstance(reward, PointsReward):
        return f"Earn {reward.amount} bonus points"
    if isinstance(reward, CreditReward):
        return f"{format_money(reward.amount, symbol)} store credit"
    if isinstance(reward, MultiplierReward):
        return f"{_number(reward.factor)}x points"
    if isinstance(reward, VoucherReward):
        if isinstance(reward.voucher, VoucherValue):
            return f"{format_money(reward.voucher.amount, symbol)} voucher"
        return f"Voucher for {reward.voucher.sku or 'a product'}"
    if isinstance(reward.item, FreeSku):
        return f"Free {reward.item.sku or 'item'}"
    return f"Free item from {reward.item.category or 'a category'}"


def _describe_scope(applies_to: AppliesTo) -> str:
    if isinstance(applies_to, CategoryScope):
        return f"categories: {', '.join(applies_to.categories)}" if applies_to.categories else "selected categories"
    if isinstance(applies_to, SkuScope):
        return f"items: {', '.join(applies_to.skus)}" if applies_to.skus else "selected items"
    return "entire purchase"


def _lines_total(lines: list[LineItem]) -> Decimal:
    return to_money(sum((line.unit_price * line.quantity for line in lines), ZERO_MONEY))


def _number(value: Decimal) -> str:
    if value == value.to_integral_value():
        return str(int(value))
    return str(value.normalize())


def _text(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None
