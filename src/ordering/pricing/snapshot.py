"""Pricing snapshot — the frozen result of pricing an order request.

A snapshot carries everything the order writer needs: priced items with their
resolved options and tax lines, order-level adjustments, aggregated taxes and
the seven monetary components of the order total. It crosses the command
boundary as JSON (``to_dict`` / ``from_dict``).
"""

from dataclasses import asdict, dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum

from protean.exceptions import ValidationError

DEFAULT_CURRENCY = "VND"
BRANCH_DEFAULT_TAX_TEMPLATE = "BRANCH_TAX"

_CENT = Decimal("0.01")


class PricingSource(Enum):
    BRANCH_CATALOG = "branch-catalog"
    CLIENT_FALLBACK = "client-fallback"


def to_number(value, default: float = 0.0) -> float:
    """Coerce ``value`` to a finite float, falling back to ``default``."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return default
    if not number.is_finite():
        return default
    return float(number)


def money(value) -> float:
    """Round to two decimals, half away from zero."""
    return float(Decimal(str(to_number(value))).quantize(_CENT, rounding=ROUND_HALF_UP))


def to_currency(value, default: str = DEFAULT_CURRENCY) -> str:
    code = str(value or "").strip().upper()
    return code if len(code) == 3 else default


@dataclass(frozen=True)
class ResolvedOption:
    option_group_name: str
    option_item_name: str
    price_delta: float  # already multiplied by the option quantity
    option_group_id: str | None = None
    option_item_id: str | None = None
    quantity: int = 1


@dataclass(frozen=True)
class TaxLine:
    tax_template_code: str
    tax_rate: float
    tax_amount: float


@dataclass(frozen=True)
class PricedItem:
    product_id: str
    quantity: int
    unit_price: float
    total_price: float
    branch_product_id: str | None = None
    variant_id: str | None = None
    discount_total: float = 0.0
    product_snapshot: dict = field(default_factory=dict)
    options: tuple[ResolvedOption, ...] = ()
    taxes: tuple[TaxLine, ...] = ()


@dataclass(frozen=True)
class Discount:
    amount: float
    source: str = "promo"
    code: str | None = None
    meta: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Surcharge:
    amount: float
    type: str = "other"
    meta: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Promotion:
    discount_amount: float
    promotion_id: str | None = None
    code: str | None = None


@dataclass(frozen=True)
class DeliveryDetails:
    delivery_status: str = "preparing"
    delivery_address: str | None = None
    contact_name: str | None = None
    contact_phone: str | None = None
    estimated_at: str | None = None
    delivered_at: str | None = None
    provider: str | None = None
    proof: dict = field(default_factory=dict)


@dataclass(frozen=True)
class PricingTotals:
    items_subtotal: float
    items_discount: float
    order_discount: float
    surcharges_total: float
    shipping_fee: float
    tax_total: float
    tip_amount: float
    total_amount: float

    def components_sum(self) -> float:
        return money(
            self.items_subtotal
            - self.items_discount
            - self.order_discount
            + self.surcharges_total
            + self.shipping_fee
            + self.tax_total
            + self.tip_amount
        )


@dataclass(frozen=True)
class PricingSnapshot:
    source: PricingSource
    currency: str
    items: tuple[PricedItem, ...]
    totals: PricingTotals
    branch_id: str | None = None
    discounts: tuple[Discount, ...] = ()
    surcharges: tuple[Surcharge, ...] = ()
    promotions: tuple[Promotion, ...] = ()
    order_taxes: tuple[TaxLine, ...] = ()
    delivery: DeliveryDetails | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["source"] = self.source.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PricingSnapshot":
        items = tuple(
            PricedItem(
                **{
                    **item,
                    "options": tuple(ResolvedOption(**option) for option in item.get("options", ())),
                    "taxes": tuple(TaxLine(**tax) for tax in item.get("taxes", ())),
                }
            )
            for item in data["items"]
        )
        delivery = data.get("delivery")
        return cls(
            source=PricingSource(data["source"]),
            currency=data["currency"],
            items=items,
            totals=PricingTotals(**data["totals"]),
            branch_id=data.get("branch_id"),
            discounts=tuple(Discount(**entry) for entry in data.get("discounts", ())),
            surcharges=tuple(Surcharge(**entry) for entry in data.get("surcharges", ())),
            promotions=tuple(Promotion(**entry) for entry in data.get("promotions", ())),
            order_taxes=tuple(TaxLine(**entry) for entry in data.get("order_taxes", ())),
            delivery=DeliveryDetails(**delivery) if delivery else None,
        )


def aggregate_taxes(lines) -> tuple[TaxLine, ...]:
    """Group item tax lines by (template, rate), summing their amounts."""
    grouped: dict[tuple[str, float], float] = {}
    for line in lines:
        key = (line.tax_template_code or BRANCH_DEFAULT_TAX_TEMPLATE, money(line.tax_rate))
        grouped[key] = money(grouped.get(key, 0.0) + line.tax_amount)
    return tuple(TaxLine(tax_template_code=code, tax_rate=rate, tax_amount=amount) for (code, rate), amount in grouped.items())


def compute_totals(
    items,
    discounts=(),
    surcharges=(),
    order_taxes=(),
    shipping_fee=0.0,
    tip_amount=0.0,
) -> PricingTotals:
    """Derive the order totals from priced items and adjustments.

    Every component is rounded first and the total is the rounded sum of the
    rounded components, so the stored total always reconciles.
    """
    items_subtotal = money(sum(item.unit_price * item.quantity for item in items))
    items_discount = money(sum(item.discount_total for item in items))
    order_discount = money(sum(discount.amount for discount in discounts))
    surcharges_total = money(sum(surcharge.amount for surcharge in surcharges))
    tax_total = money(sum(tax.tax_amount for tax in order_taxes))
    shipping_fee = money(shipping_fee)
    tip_amount = money(tip_amount)

    if shipping_fee < 0:
        raise ValidationError({"shipping_fee": ["Shipping fee cannot be negative"]})
    if tip_amount < 0:
        raise ValidationError({"tip_amount": ["Tip cannot be negative"]})

    total_amount = money(
        items_subtotal - items_discount - order_discount + surcharges_total + shipping_fee + tax_total + tip_amount
    )
    if total_amount < 0:
        raise ValidationError({"total_amount": ["Discounts exceed the order value"]})

    return PricingTotals(
        items_subtotal=items_subtotal,
        items_discount=items_discount,
        order_discount=order_discount,
        surcharges_total=surcharges_total,
        shipping_fee=shipping_fee,
        tax_total=tax_total,
        tip_amount=tip_amount,
        total_amount=total_amount,
    )
