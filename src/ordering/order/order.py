"""Order aggregate — a priced, immutable-in-money food order.

An order is written once, with all of its children, from a pricing snapshot.
Afterwards only its status, payment status, timeline and a few administrative
fields change; the monetary totals are frozen and must always reconcile:

    total_amount = items_subtotal - items_discount - order_discount
                   + surcharges_total + shipping_fee + tax_total + tip_amount

Status changes go through the shared transition table in
``ordering.order.state_machine``.
"""

import json
from dataclasses import asdict
from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import (
    DateTime,
    Float,
    HasMany,
    HasOne,
    Identifier,
    Integer,
    String,
    Text,
)

from ordering.domain import ordering
from ordering.order.payment_plan import PaymentPlan
from ordering.order.state_machine import (
    OrderStatus,
    PaymentStatus,
    Transition,
    Trigger,
    next_state,
)
from ordering.pricing.adjustments import ensure_json
from ordering.pricing.snapshot import PricingSnapshot, money


class FulfillmentType(Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"
    DINEIN = "dinein"


_TIMELINE_LABELS = {
    "order.created": "Order created",
    Trigger.CONFIRM: "Order confirmed",
    Trigger.START_PREPARING: "Preparing",
    Trigger.MARK_READY: "Ready",
    Trigger.DISPATCH: "Out for delivery",
    Trigger.COMPLETE: "Completed",
    Trigger.CANCEL: "Cancelled",
    Trigger.FORCE_CANCEL: "Cancelled by admin",
    Trigger.PAYMENT_SUCCEEDED: "Payment received",
    Trigger.PAYMENT_FAILED: "Payment failed",
    Trigger.REFUND_COMPLETED: "Refunded",
    Trigger.AWAIT_PAYMENT: "Awaiting payment",
    Trigger.MARK_PAID: "Marked as paid",
    Trigger.PARTIAL_REFUND: "Partially refunded",
}


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@ordering.entity(part_of="Order", schema_name="order_items")
class OrderItem:
    """A priced line. ``product_snapshot`` freezes the catalog data it was priced from."""

    product_id = Identifier(required=True)
    branch_product_id = Identifier()
    variant_id = Identifier()
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    total_price = Float(required=True, min_value=0.0)
    discount_total = Float(default=0.0)
    product_snapshot = Text()  # JSON


@ordering.entity(part_of="Order", schema_name="order_item_options")
class OrderItemOption:
    order_item_id = Identifier(required=True)
    option_group_name = String(required=True, max_length=255)
    option_item_name = String(required=True, max_length=255)
    price_delta = Float(default=0.0)


@ordering.entity(part_of="Order", schema_name="order_item_tax_breakdowns")
class OrderItemTax:
    order_item_id = Identifier(required=True)
    tax_template_code = String(max_length=50)
    tax_rate = Float(default=0.0)
    tax_amount = Float(default=0.0)


@ordering.entity(part_of="Order", schema_name="order_discounts")
class OrderDiscount:
    source = String(max_length=50, default="promo")
    code = String(max_length=100)
    amount = Float(required=True)
    meta = Text()  # JSON


@ordering.entity(part_of="Order", schema_name="order_surcharges")
class OrderSurcharge:
    type = String(max_length=50, default="other")
    amount = Float(required=True)
    meta = Text()  # JSON


@ordering.entity(part_of="Order", schema_name="order_promotions")
class OrderPromotion:
    promotion_id = Identifier()
    code = String(max_length=100)
    discount_amount = Float(required=True)


@ordering.entity(part_of="Order", schema_name="order_tax_breakdowns")
class OrderTaxBreakdown:
    tax_template_code = String(max_length=50)
    tax_rate = Float(default=0.0)
    tax_amount = Float(default=0.0)


@ordering.entity(part_of="Order", schema_name="deliveries")
class Delivery:
    delivery_status = String(max_length=50, default="preparing")
    delivery_address = Text()
    contact_name = String(max_length=255)
    contact_phone = String(max_length=50)
    estimated_at = String(max_length=50)
    delivered_at = String(max_length=50)
    provider = String(max_length=100)
    proof = Text()  # JSON


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@ordering.aggregate(schema_name="orders")
class Order:
    user_id = Identifier(required=True)
    restaurant_id = Identifier(required=True)
    branch_id = Identifier()
    source = String(max_length=50, default="app")
    fulfillment_type = String(choices=FulfillmentType, default=FulfillmentType.DELIVERY.value)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.UNPAID.value)
    payment_method = String(max_length=50)
    payment_flow = String(max_length=20)

    items_subtotal = Float(default=0.0)
    items_discount = Float(default=0.0)
    order_discount = Float(default=0.0)
    surcharges_total = Float(default=0.0)
    shipping_fee = Float(default=0.0)
    tax_total = Float(default=0.0)
    tip_amount = Float(default=0.0)
    total_amount = Float(default=0.0, min_value=0.0)
    currency = String(max_length=3, default="VND")

    promo_code = String(max_length=100)
    note = Text()
    order_metadata = Text()  # JSON: payment plan, pricing provenance, timeline

    items = HasMany(OrderItem)
    item_options = HasMany(OrderItemOption)
    item_taxes = HasMany(OrderItemTax)
    discounts = HasMany(OrderDiscount)
    surcharges = HasMany(OrderSurcharge)
    promotions = HasMany(OrderPromotion)
    tax_breakdowns = HasMany(OrderTaxBreakdown)
    delivery = HasOne(Delivery)

    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def total_must_reconcile_with_components(self):
        expected = money(
            (self.items_subtotal or 0.0)
            - (self.items_discount or 0.0)
            - (self.order_discount or 0.0)
            + (self.surcharges_total or 0.0)
            + (self.shipping_fee or 0.0)
            + (self.tax_total or 0.0)
            + (self.tip_amount or 0.0)
        )
        if abs(expected - (self.total_amount or 0.0)) > 0.005:
            raise ValidationError(
                {"total_amount": [f"Total {self.total_amount} does not match its components ({expected})"]}
            )

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def place(cls, user_id, request: dict, pricing: PricingSnapshot, payment: PaymentPlan):
        """Build a new pending order, with all of its children, from a pricing snapshot."""
        now = datetime.now(UTC)
        fulfillment_type = request.get("fulfillment_type") or FulfillmentType.DELIVERY.value
        try:
            FulfillmentType(fulfillment_type)
        except ValueError:
            allowed = ", ".join(f.value for f in FulfillmentType)
            raise ValidationError({"fulfillment_type": [f"Must be one of: {allowed}"]}) from None

        items, item_options, item_taxes = [], [], []
        for priced in pricing.items:
            item = OrderItem(
                product_id=priced.product_id,
                branch_product_id=priced.branch_product_id,
                variant_id=priced.variant_id,
                quantity=priced.quantity,
                unit_price=priced.unit_price,
                total_price=priced.total_price,
                discount_total=priced.discount_total,
                product_snapshot=json.dumps(priced.product_snapshot),
            )
            items.append(item)
            item_options.extend(
                OrderItemOption(
                    order_item_id=item.id,
                    option_group_name=option.option_group_name,
                    option_item_name=option.option_item_name,
                    price_delta=option.price_delta,
                )
                for option in priced.options
            )
            item_taxes.extend(
                OrderItemTax(
                    order_item_id=item.id,
                    tax_template_code=tax.tax_template_code,
                    tax_rate=tax.tax_rate,
                    tax_amount=tax.tax_amount,
                )
                for tax in priced.taxes
            )

        delivery = None
        if pricing.delivery is not None:
            delivery = Delivery(
                delivery_status=pricing.delivery.delivery_status,
                delivery_address=pricing.delivery.delivery_address,
                contact_name=pricing.delivery.contact_name,
                contact_phone=pricing.delivery.contact_phone,
                estimated_at=pricing.delivery.estimated_at,
                delivered_at=pricing.delivery.delivered_at,
                provider=pricing.delivery.provider,
                proof=json.dumps(pricing.delivery.proof),
            )

        totals = pricing.totals
        metadata = {
            **ensure_json(request.get("metadata")),
            "payment": {
                "method": payment.method,
                "flow": payment.flow.value,
                "status": payment.initial_status.value,
                "amount": totals.total_amount,
                "currency": pricing.currency,
            },
            "pricing": {"source": pricing.source.value, "currency": pricing.currency, **asdict(totals)},
            "timeline": [_timeline_entry("order.created", now, user_id)],
            "placed_at": now.isoformat(),
            "delivery_address": pricing.delivery.delivery_address if pricing.delivery else None,
        }

        return cls(
            user_id=user_id,
            restaurant_id=request["restaurant_id"],
            branch_id=pricing.branch_id,
            source=request.get("source") or "app",
            fulfillment_type=fulfillment_type,
            status=OrderStatus.PENDING.value,
            payment_status=payment.initial_status.value,
            payment_method=payment.method,
            payment_flow=payment.flow.value,
            items_subtotal=totals.items_subtotal,
            items_discount=totals.items_discount,
            order_discount=totals.order_discount,
            surcharges_total=totals.surcharges_total,
            shipping_fee=totals.shipping_fee,
            tax_total=totals.tax_total,
            tip_amount=totals.tip_amount,
            total_amount=totals.total_amount,
            currency=pricing.currency,
            promo_code=request.get("promo_code"),
            note=request.get("note"),
            order_metadata=json.dumps(metadata),
            items=items,
            item_options=item_options,
            item_taxes=item_taxes,
            discounts=[
                OrderDiscount(source=d.source, code=d.code, amount=d.amount, meta=json.dumps(d.meta))
                for d in pricing.discounts
            ],
            surcharges=[OrderSurcharge(type=s.type, amount=s.amount, meta=json.dumps(s.meta)) for s in pricing.surcharges],
            promotions=[
                OrderPromotion(promotion_id=p.promotion_id, code=p.code, discount_amount=p.discount_amount)
                for p in pricing.promotions
            ],
            tax_breakdowns=[
                OrderTaxBreakdown(tax_template_code=t.tax_template_code, tax_rate=t.tax_rate, tax_amount=t.tax_amount)
                for t in pricing.order_taxes
            ],
            delivery=delivery,
            created_at=now,
            updated_at=now,
        )

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def transition(self, trigger: Trigger, actor_id=None, note=None) -> Transition:
        """Apply ``trigger`` through the transition table and record it on the timeline.

        Raises ``ValidationError`` when the transition is not allowed.
        """
        result = next_state(self.status, self.payment_status, trigger)
        if not result.changed:
            return result

        now = datetime.now(UTC)
        self.status = result.status.value
        self.payment_status = result.payment_status.value
        self.updated_at = now

        metadata = self.metadata_dict
        timeline = metadata.setdefault("timeline", [])
        timeline.append(_timeline_entry(trigger, now, actor_id, note))
        payment = metadata.setdefault("payment", {})
        payment["status"] = self.payment_status
        self.order_metadata = json.dumps(metadata)

        return result

    def amend(self, note=None, promo_code=None, fulfillment_type=None) -> dict:
        """Change administrative fields; returns the fields that actually changed."""
        changes = {}
        if fulfillment_type is not None:
            try:
                FulfillmentType(fulfillment_type)
            except ValueError:
                allowed = ", ".join(f.value for f in FulfillmentType)
                raise ValidationError({"fulfillment_type": [f"Must be one of: {allowed}"]}) from None
            if fulfillment_type != self.fulfillment_type:
                changes["fulfillment_type"] = fulfillment_type
        if note is not None and note != self.note:
            changes["note"] = note
        if promo_code is not None and promo_code != self.promo_code:
            changes["promo_code"] = promo_code

        for field_name, value in changes.items():
            setattr(self, field_name, value)
        if changes:
            self.updated_at = datetime.now(UTC)
        return changes

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    @property
    def metadata_dict(self) -> dict:
        return json.loads(self.order_metadata) if self.order_metadata else {}

    def options_for(self, item) -> list:
        return [option for option in self.item_options if str(option.order_item_id) == str(item.id)]

    def taxes_for(self, item) -> list:
        return [tax for tax in self.item_taxes if str(tax.order_item_id) == str(item.id)]


def _timeline_entry(code, at: datetime, actor_id, note=None) -> dict:
    key = code.value if isinstance(code, Trigger) else code
    entry = {
        "code": key if key.startswith("order.") else f"order.{key}",
        "label": _TIMELINE_LABELS.get(code, key),
        "at": at.isoformat(),
        "actor": str(actor_id) if actor_id else None,
    }
    if note:
        entry["note"] = note
    return entry
