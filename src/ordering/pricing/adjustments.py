"""Normalization of client-supplied order adjustments.

Discounts, surcharges and promotions with a zero amount are dropped.
"""

import json

from ordering.pricing.snapshot import (
    DeliveryDetails,
    Discount,
    Promotion,
    Surcharge,
    TaxLine,
    money,
    to_number,
)


def ensure_json(value) -> dict:
    """Return ``value`` as a dict, decoding JSON strings; anything else becomes ``{}``."""
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _entries(values):
    if not isinstance(values, (list, tuple)):
        return []
    return [entry for entry in values if isinstance(entry, dict)]


def normalize_discounts(values) -> tuple[Discount, ...]:
    discounts = []
    for entry in _entries(values):
        amount = money(to_number(entry.get("amount", entry.get("value"))))
        if not amount:
            continue
        discounts.append(
            Discount(
                amount=amount,
                source=str(entry.get("source") or entry.get("type") or "promo"),
                code=entry.get("code") or entry.get("promo_code"),
                meta=ensure_json(entry.get("meta")),
            )
        )
    return tuple(discounts)


def normalize_surcharges(values) -> tuple[Surcharge, ...]:
    surcharges = []
    for entry in _entries(values):
        amount = money(to_number(entry.get("amount", entry.get("value"))))
        if not amount:
            continue
        surcharges.append(
            Surcharge(
                amount=amount,
                type=str(entry.get("type") or entry.get("code") or "other"),
                meta=ensure_json(entry.get("meta")),
            )
        )
    return tuple(surcharges)


def normalize_promotions(values) -> tuple[Promotion, ...]:
    promotions = []
    for entry in _entries(values):
        amount = money(to_number(entry.get("discount_amount", entry.get("amount"))))
        if not amount:
            continue
        promotions.append(
            Promotion(
                discount_amount=amount,
                promotion_id=entry.get("promotion_id") or entry.get("id"),
                code=entry.get("code"),
            )
        )
    return tuple(promotions)


def normalize_order_taxes(values) -> tuple[TaxLine, ...]:
    return tuple(
        TaxLine(
            tax_template_code=entry.get("tax_template_code") or entry.get("code"),
            tax_rate=money(to_number(entry.get("tax_rate", entry.get("rate")))),
            tax_amount=money(to_number(entry.get("tax_amount", entry.get("amount")))),
        )
        for entry in _entries(values)
    )


def normalize_delivery(payload) -> DeliveryDetails | None:
    if not isinstance(payload, dict) or not payload:
        return None
    return DeliveryDetails(
        delivery_status=payload.get("delivery_status") or payload.get("status") or "preparing",
        delivery_address=payload.get("delivery_address") or payload.get("address"),
        contact_name=payload.get("contact_name"),
        contact_phone=payload.get("contact_phone"),
        estimated_at=payload.get("estimated_at"),
        delivered_at=payload.get("delivered_at"),
        provider=payload.get("provider"),
        proof=ensure_json(payload.get("proof")),
    )
