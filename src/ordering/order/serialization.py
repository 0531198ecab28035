"""Hydrated order representation used by revisions, queries and the API."""

import json


def _json(value, default=None):
    if not value:
        return default if default is not None else {}
    return json.loads(value)


def _iso(value):
    return value.isoformat() if value is not None else None


def serialize_order(order) -> dict:
    metadata = order.metadata_dict
    delivery = order.delivery
    return {
        "id": str(order.id),
        "user_id": str(order.user_id),
        "restaurant_id": str(order.restaurant_id),
        "branch_id": str(order.branch_id) if order.branch_id else None,
        "source": order.source,
        "fulfillment_type": order.fulfillment_type,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "payment_flow": order.payment_flow,
        "items_subtotal": order.items_subtotal,
        "items_discount": order.items_discount,
        "order_discount": order.order_discount,
        "surcharges_total": order.surcharges_total,
        "shipping_fee": order.shipping_fee,
        "tax_total": order.tax_total,
        "tip_amount": order.tip_amount,
        "total_amount": order.total_amount,
        "currency": order.currency,
        "promo_code": order.promo_code,
        "note": order.note,
        "metadata": metadata,
        "items": [
            {
                "id": str(item.id),
                "product_id": str(item.product_id),
                "branch_product_id": str(item.branch_product_id) if item.branch_product_id else None,
                "variant_id": str(item.variant_id) if item.variant_id else None,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "total_price": item.total_price,
                "discount_total": item.discount_total,
                "product_snapshot": _json(item.product_snapshot),
                "options": [
                    {
                        "option_group_name": option.option_group_name,
                        "option_item_name": option.option_item_name,
                        "price_delta": option.price_delta,
                    }
                    for option in order.options_for(item)
                ],
                "taxes": [
                    {
                        "tax_template_code": tax.tax_template_code,
                        "tax_rate": tax.tax_rate,
                        "tax_amount": tax.tax_amount,
                    }
                    for tax in order.taxes_for(item)
                ],
            }
            for item in order.items
        ],
        "discounts": [
            {"source": d.source, "code": d.code, "amount": d.amount, "meta": _json(d.meta)} for d in order.discounts
        ],
        "surcharges": [{"type": s.type, "amount": s.amount, "meta": _json(s.meta)} for s in order.surcharges],
        "promotions": [
            {
                "promotion_id": str(p.promotion_id) if p.promotion_id else None,
                "code": p.code,
                "discount_amount": p.discount_amount,
            }
            for p in order.promotions
        ],
        "tax_breakdowns": [
            {"tax_template_code": t.tax_template_code, "tax_rate": t.tax_rate, "tax_amount": t.tax_amount}
            for t in order.tax_breakdowns
        ],
        "delivery": (
            {
                "delivery_status": delivery.delivery_status,
                "delivery_address": delivery.delivery_address,
                "contact_name": delivery.contact_name,
                "contact_phone": delivery.contact_phone,
                "estimated_at": delivery.estimated_at,
                "delivered_at": delivery.delivered_at,
                "provider": delivery.provider,
                "proof": _json(delivery.proof),
            }
            if delivery is not None
            else None
        ),
        "created_at": _iso(order.created_at),
        "updated_at": _iso(order.updated_at),
    }


def serialize_event(event) -> dict:
    return {
        "id": str(event.id),
        "event_type": event.event_type,
        "actor_id": str(event.actor_id) if event.actor_id else None,
        "payload": event.payload_dict,
        "created_at": _iso(event.created_at),
    }


def serialize_revision(revision) -> dict:
    return {
        "id": str(revision.id),
        "rev_no": revision.rev_no,
        "reason": revision.reason,
        "created_by": str(revision.created_by) if revision.created_by else None,
        "snapshot": revision.snapshot_dict,
        "created_at": _iso(revision.created_at),
    }


def summarize_order(order) -> dict:
    """List representation: the order row without its children."""
    return {
        "id": str(order.id),
        "user_id": str(order.user_id),
        "restaurant_id": str(order.restaurant_id),
        "branch_id": str(order.branch_id) if order.branch_id else None,
        "fulfillment_type": order.fulfillment_type,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "total_amount": order.total_amount,
        "currency": order.currency,
        "created_at": _iso(order.created_at),
        "updated_at": _iso(order.updated_at),
    }
