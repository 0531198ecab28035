"""Pydantic request/response schemas for the Ordering API.

These are external contracts (anti-corruption layer) — separate from
internal Protean commands.
"""

from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class SelectedOptionSchema(BaseModel):
    option_group_id: str | None = None
    option_group_name: str | None = None
    option_item_id: str | None = None
    option_item_name: str | None = None
    quantity: int = Field(1, ge=1)
    price_delta: float | None = None  # honoured only by client-fallback pricing


class OrderItemSchema(BaseModel):
    product_id: str
    branch_product_id: str | None = None
    variant_id: str | None = None
    quantity: int = Field(ge=1)
    selected_options: list[SelectedOptionSchema] = []
    unit_price: float | None = None  # honoured only by client-fallback pricing
    total_price: float | None = None
    discount_total: float | None = None
    name: str | None = None


class DiscountSchema(BaseModel):
    source: str = "promo"
    code: str | None = None
    amount: float
    meta: dict[str, Any] = {}


class SurchargeSchema(BaseModel):
    type: str = "other"
    amount: float
    meta: dict[str, Any] = {}


class PromotionSchema(BaseModel):
    promotion_id: str | None = None
    code: str | None = None
    discount_amount: float


class TaxSchema(BaseModel):
    tax_template_code: str
    tax_rate: float = 0.0
    tax_amount: float


class DeliverySchema(BaseModel):
    delivery_status: str | None = None
    delivery_address: str | None = None
    contact_name: str | None = None
    contact_phone: str | None = None
    estimated_at: str | None = None
    provider: str | None = None


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------
class PlaceOrderRequest(BaseModel):
    restaurant_id: str
    branch_id: str | None = None
    items: list[OrderItemSchema]
    payment_method: str | None = None
    fulfillment_type: str | None = None
    source: str | None = None
    currency: str | None = None
    discounts: list[DiscountSchema] = []
    surcharges: list[SurchargeSchema] = []
    promotions: list[PromotionSchema] = []
    order_taxes: list[TaxSchema] = []
    shipping_fee: float = Field(0.0, ge=0)
    tip_amount: float = Field(0.0, ge=0)
    promo_code: str | None = None
    note: str | None = None
    delivery: DeliverySchema | None = None
    metadata: dict[str, Any] = {}

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "restaurant_id": "rest-001",
                    "branch_id": "branch-001",
                    "items": [
                        {
                            "product_id": "pho-bo",
                            "quantity": 2,
                            "selected_options": [{"option_group_name": "Size", "option_item_name": "Large"}],
                        }
                    ],
                    "payment_method": "cod",
                    "shipping_fee": 15000,
                    "discounts": [{"source": "promo", "code": "WELCOME", "amount": 10000}],
                }
            ]
        }
    }


class CancelOrderRequest(BaseModel):
    reason: str | None = None


class UpdateStatusRequest(BaseModel):
    status: str
    note: str | None = None


class CreateRevisionRequest(BaseModel):
    reason: str | None = None


class AdminPatchRequest(BaseModel):
    status: str | None = None
    payment_status: str | None = None
    note: str | None = None
    promo_code: str | None = None
    fulfillment_type: str | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class OrderIdResponse(BaseModel):
    order_id: str


class StatusResponse(BaseModel):
    status: str = "ok"


class OrderStatusResponse(BaseModel):
    order_id: str
    status: str


class RevisionResponse(BaseModel):
    order_id: str
    rev_no: int


class AdminPatchResponse(BaseModel):
    order_id: str
    changes: dict[str, Any]


class OrderPage(BaseModel):
    items: list[dict[str, Any]]
    total: int
    limit: int
    offset: int
