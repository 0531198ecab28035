"""Pricing resolver — turns an order request into a frozen pricing snapshot.

Prices come from the branch catalog. When the catalog cannot be reached the
resolver either rejects the request or, if it was built with
``allow_client_fallback=True``, prices from the amounts the client declared.
Validation problems in the request (unknown product, unavailable item,
unresolvable option, bad quantity) are never degraded: they always raise.
"""

import math

import structlog
from protean.exceptions import ValidationError

from ordering.pricing.adjustments import (
    ensure_json,
    normalize_delivery,
    normalize_discounts,
    normalize_order_taxes,
    normalize_promotions,
    normalize_surcharges,
)
from ordering.pricing.catalog import (
    BranchCatalog,
    CatalogBranch,
    CatalogProduct,
    CatalogUnavailable,
    Deadline,
    RestaurantCatalog,
)
from ordering.pricing.snapshot import (
    BRANCH_DEFAULT_TAX_TEMPLATE,
    DEFAULT_CURRENCY,
    PricedItem,
    PricingSnapshot,
    PricingSource,
    ResolvedOption,
    TaxLine,
    aggregate_taxes,
    compute_totals,
    money,
    to_currency,
    to_number,
)
from ordering.utils.metrics import pricing_fallback_total

logger = structlog.get_logger(__name__)


def _text(value) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def _quantity(raw: dict, index: int) -> int:
    quantity = to_number(raw.get("quantity"), 0)
    if quantity <= 0 or quantity != int(quantity):
        raise ValidationError({"items": [f"Item {index + 1} has an invalid quantity"]})
    return int(quantity)


def _selections(raw: dict) -> list[dict]:
    selections = raw.get("selected_options") or raw.get("options") or []
    return [entry for entry in selections if isinstance(entry, dict)]


def _option_quantity(selection: dict) -> int:
    return max(1, math.floor(to_number(selection.get("quantity"), 1)))


def match_option(selection: dict, product: CatalogProduct):
    """Find the (group, item) a selection refers to, or ``None``.

    Groups are matched by id, else by case-insensitive name; with neither
    given every group is a candidate. Within candidate groups items are
    matched by id, else by case-insensitive name.
    """
    group_id = selection.get("option_group_id")
    group_name = _text(selection.get("option_group_name"))

    groups = [g for g in product.option_groups if g.items]
    if group_id is not None and any(str(g.id) == str(group_id) for g in groups):
        candidates = [g for g in groups if str(g.id) == str(group_id)]
    elif group_name and any(_text(g.name) == group_name for g in groups):
        candidates = [g for g in groups if _text(g.name) == group_name]
    elif group_id is None and not group_name:
        candidates = groups
    else:
        return None

    item_id = selection.get("option_item_id") or selection.get("id")
    if item_id is not None:
        for group in candidates:
            for item in group.items:
                if item.id is not None and str(item.id) == str(item_id):
                    return group, item

    item_name = _text(selection.get("option_item_name") or selection.get("name"))
    if item_name:
        for group in candidates:
            for item in group.items:
                if _text(item.name) == item_name:
                    return group, item

    return None


def _find_product(branch: CatalogBranch, raw: dict) -> CatalogProduct | None:
    branch_product_id = raw.get("branch_product_id")
    if branch_product_id:
        product = next((p for p in branch.products if str(p.branch_product_id) == str(branch_product_id)), None)
        if product is not None:
            return product

    product_id = raw.get("product_id")
    if product_id:
        return next((p for p in branch.products if p.id == str(product_id)), None)
    return None


def _line_discount(raw: dict, total_price: float) -> float:
    return money(min(max(to_number(raw.get("discount_total")), 0.0), total_price))


class PricingResolver:
    def __init__(
        self,
        catalog: BranchCatalog,
        allow_client_fallback: bool = False,
        fallback_tax_rate: float = 7.0,
        default_currency: str = DEFAULT_CURRENCY,
        timeout_seconds: float = 7.0,
    ) -> None:
        self.catalog = catalog
        self.allow_client_fallback = allow_client_fallback
        self.fallback_tax_rate = fallback_tax_rate
        self.default_currency = default_currency
        self.timeout_seconds = timeout_seconds

    def resolve(self, request: dict, deadline: Deadline | None = None) -> PricingSnapshot:
        restaurant_id = request.get("restaurant_id")
        branch_id = request.get("branch_id")
        if not restaurant_id:
            raise ValidationError({"restaurant_id": ["restaurant_id is required"]})
        if not branch_id:
            raise ValidationError({"branch_id": ["branch_id is required for branch orders"]})
        if not request.get("items"):
            raise ValidationError({"items": ["Order items are required"]})

        deadline = deadline or Deadline.after(self.timeout_seconds)
        try:
            catalog = self.catalog.fetch(str(restaurant_id), str(branch_id), deadline)
        except CatalogUnavailable as exc:
            if deadline.cancelled:
                logger.info("pricing_cancelled", restaurant_id=restaurant_id, branch_id=branch_id)
                raise
            if not self.allow_client_fallback:
                pricing_fallback_total.labels(outcome="rejected").inc()
                logger.warning("pricing_unconfirmed", restaurant_id=restaurant_id, branch_id=branch_id, error=str(exc))
                raise ValidationError({"pricing": ["Unable to confirm pricing with the branch catalog"]}) from exc

            pricing_fallback_total.labels(outcome="used").inc()
            logger.warning("pricing_fallback_used", restaurant_id=restaurant_id, branch_id=branch_id, error=str(exc))
            return self.price_from_client(request)

        return self.price_from_catalog(request, catalog)

    # -------------------------------------------------------------------
    # Branch catalog pricing
    # -------------------------------------------------------------------
    def price_from_catalog(self, request: dict, catalog: RestaurantCatalog) -> PricingSnapshot:
        branch_id = str(request["branch_id"])
        branch = catalog.branch(branch_id)
        if branch is None:
            raise ValidationError({"branch_id": ["Branch not found for restaurant"]})
        if not branch.products:
            raise ValidationError({"branch_id": ["Branch has no available products"]})

        items = tuple(
            self._price_item(index, raw, branch, catalog) for index, raw in enumerate(request["items"])
        )
        return self._snapshot(PricingSource.BRANCH_CATALOG, request, items, aggregate_taxes(t for i in items for t in i.taxes))

    def _price_item(self, index: int, raw: dict, branch: CatalogBranch, catalog: RestaurantCatalog) -> PricedItem:
        product = _find_product(branch, raw)
        if product is None:
            raise ValidationError({"items": [f"Item {index + 1} is not available at this branch"]})
        if not product.available or not product.is_visible:
            raise ValidationError({"items": [f"Item {index + 1} is not available right now"]})

        quantity = _quantity(raw, index)

        addon = 0.0
        options = []
        for selection in _selections(raw):
            match = match_option(selection, product)
            if match is None:
                raise ValidationError({"items": [f"Selected option for item {index + 1} is not available"]})
            group, option = match
            option_quantity = _option_quantity(selection)
            delta = money(option.price_delta * option_quantity)
            addon += delta
            options.append(
                ResolvedOption(
                    option_group_name=group.name,
                    option_item_name=option.name,
                    price_delta=delta,
                    option_group_id=group.id,
                    option_item_id=option.id,
                    quantity=option_quantity,
                )
            )

        unit_price = money(product.base_price + addon)
        total_price = money(unit_price * quantity)

        tax_rate = money(product.tax_rate) if product.tax_rate is not None else self.fallback_tax_rate
        taxes = ()
        if tax_rate:
            taxes = (
                TaxLine(
                    tax_template_code=product.tax_template_code or BRANCH_DEFAULT_TAX_TEMPLATE,
                    tax_rate=tax_rate,
                    tax_amount=money(total_price * tax_rate / 100),
                ),
            )

        return PricedItem(
            product_id=product.id,
            branch_product_id=product.branch_product_id,
            variant_id=raw.get("variant_id"),
            quantity=quantity,
            unit_price=unit_price,
            total_price=total_price,
            discount_total=_line_discount(raw, total_price),
            product_snapshot={
                "product": {
                    "id": product.id,
                    "title": product.title,
                    "description": product.description,
                    "images": list(product.images),
                    "category_id": product.category_id,
                },
                "branch_product": {
                    "id": product.branch_product_id,
                    "branch_id": branch.id,
                    "base_price": product.base_price,
                    "price_mode": product.price_mode,
                    "base_price_override": product.base_price_override,
                    "tax_rate": tax_rate,
                },
                "branch": {"id": branch.id, "name": branch.name},
                "restaurant": catalog.restaurant or None,
            },
            options=tuple(options),
            taxes=taxes,
        )

    # -------------------------------------------------------------------
    # Client-declared pricing (degraded)
    # -------------------------------------------------------------------
    def price_from_client(self, request: dict) -> PricingSnapshot:
        items = tuple(self._client_item(index, raw) for index, raw in enumerate(request["items"]))

        order_taxes = normalize_order_taxes(request.get("order_taxes"))
        if not order_taxes:
            subtotal = sum(item.unit_price * item.quantity for item in items)
            order_taxes = (
                TaxLine(
                    tax_template_code=f"VAT_{self.fallback_tax_rate:g}",
                    tax_rate=self.fallback_tax_rate,
                    tax_amount=money(subtotal * self.fallback_tax_rate / 100),
                ),
            )
        return self._snapshot(PricingSource.CLIENT_FALLBACK, request, items, order_taxes)

    def _client_item(self, index: int, raw: dict) -> PricedItem:
        product_id = raw.get("product_id")
        if not product_id:
            raise ValidationError({"items": [f"Item {index + 1} is missing product_id"]})
        quantity = _quantity(raw, index)

        options = tuple(
            ResolvedOption(
                option_group_name=str(entry.get("option_group_name") or "Custom Option"),
                option_item_name=str(entry.get("option_item_name") or entry.get("name") or "Selection"),
                price_delta=money(to_number(entry.get("price_delta")) * _option_quantity(entry)),
                option_group_id=entry.get("option_group_id"),
                option_item_id=entry.get("option_item_id"),
                quantity=_option_quantity(entry),
            )
            for entry in _selections(raw)
        )
        options_delta = money(sum(option.price_delta for option in options))

        unit_price = money(to_number(raw.get("unit_price", raw.get("price"))) + options_delta)
        if unit_price < 0:
            raise ValidationError({"items": [f"Item {index + 1} has a negative price"]})
        declared_total = to_number(raw.get("total_price"))
        total_price = money(declared_total) if declared_total and not options_delta else money(unit_price * quantity)

        snapshot = ensure_json(raw.get("product_snapshot"))
        return PricedItem(
            product_id=str(product_id),
            branch_product_id=raw.get("branch_product_id"),
            variant_id=raw.get("variant_id"),
            quantity=quantity,
            unit_price=unit_price,
            total_price=total_price,
            discount_total=_line_discount(raw, total_price),
            product_snapshot={**snapshot, "pricing_source": PricingSource.CLIENT_FALLBACK.value},
            options=options,
        )

    # -------------------------------------------------------------------
    def _snapshot(self, source: PricingSource, request: dict, items, order_taxes) -> PricingSnapshot:
        discounts = normalize_discounts(request.get("discounts"))
        surcharges = normalize_surcharges(request.get("surcharges"))
        totals = compute_totals(
            items,
            discounts=discounts,
            surcharges=surcharges,
            order_taxes=order_taxes,
            shipping_fee=to_number(request.get("shipping_fee")),
            tip_amount=to_number(request.get("tip_amount")),
        )
        return PricingSnapshot(
            source=source,
            currency=to_currency(request.get("currency"), self.default_currency),
            items=items,
            totals=totals,
            branch_id=str(request["branch_id"]) if request.get("branch_id") else None,
            discounts=discounts,
            surcharges=surcharges,
            promotions=normalize_promotions(request.get("promotions")),
            order_taxes=tuple(order_taxes),
            delivery=normalize_delivery(request.get("delivery")),
        )
