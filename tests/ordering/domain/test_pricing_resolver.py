"""Tests for the pricing resolver — branch catalog pricing and the client-fallback path."""

import pytest
from ordering.pricing.catalog import CatalogProduct, Deadline, DeadlineExceeded, OptionGroup, OptionItem
from ordering.pricing.resolver import PricingResolver, match_option
from ordering.pricing.snapshot import PricingSource
from ordering.utils.metrics import pricing_fallback_total
from protean.exceptions import ValidationError


def _request(*items, **extra):
    return {"restaurant_id": "rest-001", "branch_id": "branch-001", "items": list(items), **extra}


@pytest.fixture()
def resolver(catalog):
    return PricingResolver(catalog)


class TestBranchCatalogPricing:
    def test_option_delta_is_added_to_unit_price(self, resolver):
        snapshot = resolver.resolve(
            _request(
                {
                    "product_id": "pho-bo",
                    "quantity": 2,
                    "selected_options": [{"option_group_name": "Size", "option_item_name": "Large"}],
                }
            )
        )

        (item,) = snapshot.items
        assert snapshot.source == PricingSource.BRANCH_CATALOG
        assert item.unit_price == 85000
        assert item.total_price == 170000
        (tax,) = item.taxes
        assert (tax.tax_template_code, tax.tax_rate, tax.tax_amount) == ("BRANCH_TAX", 7.0, 11900)
        assert snapshot.totals.total_amount == 181900

    def test_option_quantity_multiplies_delta(self, resolver):
        snapshot = resolver.resolve(
            _request({"product_id": "pho-bo", "quantity": 1, "selected_options": [{"name": "egg", "quantity": 2.7}]})
        )
        (item,) = snapshot.items
        (option,) = item.options
        assert option.quantity == 2
        assert option.price_delta == 10000
        assert item.unit_price == 85000

    def test_product_tax_rate_and_template_win(self, resolver):
        snapshot = resolver.resolve(_request({"product_id": "tra-da", "quantity": 3}))
        (tax,) = snapshot.order_taxes
        assert (tax.tax_template_code, tax.tax_rate, tax.tax_amount) == ("VAT_10", 10.0, 3000)

    def test_order_taxes_are_aggregated_across_items(self, resolver):
        snapshot = resolver.resolve(
            _request({"product_id": "pho-bo", "quantity": 1}, {"branch_product_id": "bp-pho-bo", "quantity": 1})
        )
        assert [(t.tax_template_code, t.tax_amount) for t in snapshot.order_taxes] == [("BRANCH_TAX", 10500)]

    def test_branch_product_id_selects_the_branch_projection(self, resolver):
        snapshot = resolver.resolve(
            {
                "restaurant_id": "rest-001",
                "branch_id": "branch-002",
                "items": [{"product_id": "pho-bo", "branch_product_id": "bp-pho-bo-3", "quantity": 1}],
            }
        )
        assert snapshot.items[0].unit_price == 80000
        assert snapshot.branch_id == "branch-002"

    def test_product_snapshot_freezes_identity(self, resolver):
        snapshot = resolver.resolve(_request({"product_id": "pho-bo", "quantity": 1}))
        frozen = snapshot.items[0].product_snapshot
        assert frozen["product"]["title"] == "Pho Bo"
        assert frozen["branch_product"]["base_price"] == 75000
        assert frozen["branch"] == {"id": "branch-001", "name": "District 1"}
        assert frozen["restaurant"]["name"] == "Pho Corner"

    def test_unavailable_item_rejected(self, resolver):
        with pytest.raises(ValidationError) as exc:
            resolver.resolve(_request({"product_id": "banh-mi", "quantity": 1}))
        assert "not available right now" in exc.value.messages["items"][0]

    def test_invisible_item_rejected(self, resolver):
        with pytest.raises(ValidationError):
            resolver.resolve(_request({"product_id": "secret-menu", "quantity": 1}))

    def test_unknown_product_rejected(self, resolver):
        with pytest.raises(ValidationError) as exc:
            resolver.resolve(_request({"product_id": "pizza", "quantity": 1}))
        assert "not available at this branch" in exc.value.messages["items"][0]

    def test_unresolvable_option_rejected(self, resolver):
        with pytest.raises(ValidationError):
            resolver.resolve(
                _request(
                    {
                        "product_id": "pho-bo",
                        "quantity": 1,
                        "selected_options": [{"option_group_name": "Size", "option_item_name": "Huge"}],
                    }
                )
            )

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "two", None])
    def test_invalid_quantity_rejected(self, resolver, quantity):
        with pytest.raises(ValidationError):
            resolver.resolve(_request({"product_id": "pho-bo", "quantity": quantity}))

    def test_unknown_branch_rejected(self, resolver):
        with pytest.raises(ValidationError) as exc:
            resolver.resolve({**_request({"product_id": "pho-bo", "quantity": 1}), "branch_id": "branch-404"})
        assert "branch_id" in exc.value.messages

    def test_missing_identifiers_rejected_before_fetching(self, resolver, catalog):
        with pytest.raises(ValidationError):
            resolver.resolve({"branch_id": "branch-001", "items": [{"product_id": "pho-bo", "quantity": 1}]})
        with pytest.raises(ValidationError):
            resolver.resolve({"restaurant_id": "rest-001", "items": [{"product_id": "pho-bo", "quantity": 1}]})
        with pytest.raises(ValidationError):
            resolver.resolve(_request())
        assert catalog.calls == []


class TestOptionMatching:
    product = CatalogProduct(
        id="p1",
        option_groups=(
            OptionGroup(id="g1", name="Size", items=(OptionItem(id="i1", name="Large", price_delta=5.0),)),
            OptionGroup(id="g2", name="Sauce", items=(OptionItem(id="i2", name="Chili", price_delta=1.0),)),
        ),
    )

    def test_group_id_then_item_id(self):
        group, item = match_option({"option_group_id": "g2", "option_item_id": "i2"}, self.product)
        assert (group.name, item.name) == ("Sauce", "Chili")

    def test_names_are_case_insensitive(self):
        group, item = match_option({"option_group_name": "SIZE", "option_item_name": " large "}, self.product)
        assert item.id == "i1"

    def test_without_group_every_group_is_searched(self):
        _, item = match_option({"option_item_name": "chili"}, self.product)
        assert item.id == "i2"

    def test_item_outside_named_group_is_not_matched(self):
        assert match_option({"option_group_name": "Size", "option_item_name": "Chili"}, self.product) is None

    def test_unknown_group_is_not_matched(self):
        assert match_option({"option_group_name": "Toppings", "option_item_name": "Large"}, self.product) is None


class TestCatalogOutage:
    def test_strict_mode_rejects_with_pricing_error(self, catalog):
        catalog.configure(available=False)
        before = pricing_fallback_total.labels(outcome="rejected")._value.get()

        with pytest.raises(ValidationError) as exc:
            PricingResolver(catalog, allow_client_fallback=False).resolve(
                _request({"product_id": "pho-bo", "quantity": 1})
            )

        assert exc.value.messages == {"pricing": ["Unable to confirm pricing with the branch catalog"]}
        assert pricing_fallback_total.labels(outcome="rejected")._value.get() == before + 1

    def test_expired_deadline_counts_as_outage(self, catalog):
        with pytest.raises(ValidationError) as exc:
            PricingResolver(catalog).resolve(
                _request({"product_id": "pho-bo", "quantity": 1}), deadline=Deadline.after(0)
            )
        assert "pricing" in exc.value.messages

    @pytest.mark.parametrize("allow_client_fallback", [False, True])
    def test_cancelled_request_is_not_priced_at_all(self, catalog, allow_client_fallback):
        deadline = Deadline.after(5)
        deadline.cancel()
        used_before = pricing_fallback_total.labels(outcome="used")._value.get()
        request = _request({"product_id": "pho-bo", "quantity": 1, "unit_price": 75000})

        with pytest.raises(DeadlineExceeded):
            PricingResolver(catalog, allow_client_fallback=allow_client_fallback).resolve(request, deadline=deadline)

        assert pricing_fallback_total.labels(outcome="used")._value.get() == used_before

    def test_fallback_prices_from_client_amounts(self, catalog):
        catalog.configure(available=False)
        resolver = PricingResolver(catalog, allow_client_fallback=True)

        snapshot = resolver.resolve(
            _request(
                {
                    "product_id": "pho-bo",
                    "quantity": 2,
                    "unit_price": 75000,
                    "selected_options": [{"option_item_name": "Large", "price_delta": 10000}],
                },
                shipping_fee=15000,
            )
        )

        assert snapshot.source == PricingSource.CLIENT_FALLBACK
        (item,) = snapshot.items
        assert item.unit_price == 85000
        assert item.total_price == 170000
        assert item.product_snapshot["pricing_source"] == "client-fallback"
        (tax,) = snapshot.order_taxes
        assert (tax.tax_template_code, tax.tax_amount) == ("VAT_7", 11900)
        assert snapshot.totals.total_amount == 196900

    def test_fallback_keeps_declared_order_taxes(self, catalog):
        catalog.configure(available=False)
        snapshot = PricingResolver(catalog, allow_client_fallback=True).resolve(
            _request(
                {"product_id": "pho-bo", "quantity": 1, "unit_price": 50000},
                order_taxes=[{"tax_template_code": "VAT_8", "tax_rate": 8, "tax_amount": 4000}],
            )
        )
        assert [t.tax_template_code for t in snapshot.order_taxes] == ["VAT_8"]
        assert snapshot.totals.tax_total == 4000

    def test_fallback_never_hides_validation_errors(self, catalog):
        resolver = PricingResolver(catalog, allow_client_fallback=True)
        with pytest.raises(ValidationError):
            resolver.resolve(_request({"product_id": "banh-mi", "quantity": 1}))
