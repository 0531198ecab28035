import pytest
from ordering.config import OrderingSettings
from ordering.pricing.fake_catalog import FakeBranchCatalog
from ordering.scoping import Principal, Role
from ordering.services import OrderingServices
from protean.integrations.pytest import DomainFixture

RESTAURANT_ID = "rest-001"
BRANCH_ID = "branch-001"
OTHER_BRANCH_ID = "branch-002"


@pytest.fixture(scope="session")
def ordering_bed():
    from ordering.domain import ordering

    bed = DomainFixture(ordering)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(ordering_bed):
    with ordering_bed.domain_context():
        yield

        from protean import current_domain

        for _, provider in current_domain.providers.items():
            provider._data_reset()

        for broker in current_domain.brokers.values():
            broker._data_reset()


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
@pytest.fixture()
def catalog_payload():
    return {
        "restaurant": {"id": RESTAURANT_ID, "name": "Pho Corner"},
        "branches": [
            {
                "id": BRANCH_ID,
                "name": "District 1",
                "products": [
                    {
                        "id": "pho-bo",
                        "branch_product_id": "bp-pho-bo",
                        "title": "Pho Bo",
                        "base_price": 75000,
                        "options": [
                            {
                                "id": "grp-size",
                                "name": "Size",
                                "items": [
                                    {"id": "opt-regular", "name": "Regular", "price_delta": 0},
                                    {"id": "opt-large", "name": "Large", "price_delta": 10000},
                                ],
                            },
                            {
                                "id": "grp-extras",
                                "name": "Extras",
                                "items": [{"id": "opt-egg", "name": "Egg", "price_delta": 5000}],
                            },
                        ],
                    },
                    {
                        "id": "tra-da",
                        "branch_product_id": "bp-tra-da",
                        "title": "Iced Tea",
                        "base_price": 10000,
                        "tax_rate": 10,
                        "tax_template_code": "VAT_10",
                    },
                    {"id": "banh-mi", "title": "Banh Mi", "base_price": 30000, "available": False},
                    {"id": "secret-menu", "title": "Secret", "base_price": 99000, "is_visible": False},
                ],
            },
            {
                "id": OTHER_BRANCH_ID,
                "name": "District 3",
                "products": [{"id": "pho-bo", "branch_product_id": "bp-pho-bo-3", "base_price": 80000}],
            },
        ],
    }


@pytest.fixture()
def catalog(catalog_payload):
    fake = FakeBranchCatalog()
    fake.add_catalog(RESTAURANT_ID, catalog_payload)
    return fake


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------
@pytest.fixture()
def broker():
    from protean import current_domain

    return current_domain.brokers["default"]


@pytest.fixture()
def published(broker):
    """Messages the broker accepted on a stream, oldest first."""

    def _published(stream):
        return [message for _, message in broker._messages[stream]]

    return _published


@pytest.fixture()
def settings():
    return OrderingSettings(allow_client_pricing_fallback=False, broker_reconnect_delay_seconds=0)


@pytest.fixture()
def services(settings, catalog):
    return OrderingServices.build(settings, catalog=catalog)


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------
@pytest.fixture()
def customer():
    return Principal.of("cust-001")


@pytest.fixture()
def other_customer():
    return Principal.of("cust-002")


@pytest.fixture()
def owner():
    return Principal.of("owner-001", role=Role.OWNER, restaurant_ids=[RESTAURANT_ID])


@pytest.fixture()
def admin():
    return Principal.of("admin-001", role=Role.ADMIN)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
@pytest.fixture()
def order_request():
    def _request(**overrides):
        request = {
            "restaurant_id": RESTAURANT_ID,
            "branch_id": BRANCH_ID,
            "items": [
                {
                    "product_id": "pho-bo",
                    "quantity": 2,
                    "selected_options": [{"option_group_name": "Size", "option_item_name": "Large"}],
                }
            ],
            "payment_method": "cod",
            "discounts": [{"source": "promo", "code": "WELCOME", "amount": 10000}],
            "shipping_fee": 15000,
            "delivery": {"delivery_address": "12 Le Loi, District 1", "contact_name": "An"},
        }
        request.update(overrides)
        return request

    return _request


@pytest.fixture()
def place_order(services, customer, order_request):
    def _place(principal=None, **overrides):
        return services.placement.place(principal or customer, order_request(**overrides))

    return _place
