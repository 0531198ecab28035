"""In-memory branch catalog for development and testing.

Serves catalogs registered with :meth:`add_catalog`, or fails every call with
``CatalogUnavailable`` once configured to be unavailable.
"""

from ordering.pricing.catalog import BranchCatalog, CatalogUnavailable, Deadline, RestaurantCatalog


class FakeBranchCatalog(BranchCatalog):
    def __init__(self) -> None:
        self.catalogs: dict[str, RestaurantCatalog] = {}
        self.available: bool = True
        self.failure_reason: str = "Catalog service timed out"
        self.calls: list[dict] = []

    def add_catalog(self, restaurant_id: str, payload: dict) -> None:
        self.catalogs[str(restaurant_id)] = RestaurantCatalog.from_payload(payload)

    def configure(self, available: bool, failure_reason: str = "Catalog service timed out") -> None:
        self.available = available
        self.failure_reason = failure_reason

    def fetch(self, restaurant_id: str, branch_id: str | None, deadline: Deadline) -> RestaurantCatalog:
        self.calls.append({"restaurant_id": restaurant_id, "branch_id": branch_id})
        deadline.check()
        if not self.available:
            raise CatalogUnavailable(self.failure_reason)
        catalog = self.catalogs.get(str(restaurant_id))
        if catalog is None:
            raise CatalogUnavailable(f"No catalog for restaurant {restaurant_id}")
        return catalog
