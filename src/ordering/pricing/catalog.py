"""Branch catalog port (abstract interface).

The pricing resolver reads authoritative branch prices through this port.
Adapters translate every transport problem (timeouts, refused connections,
non-2xx responses, undecodable or empty bodies) into ``CatalogUnavailable``;
that is the only failure the resolver may degrade on.
"""

import threading
import time
from abc import ABC, abstractmethod
from concurrent import futures
from dataclasses import dataclass, field


class CatalogUnavailable(Exception):
    """The branch catalog could not be read."""


class DeadlineExceeded(CatalogUnavailable):
    """The request's pricing budget ran out or the request was cancelled."""


class Deadline:
    """Time budget tied to a single order request.

    Created when the request starts; adapters size their network timeouts from
    :meth:`remaining` and refuse to start work once the budget is spent or the
    request has been cancelled.
    """

    def __init__(self, seconds: float, clock=time.monotonic) -> None:
        self._clock = clock
        self._expires_at = clock() + seconds
        self._cancelled = threading.Event()

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(seconds)

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.cancelled or self.remaining() <= 0

    def check(self) -> float:
        """Return the remaining budget, raising ``DeadlineExceeded`` when none is left."""
        if self.cancelled:
            raise DeadlineExceeded("Pricing request was cancelled")
        remaining = self.remaining()
        if remaining <= 0:
            raise DeadlineExceeded("Pricing deadline exceeded")
        return remaining

    def wait(self, in_flight: futures.Future, poll_interval: float = 0.05):
        """Return the result of ``in_flight`` once it completes.

        Raises ``DeadlineExceeded`` as soon as the budget runs out or the
        request is cancelled, without waiting for ``in_flight`` to finish.
        """
        while True:
            done, _ = futures.wait([in_flight], timeout=min(poll_interval, self.remaining()))
            if done:
                return in_flight.result()
            try:
                self.check()
            except DeadlineExceeded:
                in_flight.cancel()
                raise


@dataclass(frozen=True)
class OptionItem:
    id: str | None
    name: str
    price_delta: float = 0.0


@dataclass(frozen=True)
class OptionGroup:
    id: str | None
    name: str
    items: tuple[OptionItem, ...] = ()


@dataclass(frozen=True)
class CatalogProduct:
    id: str
    branch_product_id: str | None = None
    title: str | None = None
    description: str | None = None
    images: tuple = ()
    category_id: str | None = None
    base_price: float = 0.0
    price_mode: str | None = None
    base_price_override: float | None = None
    tax_rate: float | None = None
    tax_template_code: str | None = None
    available: bool = True
    is_visible: bool = True
    option_groups: tuple[OptionGroup, ...] = ()


@dataclass(frozen=True)
class CatalogBranch:
    id: str
    name: str | None = None
    products: tuple[CatalogProduct, ...] = ()


@dataclass(frozen=True)
class RestaurantCatalog:
    restaurant: dict = field(default_factory=dict)
    branches: tuple[CatalogBranch, ...] = ()

    def branch(self, branch_id) -> CatalogBranch | None:
        return next((b for b in self.branches if str(b.id) == str(branch_id)), None)

    @classmethod
    def from_payload(cls, payload) -> "RestaurantCatalog":
        """Build a catalog from the catalog service's JSON body.

        Raises ``CatalogUnavailable`` when the body does not look like a catalog.
        """
        if not isinstance(payload, dict) or not isinstance(payload.get("branches"), list):
            raise CatalogUnavailable("Catalog response did not contain branches")

        try:
            branches = tuple(_parse_branch(entry) for entry in payload["branches"] if isinstance(entry, dict))
        except (KeyError, TypeError, ValueError) as exc:
            raise CatalogUnavailable(f"Catalog response is malformed: {exc}") from exc

        restaurant = payload.get("restaurant")
        return cls(restaurant=restaurant if isinstance(restaurant, dict) else {}, branches=branches)


def _parse_branch(entry: dict) -> CatalogBranch:
    return CatalogBranch(
        id=str(entry["id"]),
        name=entry.get("name"),
        products=tuple(_parse_product(p) for p in entry.get("products") or [] if isinstance(p, dict)),
    )


def _parse_product(entry: dict) -> CatalogProduct:
    tax_rate = entry.get("tax_rate")
    override = entry.get("base_price_override")
    return CatalogProduct(
        id=str(entry["id"]),
        branch_product_id=entry.get("branch_product_id"),
        title=entry.get("title"),
        description=entry.get("description"),
        images=tuple(entry.get("images") or ()),
        category_id=entry.get("category_id"),
        base_price=float(entry.get("base_price") or 0),
        price_mode=entry.get("price_mode"),
        base_price_override=float(override) if override is not None else None,
        tax_rate=float(tax_rate) if tax_rate is not None else None,
        tax_template_code=entry.get("tax_template_code"),
        available=entry.get("available") is not False,
        is_visible=entry.get("is_visible") is not False,
        option_groups=tuple(
            OptionGroup(
                id=group.get("id"),
                name=group.get("name") or "Option",
                items=tuple(
                    OptionItem(
                        id=item.get("id"),
                        name=item.get("name") or "Selection",
                        price_delta=float(item.get("effective_price_delta", item.get("price_delta")) or 0),
                    )
                    for item in group.get("items") or []
                    if isinstance(item, dict)
                ),
            )
            for group in entry.get("options") or []
            if isinstance(group, dict)
        ),
    )


class BranchCatalog(ABC):
    """Abstract branch catalog interface."""

    @abstractmethod
    def fetch(self, restaurant_id: str, branch_id: str | None, deadline: Deadline) -> RestaurantCatalog:
        """Return the restaurant's catalog, scoped to ``branch_id`` when given."""
        ...
