"""Principal context and access scoping.

The principal (id, role, restaurant scope, branch scope) arrives already
authenticated. Customers see their own orders; owners see orders of the
restaurants (and, when restricted, branches) they manage; admins see all.
"""

from dataclasses import dataclass
from enum import Enum

from protean.exceptions import ObjectNotFoundError, ValidationError


class ForbiddenError(Exception):
    """The principal is authenticated but may not act on this resource."""

    def __init__(self, message: str = "Forbidden") -> None:
        self.message = message
        super().__init__(message)


class Role(Enum):
    CUSTOMER = "customer"
    OWNER = "owner"
    ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    id: str
    role: Role = Role.CUSTOMER
    restaurant_ids: frozenset = frozenset()
    branch_ids: frozenset = frozenset()

    @classmethod
    def of(cls, id, role="customer", restaurant_ids=(), branch_ids=()) -> "Principal":
        if not id:
            raise ValidationError({"user_id": ["Unable to resolve the requesting user"]})
        try:
            role = Role(role) if not isinstance(role, Role) else role
        except ValueError:
            raise ValidationError({"role": [f"Unknown role '{role}'"]}) from None
        return cls(
            id=str(id),
            role=role,
            restaurant_ids=frozenset(str(r) for r in restaurant_ids if r),
            branch_ids=frozenset(str(b) for b in branch_ids if b),
        )

    def require_role(self, *roles: Role) -> None:
        if self.role not in roles:
            raise ForbiddenError(f"Role '{self.role.value}' may not perform this action")


@dataclass(frozen=True)
class OwnerScope:
    restaurant_ids: frozenset
    branch_ids: frozenset = frozenset()

    @classmethod
    def of(cls, principal: Principal) -> "OwnerScope":
        if not principal.restaurant_ids:
            raise ForbiddenError("Owner is not linked to any restaurant")
        return cls(restaurant_ids=principal.restaurant_ids, branch_ids=principal.branch_ids)

    @classmethod
    def from_lists(cls, restaurant_ids, branch_ids=()) -> "OwnerScope":
        if not restaurant_ids:
            raise ForbiddenError("Owner is not linked to any restaurant")
        return cls(frozenset(str(r) for r in restaurant_ids), frozenset(str(b) for b in branch_ids or ()))

    def covers_restaurant(self, restaurant_id) -> bool:
        return str(restaurant_id) in self.restaurant_ids

    def covers_branch(self, branch_id) -> bool:
        if not self.branch_ids:
            return True
        return branch_id is not None and str(branch_id) in self.branch_ids

    def check(self, order) -> None:
        """Reject orders outside the scope.

        An order of another restaurant is reported as missing; an order of an
        unmanaged branch of a managed restaurant is forbidden.
        """
        if not self.covers_restaurant(order.restaurant_id):
            raise ObjectNotFoundError(f"Order {order.id} not found")
        if not self.covers_branch(order.branch_id):
            raise ForbiddenError("Order belongs to a branch outside your scope")


def check_customer_owns(order, user_id) -> None:
    if str(order.user_id) != str(user_id):
        raise ObjectNotFoundError(f"Order {order.id} not found")
