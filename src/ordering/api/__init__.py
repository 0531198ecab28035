"""Ordering domain API package."""

from ordering.api.routes import admin_router, customer_router, owner_router, register_forbidden_handler

__all__ = ["customer_router", "owner_router", "admin_router", "register_forbidden_handler"]
