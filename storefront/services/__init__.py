"""
                        Services Module

Contains all business logic services with the hybrid architecture pattern.
Providers have an in-memory (development) and a hosted (production)
implementation.

Services:
    - backend: Data access (in-memory, hosted REST, direct Postgres)
    - auth: Accounts, sessions and identity-provider sign-in
    - realtime: Row-change subscriptions
    - cart, checkout, orders, admin: Storefront business logic
    - reconciliation: Orphaned-order sweep
"""

from storefront.services.admin import AdminOrderService
from storefront.services.cart import Cart, CartStore
from storefront.services.categories import CategoryService
from storefront.services.checkout import CheckoutService
from storefront.services.orders import OrderService
from storefront.services.products import ProductService
from storefront.services.profiles import ProfileService

__all__ = [
    "AdminOrderService",
    "Cart",
    "CartStore",
    "CategoryService",
    "CheckoutService",
    "OrderService",
    "ProductService",
    "ProfileService",
]
