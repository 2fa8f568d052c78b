"""
Menu Seed Data

Idempotent upsert of the Pizza Palace categories (keyed by id) and
products (keyed by name). Runs at start-up against the in-memory backend
and on demand from the admin database-init route.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from storefront.errors import BackendError
from storefront.models import ProfileRole
from storefront.services.backend.base import BaseBackendClient, Row

logger = logging.getLogger(__name__)

IMAGE_URL = "https://images.unsplash.com/photo-{}?auto=format&fit=crop&w=500&q=80"

SEED_CATEGORIES: list[Row] = [
    {"id": "veg", "name": "Vegetarian",
     "description": "Delicious vegetarian pizzas", "display_order": 1},
    {"id": "non-veg", "name": "Non-Vegetarian",
     "description": "Meat lover's paradise", "display_order": 2},
    {"id": "specialty", "name": "Specialty",
     "description": "Our chef's special creations", "display_order": 3},
    {"id": "sides", "name": "Sides & Extras",
     "description": "Perfect companions for your pizza", "display_order": 4},
]

# (name, description, price, category, unsplash photo id)
_PRODUCTS = [
    # Vegetarian
    ("Margherita", "Classic cheese pizza with tomato sauce and fresh basil",
     299, "veg", "1574071318508-1cdbab80d002"),
    ("Garden Veggie Supreme", "Loaded with bell peppers, onions, mushrooms, black olives, and corn",
     399, "veg", "1604917877934-07d8d248d396"),
    ("Paneer Tikka", "Indian cottage cheese with spicy tikka sauce and bell peppers",
     449, "veg", "1571066811602-716837d681de"),
    ("Spicy Corn & Jalapeño", "Sweet corn kernels with jalapeños and mozzarella cheese",
     349, "veg", "1595708684082-a173bb3a06c5"),
    # Non-vegetarian
    ("Chicken Supreme", "Grilled chicken with bell peppers, onions, and olives",
     499, "non-veg", "1594007654729-407eedc4fe0f"),
    ("Pepperoni Classic", "Classic pepperoni slices with extra cheese",
     449, "non-veg", "1628840042765-356cda07504e"),
    ("Tandoori Chicken", "Spicy tandoori chicken with onions and capsicum",
     549, "non-veg", "1565299624946-b28f40a0ae38"),
    ("Keema & Onion", "Spiced minced meat with onions and herbs",
     599, "non-veg", "1552539618-7eec9b4d1796"),
    # Specialty
    ("Mumbai Special", "Our signature pizza with a blend of Indian spices and toppings",
     649, "specialty", "1573821663912-569905455b1c"),
    ("Pizza Palace Supreme", "The ultimate combination of our best toppings",
     699, "specialty", "1593246049226-ded77bf90326"),
    ("Spicy Overload", "For spice lovers: jalapeños, chili flakes, and spicy sauce",
     599, "specialty", "1605478371310-a9f1e96b4ff4"),
    # Sides & Extras
    ("Garlic Breadsticks", "Freshly baked breadsticks with garlic butter",
     149, "sides", "1619531040121-7e8465eee1f6"),
    ("Cheese Dip", "Creamy cheese dip for your pizza or breadsticks",
     99, "sides", "1626200689118-a64a8a127444"),
    ("Spicy Wings", "6 pieces of spicy chicken wings",
     249, "sides", "1625938149335-afd8eef3f5a9"),
]

SEED_PRODUCTS: list[Row] = [
    {
        "name": name,
        "description": description,
        "price": float(price),
        "category": category,
        "available": True,
        "image_url": IMAGE_URL.format(photo),
    }
    for name, description, price, category, photo in _PRODUCTS
]


@dataclass
class SeedResult:
    success: bool
    message: str
    categories: list[Row] = field(default_factory=list)
    products: list[Row] = field(default_factory=list)
    error: Optional[BackendError] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "categories": len(self.categories),
            "products": len(self.products),
        }


async def initialize_database(backend: BaseBackendClient) -> SeedResult:
    """Upsert the seed categories, then the seed products."""
    categories = await backend.upsert("categories", SEED_CATEGORIES, on_conflict="id")
    if not categories.success:
        logger.error(f"Error seeding categories: {categories.error.message}")
        return SeedResult(False, "Failed to seed categories", error=categories.error)

    products = await backend.upsert("products", SEED_PRODUCTS, on_conflict="name")
    if not products.success:
        logger.error(f"Error seeding products: {products.error.message}")
        return SeedResult(
            False,
            "Failed to seed products",
            categories=categories.data,
            error=products.error,
        )

    logger.info(
        f"🌱 Database initialized: {len(categories.data)} categories, "
        f"{len(products.data)} products"
    )
    return SeedResult(
        True,
        "Database initialized successfully",
        categories=categories.data,
        products=products.data,
    )


async def seed_admin_account(auth, profiles, email: str, password: str) -> Optional[Row]:
    """
    Create a development admin account with the admin role claim.

    Args:
        auth: Auth service
        profiles: ProfileService
        email: Admin email
        password: Admin password

    Returns:
        The admin profile, or None if the account could not be created
    """
    result = await auth.sign_up(email, password, {"full_name": "Store Admin"})
    if not result.success:
        logger.warning(f"Admin account not created: {result.error.message}")
        return None

    await profiles.get_or_create(result.user.id, email, {"full_name": "Store Admin"})
    profile = await profiles.update(result.user.id, {"role": ProfileRole.ADMIN.value})
    if result.session is not None:
        await auth.sign_out(result.session.access_token)
    logger.info(f"👑 Admin account ready: {email}")
    return profile
