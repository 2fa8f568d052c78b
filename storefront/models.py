"""
SQLAlchemy Database Models

Mirror of the hosted backend's public schema, used by the direct postgres
provider:
- profiles (account-linked customer record, loyalty points, role)
- categories / products (menu reference data)
- orders / order_items (placed orders with snapshotted unit prices)

Author: Khalil_Bannouri
Version: 1.0.0
"""

import enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.sql import func

from storefront.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class OrderStatus(str, enum.Enum):
    """Order status lifecycle. No other states are valid."""
    PENDING = "pending"
    PREPARING = "preparing"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class ProfileRole(str, enum.Enum):
    """Role claim attached to the account's profile."""
    CUSTOMER = "customer"
    ADMIN = "admin"


class Profile(Base):
    """Customer profile; id equals the auth account id."""
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True)
    full_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    address = Column(Text, nullable=True)
    pincode = Column(String(10), nullable=True)
    loyalty_points = Column(Integer, nullable=False, default=0)
    role = Column(String(20), nullable=False, default=ProfileRole.CUSTOMER.value)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Profile {self.id} - {self.email} - {self.loyalty_points} pts>"


class Category(Base):
    """Menu category (static reference data)."""
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Category {self.id} - {self.name}>"


class Product(Base):
    """Menu item. Price is in the display currency."""
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=False)
    category = Column(String(36), ForeignKey("categories.id"), nullable=True, index=True)
    available = Column(Boolean, nullable=False, default=True)
    image_url = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Product {self.id} - {self.name} - {self.price}>"


class Order(Base):
    """
    A customer's placed purchase.

    Created once per checkout; status mutated by admin action.
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    status = Column(
        String(20),
        nullable=False,
        default=OrderStatus.PENDING.value,
        index=True,
    )
    total_amount = Column(Float, nullable=False)
    shipping_address = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Order #{self.id} - {self.user_id} - {self.status}>"


class OrderItem(Base):
    """One line of a placed order, with a frozen unit price."""
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<OrderItem {self.id} - {self.product_id} x{self.quantity}>"
