"""
Pydantic Schemas for Request/Response Validation

Request bodies of the storefront JSON API and the response models of the
simpler views. Joined views (orders with items or owners) are returned as
plain dictionaries.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import re
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from storefront.core.config import get_settings
from storefront.errors import FormInvalid
from storefront.models import OrderStatus

EMAIL_RE = re.compile(r"\S+@\S+\.\S+")
MIN_PASSWORD_LENGTH = 6


# =============================================================================
# AUTH REQUESTS
# =============================================================================

class SignInRequest(BaseModel):
    """Email/password sign-in."""
    email: str = Field(default="", examples=["jane@example.com"])
    password: str = Field(default="")

    def collect_errors(self) -> dict[str, str]:
        errors = {}
        if not self.email.strip():
            errors["email"] = "Email is required"
        elif not EMAIL_RE.search(self.email):
            errors["email"] = "Please enter a valid email"

        if not self.password:
            errors["password"] = "Password is required"
        elif len(self.password) < MIN_PASSWORD_LENGTH:
            errors["password"] = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        return errors

    def validate_form(self) -> None:
        """
        Raises:
            FormInvalid: With one message per invalid field
        """
        errors = self.collect_errors()
        if errors:
            raise FormInvalid(errors)


class SignUpRequest(SignInRequest):
    """Email/password sign-up with the auxiliary profile fields."""
    full_name: str = Field(default="", max_length=100, examples=["Jane Doe"])
    address: str = Field(default="", max_length=255, examples=["12 MG Road, Bengaluru"])
    pincode: str = Field(default="", max_length=10, examples=["560001"])

    def collect_errors(self) -> dict[str, str]:
        errors = {}
        if not self.full_name.strip():
            errors["full_name"] = "Full name is required"
        if not self.address.strip():
            errors["address"] = "Address is required"
        if not self.pincode.strip():
            errors["pincode"] = "Pincode is required"
        elif not re.match(get_settings().signup_pincode_pattern, self.pincode.strip()):
            errors["pincode"] = "Pincode must be 5-6 digits"
        errors.update(super().collect_errors())
        return errors

    def profile_metadata(self) -> dict[str, str]:
        return {
            "full_name": self.full_name.strip(),
            "address": self.address.strip(),
            "pincode": self.pincode.strip(),
        }


# =============================================================================
# STOREFRONT REQUESTS
# =============================================================================

class CartItemRequest(BaseModel):
    product_id: str = Field(..., min_length=1)


class CheckoutRequest(BaseModel):
    """Delivery details; missing values fall back to the profile's."""
    address: Optional[str] = Field(None, max_length=255)
    pincode: Optional[str] = Field(None, max_length=10, examples=["560001"])


class ProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = Field(None, max_length=100)
    address: Optional[str] = Field(None, max_length=255)
    pincode: Optional[str] = Field(None, max_length=10)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class StatusUpdateRequest(BaseModel):
    status: OrderStatus = Field(..., examples=["preparing"])


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class CartLineResponse(BaseModel):
    product_id: str
    name: Optional[str] = None
    unit_price: float
    quantity: int
    subtotal: float
    image_url: Optional[str] = None


class CartResponse(BaseModel):
    items: List[CartLineResponse] = Field(default_factory=list)
    item_count: int = 0
    total: float = 0.0
    points_to_earn: int = 0


class CheckoutResponse(BaseModel):
    success: bool = True
    message: str
    order_id: str
    total: float
    item_count: int
    points_earned: int
    ordered_at: str
    shipping_address: str
    status: str


class OrderStatsResponse(BaseModel):
    total: int
    pending: int
    preparing: int
    delivered: int


class SeedResponse(BaseModel):
    success: bool
    message: str
    categories: int = 0
    products: int = 0


class ReconciliationResponse(BaseModel):
    checked: int
    orphaned: List[str] = Field(default_factory=list)
    purged: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    message: str
    field: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    backend: str
    auth: str
    realtime: str
    redis: str
    providers: dict[str, str] = Field(default_factory=dict)
    timestamp: datetime
