"""
Database Schemas for the Storefront

Each Pydantic model either describes a MongoDB document (Product, Order) or a
request payload validated once at the service boundary. Collection names are
the lowercase of the document class name.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from errors import InvalidInput

ORDER_STATUSES = ["Pending", "Processing", "Shipped", "Delivered"]
PAYMENT_STATUSES = ["Pending", "Completed"]
# Largest count a MongoDB int64 can hold
MAX_UNITS = 2**63 - 1


class Product(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, description="Product name")
    description: str = Field(..., min_length=1, description="Product description")
    price: float = Field(..., ge=0, description="Unit price")
    category: str = Field(..., min_length=1, description="Category label")
    stock: int = Field(0, ge=0, le=MAX_UNITS, description="Sellable units currently available")
    images: List[str] = Field(default_factory=list, description="Image URLs")


class ProductUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1)
    stock: Optional[int] = Field(None, ge=0, le=MAX_UNITS)
    images: Optional[List[str]] = None


class OrderItemRequest(BaseModel):
    productId: str = Field(..., min_length=1, description="Referenced product id")
    quantity: int = Field(1, ge=1, le=MAX_UNITS, description="Units requested")


class ShippingAddress(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)


class PlaceOrderRequest(BaseModel):
    products: List[OrderItemRequest] = Field(..., min_length=1, description="Cart line items")
    shippingAddress: ShippingAddress


class OrderItem(BaseModel):
    productId: str
    quantity: int = Field(..., ge=1, le=MAX_UNITS)
    price: float = Field(..., ge=0, description="Unit price captured at order time")


class Order(BaseModel):
    orderId: str
    userId: str
    products: List[OrderItem]
    totalAmount: float = Field(..., ge=0)
    shippingAddress: ShippingAddress
    orderStatus: str = Field("Pending", description="Pending | Processing | Shipped | Delivered")
    paymentStatus: str = Field("Pending", description="Pending | Completed")
    createdAt: datetime
    updatedAt: datetime


class StatusUpdate(BaseModel):
    orderStatus: Optional[str] = None
    paymentStatus: Optional[str] = None


class Requester(BaseModel):
    id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def field_path(loc) -> str:
    """Render a pydantic error location like ``shippingAddress.city``."""
    parts = [str(p) for p in loc if p not in ("body",)]
    return ".".join(parts) or "payload"


def invalid_input_from(errors: List[dict]) -> InvalidInput:
    first = errors[0]
    return InvalidInput(field_path(first["loc"]), first["msg"].lower())


def parse_place_order(payload: Any) -> PlaceOrderRequest:
    if isinstance(payload, PlaceOrderRequest):
        return payload
    try:
        return PlaceOrderRequest.model_validate(payload)
    except ValidationError as e:
        raise invalid_input_from(e.errors()) from e
