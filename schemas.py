"""
Database Schemas

MongoDB collection schemas and request bodies, defined with Pydantic.

Each stored model maps to one collection (lowercase snake_case name):
- User -> "user" collection
- Product -> "product" collection
- Category -> "category" collection
- Cart -> "cart" collection
- OtpRecord -> "otp" collection
- FormSubmission -> "form_data" collection
- NewsletterSubscriber -> "newsletter" collection
- Order -> "order" collection

Request bodies accept both the snake_case field names and the camelCase
names used by the storefront (productId, imageUrl, ...).
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# -----------------------------
# Users
# -----------------------------

class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lowercased")
    password_hash: str = Field(..., description="bcrypt digest")
    email_verified: bool = Field(False, description="Set once an OTP for this email is verified")


class RegisterRequest(RequestModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(RequestModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


# -----------------------------
# Catalog
# -----------------------------

class Category(BaseModel):
    """
    Categories collection schema
    Collection name: "category"
    """
    name: str = Field(..., description="Category name, unique ignoring case")
    description: str = Field("", description="Category description")


class CategoryCreate(RequestModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    category_id: Optional[str] = Field(None, description="Category ObjectId as string")
    name: str = Field(..., description="Product name")
    description: str = Field(..., description="Product description")
    price: float = Field(..., gt=0, strict=True, description="Unit price")
    stock: int = Field(0, ge=0, strict=True, description="Units available")
    status: str = Field("Active", description="Active or Inactive")
    image_url: str = Field("", description="Image URL")


class ProductCreate(RequestModel):
    category_id: Optional[str] = Field(None, alias="categoryId")
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., gt=0, strict=True)
    stock: int = Field(0, ge=0, strict=True)
    status: Optional[str] = None
    image_url: Optional[str] = Field(None, alias="imageUrl")


class ProductUpdate(RequestModel):
    category_id: Optional[str] = Field(None, alias="categoryId")
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, gt=0, strict=True)
    stock: Optional[int] = Field(None, ge=0, strict=True)
    status: Optional[str] = None
    image_url: Optional[str] = Field(None, alias="imageUrl")


# -----------------------------
# Cart
# -----------------------------

class CartItem(BaseModel):
    product_id: str = Field(..., description="Product ObjectId as string")
    product_name: str = Field(..., description="Name when the line was added")
    product_image: str = Field("", description="Image when the line was added")
    quantity: int = Field(..., ge=1)
    price_at_time: float = Field(..., ge=0, description="Unit price when the line was added")
    added_at: datetime


class Cart(BaseModel):
    """
    Carts collection schema
    Collection name: "cart"
    """
    id: Optional[str] = None
    user_id: str
    items: List[CartItem] = Field(default_factory=list)
    total_amount: float = 0
    total_items: int = 0
    status: Literal["active", "abandoned", "converted"] = "active"
    version: int = Field(0, description="Bumped on every write, used for compare-and-swap")
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_document(cls, doc: dict) -> "Cart":
        data = {k: v for k, v in doc.items() if k != "_id"}
        data["id"] = str(doc["_id"]) if "_id" in doc else None
        return cls.model_validate(data)

    def to_document(self) -> dict:
        return self.model_dump(exclude={"id"})


class CartItemRequest(RequestModel):
    product_id: str = Field(..., alias="productId", min_length=1)
    quantity: int = Field(..., strict=True)


# -----------------------------
# OTP
# -----------------------------

class OtpRecord(BaseModel):
    """
    OTP collection schema
    Collection name: "otp"
    """
    id: Optional[str] = None
    email: str
    code: str = Field(..., pattern=r"^\d{6}$")
    created_at: datetime
    verified: bool = False
    verified_at: Optional[datetime] = None


class SendOtpRequest(RequestModel):
    email: EmailStr


class VerifyOtpRequest(RequestModel):
    email: EmailStr
    otp: str = Field(..., min_length=1)


# -----------------------------
# Form data / newsletter
# -----------------------------

class FormSubmission(RequestModel):
    """
    Lead capture form schema
    Collection name: "form_data"
    """
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: Optional[str] = None
    subject: Optional[str] = None
    message: str = Field(..., min_length=1)


class NewsletterRequest(RequestModel):
    email: EmailStr


# -----------------------------
# Orders
# -----------------------------

class OrderItem(RequestModel):
    product_id: str = Field(..., alias="productId")
    name: str
    price: float = Field(..., ge=0, strict=True, description="Unit price at time of order")
    quantity: int = Field(..., ge=1, strict=True)


class ShippingInfo(RequestModel):
    name: str
    address: str
    city: str
    postal_code: Optional[str] = Field(None, alias="postalCode")
    country: Optional[str] = None
    phone: Optional[str] = None


class OrderCreate(RequestModel):
    order_id: str = Field(..., alias="orderId", min_length=1)
    items: List[OrderItem] = Field(..., min_length=1)
    shipping: Optional[ShippingInfo] = None


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    order_id: str
    user_id: str
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    status: str = Field("pending", description="pending, paid, shipped, cancelled")
    shipping: Optional[ShippingInfo] = None
