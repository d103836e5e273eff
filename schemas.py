"""
Database Schemas for the Shop API

Each Pydantic model describes a request body for one MongoDB collection.
Collection names are the lowercase entity name:

- User -> "user"
- Category -> "category"
- Product -> "product"
- Cart -> "cart"
- Order -> "order"
- OrderDetail -> "orderdetail"

Fields are snake_case in Python and camelCase on the wire and in the
stored documents.
"""
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

Role = Literal["user", "admin"]
PaymentMethod = Literal["card"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Users
class UserCreate(CamelModel):
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., min_length=8, max_length=1024, description="Plaintext password, hashed before storage")
    address: Optional[str] = Field(None, description="Address")
    phone: Optional[str] = Field(None, description="Phone number")


class UserLogin(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=8, max_length=1024)
    address: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[Role] = None
    active: Optional[bool] = None


# Catalog
class CategoryIn(CamelModel):
    name: str = Field(..., min_length=1, description="Category name")
    description: str = Field(..., min_length=1, description="Category description")


class ProductIn(CamelModel):
    name: str = Field(..., min_length=1, description="Product name")
    description: Optional[str] = Field(None, description="Product description")
    price: Decimal = Field(..., ge=0, max_digits=34, description="Unit price")
    stock: int = Field(..., ge=0, description="Units in stock")
    category: Optional[str] = Field(None, description="Category id")
    images: Optional[str] = Field(None, description="Image URL")


class ProductPatch(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, max_digits=34)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    images: Optional[str] = None


# Cart
class CartItemIn(CamelModel):
    user_id: Optional[str] = Field(None, description="Cart owner, defaults to the caller")
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class CartItemRemove(CamelModel):
    user_id: Optional[str] = None
    product_id: str = Field(..., min_length=1)


# Orders
class OrderDetailIn(CamelModel):
    product_id: str = Field(..., min_length=1, description="Ordered product id")
    quantity: int = Field(..., ge=1)
    price: Decimal = Field(..., ge=0, max_digits=34, description="Unit price at time of order")


class OrderIn(CamelModel):
    user: str = Field(..., min_length=1, description="Ordering user id")
    total_amount: float = Field(..., ge=0, description="Order total as submitted by the client")
    status: str = Field(..., min_length=1, description="Order status")
    payment_method: PaymentMethod = Field(..., description="Payment method")
    shipping_address: str = Field(..., min_length=1)
    order_details: List[OrderDetailIn] = Field(..., min_length=1)
