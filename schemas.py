"""
Database Schemas for the Bookstore

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    SHIPPING = "SHIPPING"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class BookStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    DISCONTINUED = "DISCONTINUED"
    DISABLE = "DISABLE"


class PaymentMethod(str, Enum):
    WALLET = "Wallet"
    COD = "COD"


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class Document(BaseModel):
    model_config = ConfigDict(use_enum_values=True)


class User(Document):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field("", description="bcrypt hash, empty for federated accounts")
    role: Role = Role.USER


class Wallet(Document):
    user_id: str
    balance: float = 0.0
    last_updated: datetime


class Author(Document):
    name: str
    bio: Optional[str] = None


class Category(Document):
    name: str
    description: Optional[str] = None


class Book(Document):
    title: str
    description: Optional[str] = None
    image: Optional[str] = None
    price: float = Field(..., ge=0)
    published_at: Optional[datetime] = None
    stock: int = Field(0, ge=0)
    sold: int = Field(0, ge=0)
    status: BookStatus = BookStatus.AVAILABLE
    author_ids: List[str] = []
    category_ids: List[str] = []


class OrderItem(Document):
    book_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price captured at checkout")


class ShippingAddress(Document):
    full_name: str
    phone: str
    province: str
    district: str
    ward: str
    address_detail: str


class Order(Document):
    user_id: str
    items: List[OrderItem]
    total: float
    payment: PaymentMethod
    user_address: ShippingAddress
    status: OrderStatus = OrderStatus.PENDING


class OtpVerification(Document):
    email: EmailStr
    otp: str = Field(..., min_length=6, max_length=6)
    used: bool = False
    created_at: datetime
