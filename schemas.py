"""
Database Schemas for the Greenify plant store

Each Pydantic model represents a MongoDB collection. Collection name is the lowercase
class name (e.g., Plant -> "plant"). References to other documents are stored as the
hex string of their _id.
"""
from __future__ import annotations
from typing import List, Optional
from pydantic import BaseModel, Field, EmailStr, model_validator
from enum import Enum


class Role(str, Enum):
    customer = "customer"
    admin = "admin"


class User(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password_hash: str
    role: Role = Role.customer
    is_active: bool = True


class PlantCategory(str, Enum):
    flowering = "Flowering"
    herbs = "Herbs"
    indoor = "Indoor"
    outdoor = "Outdoor"
    succulents = "Succulents"
    trees = "Trees"


class Plant(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    price: int = Field(..., ge=1, le=999999, description="Whole currency units")
    original_price: Optional[int] = Field(default=None, ge=1, le=999999)
    categories: List[PlantCategory] = []
    stock: int = Field(0, ge=0, le=10000)
    image: str = ""
    rating: float = Field(5.0, ge=1, le=5, description="Placeholder until the first review")
    review_count: int = Field(0, ge=0)
    is_active: bool = True

    @model_validator(mode="after")
    def check_original_price(self):
        if self.original_price is not None and self.original_price < self.price:
            raise ValueError("Original price must be greater than or equal to the current price")
        return self


class PlantUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10, max_length=1000)
    price: Optional[int] = Field(default=None, ge=1, le=999999)
    original_price: Optional[int] = Field(default=None, ge=1, le=999999)
    categories: Optional[List[PlantCategory]] = Field(default=None, min_length=1)
    stock: Optional[int] = Field(default=None, ge=0, le=10000)
    image: Optional[str] = None


class CartItem(BaseModel):
    plant_id: str
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = []


class OrderItem(BaseModel):
    plant_id: str
    plant_name: str
    quantity: int = Field(ge=1)
    price: int = Field(ge=0, description="Unit price at time of purchase")
    rated: bool = False


class OrderStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class DeliveryAddress(BaseModel):
    street: str = Field(..., min_length=5, max_length=255)
    city: str = Field(..., pattern=r"^[a-zA-Z\s]+$", min_length=2)
    state: str = Field(..., pattern=r"^[a-zA-Z\s]+$", min_length=2)
    zip_code: str = Field(..., pattern=r"^[0-9]{6}$")
    phone: str = Field(..., pattern=r"^[6-9]\d{9}$")


class Order(BaseModel):
    user_id: str
    customer_name: str
    customer_email: str
    items: List[OrderItem] = Field(..., min_length=1)
    delivery_address: DeliveryAddress
    status: OrderStatus = OrderStatus.pending
    payment_method: str = "COD"
    total: int = Field(ge=0)


class Rating(BaseModel):
    user_id: str
    plant_id: str
    order_id: str
    rating: int = Field(..., ge=1, le=5)
