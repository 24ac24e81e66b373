"""
Database Schemas for PlantNet

Each Pydantic model represents a MongoDB collection or a request body.
Collections: users, plants, orders.
"""
from typing import Literal, Optional
from pydantic import BaseModel, Field

CUSTOMER = "customer"
SELLER = "Seller"
ADMIN = "Admin"

UNVERIFIED = "Unverified"
REQUESTED = "Requested"
VERIFIED = "Verified"

PENDING = "Pending"
DELIVERED = "Delivered"

# ------------ Session ------------
class SessionRequest(BaseModel):
    email: str = Field(..., min_length=3)

# ------------ Users ------------
class UserProfile(BaseModel):
    email: str = Field(..., min_length=3)
    name: Optional[str] = None
    image: Optional[str] = None

class User(BaseModel):
    email: str = Field(..., min_length=3)
    name: Optional[str] = None
    image: Optional[str] = None
    role: Optional[Literal["customer", "Seller", "Admin"]] = CUSTOMER
    status: Literal["Unverified", "Requested", "Verified"] = UNVERIFIED
    timestamp: Optional[int] = None

class RoleUpdate(BaseModel):
    role: Literal["customer", "Seller", "Admin"]

# ------------ Plants ------------
class SellerInfo(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    image: Optional[str] = None

class PlantCreate(BaseModel):
    plantName: str = Field(..., min_length=1)
    category: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=0)
    image: Optional[str] = None
    seller: Optional[SellerInfo] = None

class PlantUpdate(BaseModel):
    plantName: str = Field(..., min_length=1)
    category: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=0)
    image: Optional[str] = None

class QuantityAdjust(BaseModel):
    id: str
    quantity: int = Field(..., gt=0)
    status: Literal["increase", "decrease"] = "decrease"

# ------------ Orders ------------
class Customer(BaseModel):
    email: str = Field(..., min_length=3)
    name: Optional[str] = None
    image: Optional[str] = None

class OrderCreate(BaseModel):
    customer: Customer
    plantId: str
    price: float = Field(0, ge=0)
    quantity: int = Field(..., ge=1)
    seller: str = Field(..., min_length=3)
    address: Optional[str] = None

class OrderStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)
