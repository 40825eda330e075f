"""
Database Schemas

MongoDB collection schemas for the marketplace, defined as Pydantic models.
Each Pydantic model represents a collection in the database.
Model name in snake_case is the collection name:
- Consumer -> "consumer" (admins are stored here too, with role "admin")
- Producer -> "producer"
- Restaurant -> "restaurant"
- Identity -> "identity" (one row per account across all roles)
- Product -> "product"
- Order -> "order"
- Proposal -> "proposal"
- GreenSealRequest -> "green_seal_request"
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, EmailStr

ORDER_STATUSES = ("new", "picking", "shipped", "completed", "cancelled")
ORDER_PROGRESSION = ("new", "picking", "shipped", "completed")
ORDER_TERMINAL_STATUSES = ("completed", "cancelled")
SEAL_STATUSES = ("pending", "approved", "rejected")

OrderStatus = Literal["new", "picking", "shipped", "completed", "cancelled"]
ProposalStatus = Literal["requested", "answered", "accepted", "declined", "expired"]
SealStatus = Literal["pending", "approved", "rejected"]
CancelActor = Literal["producer", "consumer"]

# Role -> collection holding that role's accounts
ROLE_COLLECTIONS = {
    "consumer": "consumer",
    "admin": "consumer",
    "producer": "producer",
    "restaurant": "restaurant",
}


# -----------------------------
# Accounts
# -----------------------------

class Identity(BaseModel):
    """
    Identity collection schema
    Collection: "identity"
    Unique on email and national_id, whatever the role.
    """
    email: EmailStr
    national_id: str = Field(..., description="CPF or CNPJ, punctuated")
    role: str
    user_id: Optional[str] = None


class Consumer(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    national_id: str = Field(..., description="CPF: XXX.XXX.XXX-XX")
    password_hash: str = Field(..., description="BCrypt hashed password")
    role: Literal["consumer", "admin"] = "consumer"
    status: Literal["active", "blocked"] = "active"
    phone: Optional[str] = None


class Producer(BaseModel):
    name: str
    email: EmailStr
    national_id: str = Field(..., description="CPF or CNPJ")
    password_hash: str
    role: Literal["producer"] = "producer"
    status: Literal["active", "blocked"] = "active"
    farm_name: Optional[str] = None
    farm_description: Optional[str] = None
    location: Optional[str] = None
    farm_photo: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    green_seal: bool = False
    green_seal_approved_at: Optional[datetime] = None


class Restaurant(BaseModel):
    name: str
    email: EmailStr
    national_id: str = Field(..., description="CNPJ: XX.XXX.XXX/XXXX-XX")
    password_hash: str
    role: Literal["restaurant"] = "restaurant"
    status: Literal["active", "blocked"] = "active"
    establishment_name: Optional[str] = None
    establishment_description: Optional[str] = None
    location: Optional[str] = None
    establishment_photo: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    categories_of_interest: List[str] = Field(default_factory=list)
    delivery_radius_km: float = Field(50, ge=0)


# -----------------------------
# Catalog
# -----------------------------

class Product(BaseModel):
    """
    Products collection schema
    Collection: "product"
    """
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    producer_id: str
    stock: int = Field(0, ge=0)
    unit: str = Field("unit", description="kg, unit, bunch, ...")
    image_url: Optional[str] = None
    detailed_description: Optional[str] = None
    origin: Optional[str] = None
    certifications: List[str] = Field(default_factory=list)
    extra_images: List[str] = Field(default_factory=list)
    specifications: Dict[str, str] = Field(default_factory=dict)


# -----------------------------
# Orders
# -----------------------------

class OrderItem(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)


class Review(BaseModel):
    score: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    reviewed_at: datetime


class Order(BaseModel):
    """
    Orders collection schema
    Collection: "order"
    Items are a snapshot of product name and price at checkout.
    """
    consumer_id: str
    producer_id: str
    items: List[OrderItem] = Field(..., min_length=1)
    total: float = Field(..., ge=0)
    status: OrderStatus = "new"
    producer_notified: bool = False
    cancelled_by: Optional[CancelActor] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    review: Optional[Review] = None


# -----------------------------
# Quotes
# -----------------------------

class ProposalItem(BaseModel):
    product_id: str
    name: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class ProposalResponse(BaseModel):
    producer_id: str
    total_price: float = Field(..., ge=0)
    note: Optional[str] = None
    responded_at: datetime


class Proposal(BaseModel):
    """
    Proposals collection schema
    Collection: "proposal"
    """
    requester_id: str
    items: List[ProposalItem] = Field(..., min_length=1)
    status: ProposalStatus = "requested"
    responses: List[ProposalResponse] = Field(default_factory=list)


# -----------------------------
# Green seal
# -----------------------------

class GreenSealRequest(BaseModel):
    """
    Green seal requests collection schema
    Collection: "green_seal_request"
    """
    producer_id: str
    status: SealStatus = "pending"
    practices_description: str = Field(..., min_length=50, max_length=1000)
    documents: List[str] = Field(default_factory=list)
    property_photos: List[str] = Field(default_factory=list)
    reviewed_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    reviewed_at: Optional[datetime] = None
