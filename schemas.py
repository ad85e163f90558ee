"""
Database Schemas for the FurniShop storefront

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name:
- User -> "user"
- Product -> "product"
- Order -> "order"

Embedded models (CartLine, ShippingAddress, TrackingInfo, ...) live inside
their parent document and have no collection of their own.
"""
from datetime import datetime
from typing import List, Literal, Optional, get_args

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field

Category = Literal["sofa", "chair", "table", "bed", "wardrobe", "cabinet", "desk", "bookshelf", "other"]
CATEGORIES = list(get_args(Category))

OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]
PaymentMethod = Literal["cod", "upi"]
PaymentStatus = Literal["pending", "completed", "failed"]
RequestStatus = Literal["none", "requested", "approved", "rejected", "processing", "completed"]
RefundStatus = Literal["pending", "processed", "completed"]

PHONE_PATTERN = r"^\d{10}$"
PINCODE_PATTERN = r"^\d{6}$"


class _Document(BaseModel):
    # references are stored as native ObjectIds
    model_config = ConfigDict(arbitrary_types_allowed=True)


# ----------------------- User -----------------------
class CartLine(_Document):
    product_id: ObjectId
    quantity: int = Field(1, ge=1)


class User(_Document):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of the user's password")
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    role: Literal["user", "admin"] = "user"
    cart: List[CartLine] = Field(default_factory=list)
    wishlist: List[ObjectId] = Field(default_factory=list)


# ----------------------- Product -----------------------
class Ratings(BaseModel):
    average: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)


class Specifications(BaseModel):
    material: Optional[str] = None
    dimensions: Optional[str] = None
    weight: Optional[str] = None
    color: Optional[str] = None


class Review(_Document):
    user_id: ObjectId
    name: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    created_at: datetime


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"

    discounted_price and in_stock are derived when serving, never stored.
    """
    name: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    price: float = Field(..., ge=0, description="Price in INR")
    discount: float = Field(0, ge=0, le=100, description="Percent off")
    category: Category
    images: List[str] = Field(default_factory=list)
    quantity: int = Field(0, ge=0, description="Units in stock")
    ratings: Ratings = Field(default_factory=Ratings)
    specifications: Specifications = Field(default_factory=Specifications)
    reviews: List[dict] = Field(default_factory=list)
    is_active: bool = True


# ----------------------- Order -----------------------
class OrderItem(_Document):
    product_id: ObjectId
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Discounted unit price at time of order")
    name: str
    image: str = ""
    category: Optional[str] = None


class ShippingAddress(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    phone: str = Field(..., pattern=PHONE_PATTERN, description="Exactly 10 digits")
    street: str = Field(..., min_length=5, max_length=100)
    city: str = Field(..., min_length=2, max_length=50)
    state: str = Field(..., min_length=2, max_length=50)
    pincode: str = Field(..., pattern=PINCODE_PATTERN, description="Exactly 6 digits")
    country: str = "India"


class PaymentDetails(BaseModel):
    upi_id: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_status: PaymentStatus = "pending"


class StatusEntry(BaseModel):
    status: str
    date: datetime
    location: Optional[str] = None
    description: Optional[str] = None


class TrackingInfo(BaseModel):
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    status_history: List[StatusEntry] = Field(default_factory=list)


class ReturnRequest(BaseModel):
    status: RequestStatus = "none"
    reason: Optional[str] = None
    description: Optional[str] = None
    additional_comments: Optional[str] = None
    request_date: Optional[datetime] = None
    approval_date: Optional[datetime] = None
    refund_amount: Optional[float] = None
    refund_status: RefundStatus = "pending"


class ExchangeRequest(BaseModel):
    status: RequestStatus = "none"
    reason: Optional[str] = None
    description: Optional[str] = None
    additional_comments: Optional[str] = None
    request_date: Optional[datetime] = None
    approval_date: Optional[datetime] = None
    new_product_requested: Optional[str] = None
    price_difference: Optional[float] = None


class Order(_Document):
    """
    Orders collection schema
    Collection name: "order"
    """
    user_id: ObjectId
    order_number: str
    items: List[OrderItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_details: PaymentDetails = Field(default_factory=PaymentDetails)
    total_amount: float = Field(..., ge=0)
    order_status: OrderStatus = "pending"
    tracking_info: TrackingInfo = Field(default_factory=TrackingInfo)
    delivery_date: Optional[datetime] = None
    notes: Optional[str] = None
    return_request: ReturnRequest = Field(default_factory=ReturnRequest)
    exchange_request: ExchangeRequest = Field(default_factory=ExchangeRequest)
