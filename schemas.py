"""
Database Schemas for CampusCommerce

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
Embedded sub-records (payment, live tracking, coordinates) are plain models
dumped into the parent document.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from database import utcnow

ProductCategory = Literal["Books", "Electronics", "Furniture", "Stationery", "Sports", "Clothing"]
ProductCondition = Literal["Like New", "Excellent", "Good", "Fair"]
OrderStatus = Literal["pending", "accepted", "rejected", "completed", "cancelled"]
PaymentStatus = Literal["pending", "pending_approval", "completed", "failed"]
PaymentMethod = Literal["upi", "cash"]
GrievanceCategory = Literal[
    "Technical Issue", "Payment Problem", "User Behavior", "Product Issue", "Feature Request", "Other"
]
GrievancePriority = Literal["Low", "Medium", "High"]
GrievanceStatus = Literal["Open", "In Progress", "Resolved", "Closed"]

ORDER_STATUSES = ("pending", "accepted", "rejected", "completed", "cancelled")

PHONE_PATTERN = r"^[0-9]{10}$"
UPI_PATTERN = r"^[a-zA-Z0-9._-]{2,256}@[a-zA-Z]{2,64}$"


def make_initials(name: str) -> str:
    if not name or not name.strip():
        return "US"
    return "".join(part[0] for part in name.split()).upper()[:2]


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class TrackedLocation(Coordinates):
    last_updated: datetime


class User(BaseModel):
    name: str = Field(..., min_length=2, max_length=100, description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password")
    phone: str = Field(..., pattern=PHONE_PATTERN, description="10 digit phone number")
    location: str = Field(..., description="Hostel / block on campus")
    upi_id: Optional[str] = Field(None, pattern=UPI_PATTERN, description="UPI payout id, handle@bank")
    is_admin: bool = False
    initials: str = "US"


class VerificationCode(BaseModel):
    """Pending signup, deleted once verified or after the TTL"""
    email: EmailStr
    code: str = Field(..., min_length=6, max_length=6)
    user_data: Dict[str, Any]
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, ttl_minutes: int, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) - self.created_at > timedelta(minutes=ttl_minutes)


class Product(BaseModel):
    title: str = Field(..., min_length=1)
    category: ProductCategory
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    condition: ProductCondition = "Good"
    description: Optional[str] = None
    location: str = Field(..., min_length=1, description="Pickup location on campus")
    coordinates: Optional[Coordinates] = None
    image: str = "📦"
    seller: str = "Anonymous"
    user_id: str
    seller_email: EmailStr
    rating: float = Field(0, ge=0, le=5)
    is_sold: bool = False
    is_delisted: bool = False

    def model_post_init(self, __context: Any) -> None:
        if self.original_price is None:
            self.original_price = self.price * 1.5


class Payment(BaseModel):
    status: PaymentStatus = "pending"
    amount: float
    upi_id: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_screenshot: Optional[str] = None
    paid_at: Optional[datetime] = None
    payment_method: PaymentMethod = "upi"

    @classmethod
    def new(cls, amount: float, upi_id: Optional[str] = None) -> "Payment":
        return cls(status="pending", amount=amount, upi_id=upi_id, payment_method="upi")


class LiveTracking(BaseModel):
    enabled: bool = False
    buyer_location: Optional[TrackedLocation] = None
    seller_location: Optional[TrackedLocation] = None


class OrderSnapshot(BaseModel):
    """Product, buyer and seller facts frozen at the moment the order is placed"""
    model_config = ConfigDict(frozen=True)

    product_id: str
    product_title: str
    product_price: float
    product_image: str = "📦"
    buyer_id: str
    buyer_name: str
    buyer_email: str
    buyer_phone: str
    buyer_location: str
    seller_id: str
    seller_name: str
    seller_email: str
    pickup_location: str
    pickup_coordinates: Optional[Coordinates] = None

    @classmethod
    def capture(cls, product: Dict[str, Any], buyer: Dict[str, Any], seller: Dict[str, Any]) -> "OrderSnapshot":
        coords = product.get("coordinates") or {}
        return cls(
            product_id=str(product["_id"]),
            product_title=product["title"],
            product_price=product["price"],
            product_image=product.get("image") or "📦",
            buyer_id=str(buyer["_id"]),
            buyer_name=buyer["name"],
            buyer_email=buyer["email"],
            buyer_phone=buyer["phone"],
            buyer_location=buyer["location"],
            seller_id=str(seller["_id"]),
            seller_name=seller["name"],
            seller_email=seller["email"],
            pickup_location=product["location"],
            pickup_coordinates=coords if coords.get("lat") is not None and coords.get("lng") is not None else None,
        )


class Order(OrderSnapshot):
    model_config = ConfigDict(frozen=False)

    status: OrderStatus = "pending"
    message: str = ""
    live_tracking: LiveTracking = Field(default_factory=LiveTracking)
    payment: Payment
    version: int = 0

    @classmethod
    def place(cls, snapshot: OrderSnapshot, message: str = "", seller_upi_id: Optional[str] = None) -> "Order":
        return cls(
            **snapshot.model_dump(),
            message=message or "",
            payment=Payment.new(snapshot.product_price, seller_upi_id),
        )


class Grievance(BaseModel):
    user_id: str
    user_name: str
    user_email: str
    subject: str = Field(..., min_length=1)
    category: GrievanceCategory
    description: str = Field(..., min_length=1)
    priority: GrievancePriority = "Medium"
    status: GrievanceStatus = "Open"
    admin_notes: str = ""
    resolved_at: Optional[datetime] = None
