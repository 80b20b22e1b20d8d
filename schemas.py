"""
Database Schemas for the Food Delivery marketplace

Each Pydantic model describes the documents of one named collection.
The store itself enforces no schema; these models validate what the API
accepts before anything is written.
- UserProfile -> users
- RestaurantApplicationIn -> restaurantApplications
- DeliveryApplicationIn -> deliveryApplications
- Restaurant -> restaurants
- Driver -> drivers
- MenuItem -> menuItems
- Order -> orders
- FavoriteRestaurant -> favorites
- AdminNotification -> never stored, lives in the admin session
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["customer", "restaurant_owner", "delivery_rider", "admin"]
AccountStatus = Literal["active", "suspended"]
ApplicationType = Literal["restaurant", "delivery"]
ApplicationStatus = Literal["pending", "approved", "rejected"]

COLLECTIONS = (
    "users",
    "restaurants",
    "orders",
    "drivers",
    "restaurantApplications",
    "deliveryApplications",
    "partnerRequests",
    "menuItems",
    "favorites",
)


class UserProfile(BaseModel):
    """Identity record keyed by the auth account id"""
    email: EmailStr
    name: str = Field(..., description="Display name")
    phone: str = ""
    role: Role = "customer"
    address: str = ""
    status: AccountStatus = "active"
    avatar_url: Optional[str] = None
    has_applied: bool = False
    restaurant_name: Optional[str] = None
    vehicle_type: Optional[str] = None
    total_orders: int = 0
    favorite_restaurants: int = 0


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    avatar_url: Optional[str] = None


class AdminUserUpdate(BaseModel):
    role: Optional[Role] = None
    status: Optional[AccountStatus] = None


class RestaurantApplicationIn(BaseModel):
    restaurant_name: str = Field(..., min_length=1)
    cuisine: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    website: str = ""
    experience: str = ""
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None


class DeliveryApplicationIn(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    license_number: str = Field(..., min_length=1)
    vehicle_type: Literal["bicycle", "motorcycle", "car"]
    email: Optional[EmailStr] = None
    date_of_birth: Optional[str] = None
    vehicle_make: str = ""
    vehicle_model: str = ""
    vehicle_year: str = ""
    vehicle_color: str = ""
    license_plate: str = ""
    available_days: Dict[str, bool] = {}
    preferred_hours: Dict[str, str] = {}
    emergency_contact: str = ""
    emergency_phone: str = ""
    experience: str = ""


class StatusChange(BaseModel):
    status: Literal["approved", "rejected"]


class ReviewDecision(BaseModel):
    notes: str = ""
    reason: str = ""


class Restaurant(BaseModel):
    name: str
    owner_id: str = Field(..., description="Links to users/{uid} (restaurant_owner)")
    description: str = ""
    address: str = ""
    phone: str = ""
    email: str = ""
    website: str = ""
    cuisine: str = ""
    category: str = ""
    image: str = ""
    status: Literal["active", "restricted", "suspended"] = "active"
    rating: float = Field(4.5, ge=0, le=5)
    total_orders: int = 0
    total_reviews: int = 0


class Driver(BaseModel):
    user_id: str
    name: str
    email: str = ""
    phone: str = ""
    vehicle_type: str = ""
    license_number: str = ""
    status: Literal["available", "busy", "offline"] = "offline"
    is_active: bool = True


class MenuItem(BaseModel):
    """Dish on a restaurant menu, priced in cents"""
    restaurant_id: str
    name: str = Field(..., min_length=1)
    description: str = ""
    price_cents: int = Field(..., ge=0)
    category: str = ""
    preparation_time: int = Field(15, ge=0, description="Minutes")
    is_available: bool = True
    image_url: Optional[str] = None


OrderStatus = Literal[
    "pending",
    "accepted",
    "rejected",
    "preparing",
    "readyForPickup",
    "assigned",
    "out_for_delivery",
    "delivered",
    "cancelled",
]
PaymentMethod = Literal["cash", "card", "digital_wallet"]


class DeliveryAddress(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = ""
    zip_code: str = ""
    country: str = "US"
    instructions: str = ""


class OrderItemIn(BaseModel):
    item_id: str = Field(..., description="menuItems/{id}")
    quantity: int = Field(1, ge=1)
    special_instructions: str = ""


class OrderIn(BaseModel):
    """What a customer sends; prices and totals are filled in from the menu"""
    restaurant_id: str
    items: List[OrderItemIn] = Field(..., min_length=1)
    delivery_address: DeliveryAddress
    payment_method: PaymentMethod = "cash"
    special_instructions: str = ""


class OrderItem(BaseModel):
    item_id: str
    name: str
    category: str = ""
    unit_price_cents: int = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    preparation_time: int = 15
    special_instructions: str = ""


class Order(BaseModel):
    """Stored order. Collection: orders"""
    order_number: str
    customer_id: str
    customer_name: str = ""
    customer_email: str = ""
    customer_phone: str = ""
    delivery_address: DeliveryAddress
    restaurant_id: str
    restaurant_name: str = ""
    restaurant_phone: str = ""
    restaurant_address: str = ""
    items: List[OrderItem]
    subtotal_cents: int = Field(..., ge=0)
    delivery_fee_cents: int = Field(..., ge=0)
    tax_cents: int = Field(..., ge=0)
    total_cents: int = Field(..., ge=0)
    status: OrderStatus = "pending"
    payment_method: PaymentMethod = "cash"
    payment_status: Literal["pending", "paid", "failed", "refunded"] = "pending"
    special_instructions: str = ""
    estimated_delivery_time: datetime
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None


class OrderStatusChange(BaseModel):
    status: OrderStatus
    notes: str = ""


class FavoriteRestaurant(BaseModel):
    """Collection: favorites, keyed {user_id}_{restaurant_id}"""
    user_id: str
    restaurant_id: str
    restaurant_name: str = ""
    restaurant_cuisine: str = ""
    restaurant_rating: float = 0
    restaurant_address: str = ""
    added_at: datetime


NotificationType = Literal[
    "restaurant_approval",
    "driver_approval",
    "system_alert",
    "user_report",
    "revenue_milestone",
    "security_alert",
]
Priority = Literal["low", "medium", "high", "critical"]


class AdminNotification(BaseModel):
    id: str
    type: NotificationType
    title: str
    message: str
    timestamp: datetime
    read: bool = False
    priority: Priority = "medium"
    action_url: Optional[str] = None
    action_label: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
