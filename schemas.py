"""
Database Schemas for the Leather Walk shop

Each Pydantic model maps to a MongoDB collection (lowercased class name).

Collections:
- user
- admin
- product
- cart
- order
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class OrderStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class PaymentMethod(str, Enum):
    COD = "cod"
    CARD = "card"
    MPESA = "mpesa"


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    username: str = Field(..., description="Unique login name")
    fullname: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Unique email address")
    phone: str = Field(..., description="Unique phone number")
    county: str = Field(..., description="County used for delivery")
    role: str = Field("user", pattern="^(user|admin)$")
    password_hash: str = Field(..., description="BCrypt password hash")


class Admin(BaseModel):
    """
    Admins collection schema
    Collection name: "admin"
    """
    username: str
    email: EmailStr
    password_hash: str


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0, allow_inf_nan=False, description="Unit price")
    stock: int = Field(..., ge=0, description="Units in stock")
    size: Optional[str] = None
    color: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = Field(None, description="Hosted image URL")


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    price_at_time_of_addition: float = Field(..., ge=0, allow_inf_nan=False)


class Cart(BaseModel):
    """
    Carts collection schema, one per user
    Collection name: "cart"
    """
    user: str
    products: List[CartItem] = Field(default_factory=list)


class OrderItem(BaseModel):
    """Product data frozen at the moment the order was placed."""
    product_id: str
    quantity: int = Field(..., ge=1)
    price_at_time_of_order: float = Field(..., ge=0, allow_inf_nan=False)
    name_at_time_of_order: str
    image_url_at_time_of_order: str = ""
    size_at_time_of_order: str = "N/A"
    color_at_time_of_order: str = "N/A"


class ShippingInfo(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    county: str = Field(..., min_length=1)
    pickup_station: str = Field(..., min_length=1)


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    model_config = ConfigDict(use_enum_values=True)

    user_id: str
    products: List[OrderItem]
    shipping_info: ShippingInfo
    payment_method: PaymentMethod = PaymentMethod.COD
    mpesa_number: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    subtotal_amount: float = Field(..., ge=0)
    shipping_cost: float = Field(..., ge=0)
    total_amount: float = Field(..., ge=0)
    order_status: OrderStatus = OrderStatus.PENDING
    tracking_number: Optional[str] = None
    delivered_at: Optional[datetime] = None
