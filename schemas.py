"""
Database Schemas for the Polli Ahaar grocery store

Each Pydantic model maps to a MongoDB collection.

Collections:
- users
- products
- orders
- reviews
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field

Role = Literal["user", "admin"]
ProductStatus = Literal["active", "draft"]

ALLOWED_ROLES = ("admin", "user")
ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "completed", "cancelled")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(BaseModel):
    """
    Users collection schema
    Collection name: "users"
    """
    model_config = ConfigDict(extra="ignore")

    email: EmailStr = Field(..., description="Lookup key, unique by convention")
    name: Optional[str] = Field(None, description="Display name")
    image: Optional[str] = Field(None, description="Profile photo URL")
    phone: Optional[str] = None
    address: Optional[str] = None
    role: Role = Field("user", description="user | admin")


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    image: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None


class RoleUpdate(BaseModel):
    role: str


class Variant(BaseModel):
    label: str = Field(..., description="Variant label, e.g. 1 kg")
    unit: Optional[str] = Field(None, description="gram | kg | litre | piece | sack")
    qty: float = Field(0, ge=0, description="Amount of unit in this variant")
    price: float = Field(..., ge=0)
    stock: int = Field(0, description="Units available")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "products"
    """
    name: str = Field(..., description="Product name")
    category: str = Field(..., description="Catalog category")
    type: Optional[str] = None
    brand: Optional[str] = None
    originDistrict: Optional[str] = Field(None, description="District the produce comes from")
    description: str = ""
    image: Optional[str] = Field(None, description="Image URL")
    variants: List[Variant] = Field(default_factory=list)
    status: ProductStatus = "active"
    featured: bool = False
    orderCount: int = Field(0, ge=0, description="Units ordered so far")


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    type: Optional[str] = None
    brand: Optional[str] = None
    originDistrict: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    variants: Optional[List[Variant]] = None
    status: Optional[ProductStatus] = None
    featured: Optional[bool] = None
    orderCount: Optional[int] = None


class OrderItem(BaseModel):
    productId: str
    name: Optional[str] = None
    variantLabel: Optional[str] = Field(None, validation_alias=AliasChoices("variantLabel", "label"))
    image: Optional[str] = Field(None, validation_alias=AliasChoices("image", "imageUrl"))
    price: float = 0
    qty: int = Field(1, ge=1)


class ProductSummary(BaseModel):
    productId: str
    name: Optional[str] = None
    imageUrl: Optional[str] = None
    totalQty: int = 0


class ShippingInfo(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    note: Optional[str] = None


class PaymentInfo(BaseModel):
    method: str = "COD"


class Amounts(BaseModel):
    subtotal: float
    grandTotal: float


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "orders"
    """
    userEmail: Optional[str] = None
    items: List[OrderItem]
    productsSummary: List[ProductSummary] = Field(default_factory=list)
    shipping: ShippingInfo = Field(default_factory=ShippingInfo)
    payment: PaymentInfo = Field(default_factory=PaymentInfo)
    amounts: Amounts
    status: str = Field("pending", description="pending | processing | shipped | delivered | completed | cancelled")
    reviewed: bool = False
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)


class OrderCreateRequest(BaseModel):
    items: Optional[List[dict]] = None
    productsSummary: List[ProductSummary] = Field(default_factory=list)
    shipping: ShippingInfo = Field(default_factory=ShippingInfo)
    payment: PaymentInfo = Field(default_factory=PaymentInfo)


class ShippingUpdate(BaseModel):
    shipping: ShippingInfo


class StatusUpdate(BaseModel):
    status: str


class Review(BaseModel):
    """
    Reviews collection schema
    Collection name: "reviews"
    """
    orderId: Optional[str] = None
    userId: Optional[str] = None
    userEmail: Optional[str] = None
    name: Optional[str] = None
    stars: int = Field(..., ge=1, le=5)
    text: str = ""


class TokenRequest(BaseModel):
    email: EmailStr


class ContactMessage(BaseModel):
    name: str
    email: EmailStr
    message: str
