"""
Database Schemas for Ahmed Mart

Each Pydantic model describes a MongoDB collection or an API payload. The
collection names follow the storefront tables (e.g. Address -> "user_addresses").
"""
from typing import List, Optional, Literal
from pydantic import BaseModel, EmailStr, Field

Role = Literal["customer", "vendor", "delivery_partner", "admin"]
AddressType = Literal["home", "work", "other"]
UnitType = Literal["kg", "g", "l", "ml", "piece", "pack", "dozen"]
PaymentMethod = Literal["cash", "upi", "card", "wallet", "credit"]
PaymentStatus = Literal["pending", "completed", "failed", "refunded"]
RegistryStatus = Literal["pending", "active", "inactive", "suspended"]
OrderStatus = Literal[
    "pending",
    "confirmed",
    "preparing",
    "ready_for_pickup",
    "assigned_to_delivery",
    "picked_up",
    "out_for_delivery",
    "delivered",
    "cancelled",
    "refunded",
]

# Core domain schemas

class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    full_name: str = Field("", description="Display name")
    email: EmailStr = Field(..., description="Normalized email address")
    password_hash: str = Field(..., description="Password hash")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "products"
    """
    name: str
    slug: str
    vendor_id: str
    selling_price: float = Field(..., ge=0)
    mrp: float = Field(..., ge=0)
    unit_value: float = 1
    unit_type: UnitType = "piece"
    primary_image_url: Optional[str] = None
    max_order_quantity: int = Field(10, ge=1)
    stock_quantity: int = Field(0, ge=0)
    status: Literal["active", "inactive", "out_of_stock", "discontinued"] = "active"


class CartItem(BaseModel):
    product_id: str
    name: str
    image_url: str = ""
    unit_value: float = 1
    unit_type: str = "piece"
    selling_price: float = Field(..., ge=0)
    mrp: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    max_quantity: int = Field(10, ge=1)
    vendor_id: str


class CartItemInput(BaseModel):
    """Client request to add one unit; price and limits come from the product."""
    product_id: str


class ServiceAreaInput(BaseModel):
    name: str
    center_latitude: float = Field(..., ge=-90, le=90)
    center_longitude: float = Field(..., ge=-180, le=180)
    radius_km: float = Field(..., gt=0)
    is_active: bool = True


class ServiceArea(ServiceAreaInput):
    """
    Service areas collection schema
    Collection name: "service_areas"
    """
    id: str


class ServiceAreaUpdate(BaseModel):
    name: Optional[str] = None
    center_latitude: Optional[float] = Field(None, ge=-90, le=90)
    center_longitude: Optional[float] = Field(None, ge=-180, le=180)
    radius_km: Optional[float] = Field(None, gt=0)
    is_active: Optional[bool] = None


class AddressInput(BaseModel):
    address_type: AddressType = "home"
    address_line1: str = Field(..., min_length=1)
    address_line2: Optional[str] = None
    landmark: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., pattern=r"^\d{6}$")
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_default: bool = False


class AddressUpdate(BaseModel):
    address_type: Optional[AddressType] = None
    address_line1: Optional[str] = Field(None, min_length=1)
    address_line2: Optional[str] = None
    landmark: Optional[str] = None
    city: Optional[str] = Field(None, min_length=1)
    state: Optional[str] = Field(None, min_length=1)
    pincode: Optional[str] = Field(None, pattern=r"^\d{6}$")
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_default: Optional[bool] = None


class Address(AddressInput):
    """
    Addresses collection schema
    Collection name: "user_addresses"
    """
    id: str
    user_id: str


class DeliveryAddress(BaseModel):
    """Frozen copy of an address embedded in an order."""
    address_type: str
    address_line1: str
    address_line2: Optional[str] = None
    landmark: Optional[str] = None
    city: str
    state: str
    pincode: str


class ProductSnapshot(BaseModel):
    id: str
    name: str
    image_url: str = ""
    unit_value: float = 1
    unit_type: str = "piece"
    selling_price: float
    mrp: float


class OrderItem(BaseModel):
    """
    Order items collection schema
    Collection name: "order_items"
    """
    order_id: str
    product_id: Optional[str] = None
    product_snapshot: ProductSnapshot
    quantity: int = Field(..., ge=1)
    unit_price: float
    mrp: float
    discount_amount: float
    total_price: float


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "orders"
    """
    order_number: str
    customer_id: str
    vendor_id: str
    delivery_address: DeliveryAddress
    delivery_latitude: Optional[float] = None
    delivery_longitude: Optional[float] = None
    subtotal: float
    delivery_fee: float
    platform_fee: float
    discount_amount: float = 0
    total_amount: float
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    status: OrderStatus = "pending"
    customer_notes: Optional[str] = None
    delivery_partner_id: Optional[str] = None


class RegistryEntry(BaseModel):
    """
    Role registry schema
    Collection names: "admins", "vendors", "delivery_partners"
    """
    email: EmailStr
    name: Optional[str] = None
    status: RegistryStatus = "active"
    user_id: Optional[str] = None


class UserLocation(BaseModel):
    lat: float
    lng: float
    city: str
    state: str
    fullAddress: str


# Request payloads

class SignupRequest(BaseModel):
    full_name: str = ""
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class AuthCallbackRequest(BaseModel):
    selected_role: Optional[Role] = None


class RoleCheckRequest(BaseModel):
    email: EmailStr
    role: Role


class QuantityUpdate(BaseModel):
    quantity: int


class OrderCreateRequest(BaseModel):
    address_id: str
    payment_method: PaymentMethod = "cash"
    customer_notes: Optional[str] = None


class StatusUpdate(BaseModel):
    status: OrderStatus


class LocationRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class RoleFlags(BaseModel):
    is_admin: bool = False
    is_vendor: bool = False
    is_delivery_partner: bool = False
    is_customer: bool = False
    admin_id: Optional[str] = None
    vendor_id: Optional[str] = None
    delivery_partner_id: Optional[str] = None

    def has(self, role: str) -> bool:
        return bool(getattr(self, f"is_{role}", False))

    def as_list(self) -> List[str]:
        return [r for r in ("admin", "vendor", "delivery_partner", "customer") if self.has(r)]


class RoleValidation(BaseModel):
    is_valid: bool
    error: Optional[str] = None


class Principal(BaseModel):
    """The caller admitted by a route guard."""
    user: Optional[dict] = None
    roles: RoleFlags = Field(default_factory=RoleFlags)

    @property
    def user_id(self) -> Optional[str]:
        return self.user["id"] if self.user else None
