import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from storefront.domain.order_status import OrderStatus, PaymentMethod, PaymentStatus

PHONE_RE = re.compile(r"^[6-9]\d{9}$")
POSTAL_CODE_RE = re.compile(r"^\d{6}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
SUPPORTED_CURRENCIES = ("INR", "USD", "EUR")
# shipping address keys shown on unauthenticated order lookups
PUBLIC_ADDRESS_FIELDS = ("full_name", "city", "state", "postal_code", "country")


def mask_email(email: Optional[str]) -> Optional[str]:
    if not email or "@" not in email:
        return email
    local, domain = email.split("@", 1)
    return f"{local[:1]}***@{domain}"


def _required(value: Optional[str], message: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError(message)
    return value


class ShippingAddress(BaseModel):
    full_name: str
    email: Optional[str] = None
    phone: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    postal_code: str
    country: str = "India"

    @field_validator("full_name")
    @classmethod
    def check_full_name(cls, v):
        v = _required(v, "Full name is required")
        if not 2 <= len(v) <= 100:
            raise ValueError("Name must be 2-100 characters")
        return v

    @field_validator("email")
    @classmethod
    def check_email(cls, v):
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not EMAIL_RE.match(v):
            raise ValueError("Invalid email address")
        return v.lower()

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v):
        v = _required(v, "Phone number is required")
        if not PHONE_RE.match(v):
            raise ValueError("Invalid Indian phone number")
        return v

    @field_validator("address_line1")
    @classmethod
    def check_address_line1(cls, v):
        v = _required(v, "Address is required")
        if not 5 <= len(v) <= 200:
            raise ValueError("Address must be 5-200 characters")
        return v

    @field_validator("city")
    @classmethod
    def check_city(cls, v):
        return _required(v, "City is required")

    @field_validator("state")
    @classmethod
    def check_state(cls, v):
        v = _required(v, "State is required")
        if len(v) < 2:
            raise ValueError("State is required")
        return v

    @field_validator("postal_code")
    @classmethod
    def check_postal_code(cls, v):
        v = _required(v, "Postal code is required")
        if not POSTAL_CODE_RE.match(v):
            raise ValueError("Invalid postal code")
        return v


class CartItem(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    quantity: int

    @field_validator("quantity")
    @classmethod
    def check_quantity(cls, v):
        if v < 1:
            raise ValueError("Quantity must be at least 1")
        return v


class CheckoutRequest(BaseModel):
    user_id: Optional[str] = None
    guest_email: Optional[str] = None
    items: List[CartItem]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    coupon_code: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    # amount the customer was shown; compared, never trusted
    total: Optional[Decimal] = Field(default=None, ge=0)
    checkout_token: Optional[str] = Field(default=None, max_length=100)

    @field_validator("items")
    @classmethod
    def check_items(cls, v):
        if not v:
            raise ValueError("At least one item is required")
        return v

    @field_validator("payment_method", mode="before")
    @classmethod
    def check_payment_method(cls, v):
        v = _required(v if isinstance(v, str) else None, "Payment method is required").lower()
        if v not in {m.value for m in PaymentMethod}:
            raise ValueError("Invalid payment method")
        return v

    @field_validator("guest_email")
    @classmethod
    def check_guest_email(cls, v):
        if v is None or not v.strip():
            return None
        if not EMAIL_RE.match(v.strip()):
            raise ValueError("Invalid email address")
        return v.strip().lower()


class CheckoutResponse(BaseModel):
    success: bool = True
    order_number: str
    order_id: Optional[int] = None
    total: Optional[float] = None
    payment_status: str
    message: str = "Order created successfully"


class CreateGatewayOrderRequest(BaseModel):
    order_number: str = Field(alias="orderNumber")
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    notes: Optional[Dict[str, Any]] = None

    class Config:
        populate_by_name = True

    @field_validator("order_number")
    @classmethod
    def check_order_number(cls, v):
        return _required(v, "Order number is required")

    @field_validator("amount")
    @classmethod
    def check_amount(cls, v):
        if v is not None and v < 1:
            raise ValueError("Amount must be greater than 0")
        return v

    @field_validator("currency")
    @classmethod
    def check_currency(cls, v):
        if v is None:
            return None
        v = v.strip().upper()
        if v not in SUPPORTED_CURRENCIES:
            raise ValueError("Invalid currency")
        return v


class GatewayOrderResponse(BaseModel):
    success: bool = True
    orderId: str
    amount: int
    currency: str
    keyId: str


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str
    order_number: str

    @field_validator("razorpay_order_id")
    @classmethod
    def check_order_id(cls, v):
        return _required(v, "Razorpay order ID is required")

    @field_validator("razorpay_payment_id")
    @classmethod
    def check_payment_id(cls, v):
        return _required(v, "Razorpay payment ID is required")

    @field_validator("razorpay_signature")
    @classmethod
    def check_signature(cls, v):
        return _required(v, "Razorpay signature is required")

    @field_validator("order_number")
    @classmethod
    def check_order_number(cls, v):
        return _required(v, "Order number is required")


class VerifyPaymentResponse(BaseModel):
    success: bool = True
    message: str = "Payment verified successfully"
    order_number: str
    payment_id: str


class GatewayOrderStatus(BaseModel):
    id: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[int] = None


class GatewayOrderStatusResponse(BaseModel):
    success: bool = True
    order: GatewayOrderStatus


class OrderStatusUpdate(BaseModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    payment_id: Optional[str] = Field(default=None, max_length=100)


class OrderItemRead(BaseModel):
    id: int
    product_id: Optional[int] = None
    product_name: str
    product_image: Optional[str] = None
    variant_id: Optional[int] = None
    variant_size: Optional[str] = None
    variant_sku: Optional[str] = None
    quantity: int
    unit_price: float
    total_price: float
    class Config:
        from_attributes = True


class OrderRead(BaseModel):
    id: int
    order_number: str
    user_id: Optional[str] = None
    guest_email: Optional[str] = None
    status: str
    payment_status: str
    payment_method: str
    payment_id: Optional[str] = None
    subtotal: float
    shipping_amount: float
    tax_amount: float
    discount_amount: float
    total: float
    currency: str
    shipping_address: Dict[str, Any]
    coupon_id: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemRead] = []
    class Config:
        from_attributes = True

    def without_contact_details(self) -> "OrderRead":
        """Copy safe to show to anyone holding the order number."""
        address = {k: v for k, v in self.shipping_address.items() if k in PUBLIC_ADDRESS_FIELDS}
        return self.model_copy(update={
            "shipping_address": address,
            "guest_email": mask_email(self.guest_email),
            "user_id": None,
            "notes": None,
        })


class OrderResponse(BaseModel):
    success: bool = True
    order: OrderRead


class OrderUpdateResponse(BaseModel):
    success: bool = True
    message: str = "Order updated successfully"
    order: OrderRead


class TokenRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
