"""
Database Schemas for the notebook storefront

Each Pydantic model corresponds to a MongoDB collection. The collection name is the lowercase of the class name.

Example: class Product -> collection "product"
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

PageType = Literal["ruled", "plain", "grid", "dotted"]
MainCategory = Literal["A4", "A5", "A3", "RoughNotebook", "Diary"]
OrderStatus = Literal["pending", "confirmed", "shipped", "delivered", "cancelled", "refunded"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
PaymentMethod = Literal["cod", "upi", "online", "netbanking", "wallet"]
Role = Literal["user", "admin"]
Provider = Literal["credentials", "google"]

# Core domain models


class Address(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    address_line1: str = Field(..., min_length=1)
    address_line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)
    country: str = "India"


class User(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password_hash: Optional[str] = None
    provider: Provider = "credentials"
    role: Role = "user"
    avatar: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.strip().lower()

    @model_validator(mode="after")
    def password_for_credentials(self):
        if self.provider == "credentials" and not self.password_hash:
            raise ValueError("Password is required for credential accounts")
        return self


class Variant(BaseModel):
    page_type: PageType
    quantity: int = Field(..., ge=1, description="number of pages/sheets")
    color: str = Field(..., min_length=1)
    additional_price: float = Field(0, ge=0)
    stock: int = Field(..., ge=0)
    sku: str = Field(..., min_length=1)

    @field_validator("color", "sku")
    @classmethod
    def strip(cls, v):
        return v.strip()


class Ruling(BaseModel):
    line_spacing: Optional[Literal["8mm", "9mm", "college-ruled", "wide-ruled"]] = None
    margin_left: bool = False


class Specifications(BaseModel):
    size: Literal["A4", "A5", "B5", "letter", "legal", "pocket"]
    binding: Literal["spiral", "perfect-bound", "stapled", "ring-bound"]
    paper_gsm: int = Field(..., ge=50, le=300)
    cover_type: Literal["soft", "hard", "plastic"]
    ruled: Optional[Ruling] = None


class Product(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    brand_name: str = Field(..., min_length=1)
    model: Optional[str] = None
    price: float = Field(..., ge=0)
    product_code: str = Field(..., min_length=1)
    main_category: MainCategory
    sub_category: str = Field(..., min_length=1)
    tags: List[str] = Field(default_factory=list)
    variants: List[Variant] = Field(..., min_length=1)
    description: str = Field(..., min_length=10)
    images: List[str] = Field(..., min_length=1)
    specifications: Specifications
    total_stock: int = 0
    min_stock_alert: int = Field(5, ge=0)
    is_active: bool = True
    is_featured: bool = False
    meta_title: Optional[str] = Field(None, max_length=60)
    meta_description: Optional[str] = Field(None, max_length=160)

    @field_validator("product_code")
    @classmethod
    def upper_code(cls, v):
        return v.strip().upper()

    @field_validator("tags")
    @classmethod
    def lower_tags(cls, v):
        return [t.strip().lower() for t in v]

    @field_validator("images")
    @classmethod
    def strip_images(cls, v):
        return [i.strip() for i in v]

    @field_validator("name", "brand_name", "sub_category", "description")
    @classmethod
    def strip_text(cls, v):
        return v.strip()

    @model_validator(mode="after")
    def check_variants(self):
        skus = [v.sku for v in self.variants]
        if len(set(skus)) != len(skus):
            raise ValueError("Duplicate SKUs in request")
        self.total_stock = sum(v.stock for v in self.variants)
        return self


class OrderItem(BaseModel):
    product_id: str
    variant_sku: Optional[str] = None
    name: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    total: float = Field(..., ge=0)


class Order(BaseModel):
    order_id: str
    user_id: str
    status: OrderStatus = "pending"
    items: List[OrderItem] = Field(..., min_length=1)
    subtotal: float
    shipping_cost: float = 0
    tax_amount: float = 0
    discount: float = Field(0, ge=0)
    grand_total: float = Field(..., ge=0)
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    transaction_id: Optional[str] = None
    merchant_order_id: Optional[str] = None
    shipping_address: Address
    billing_address: Optional[Address] = None
    expected_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    notes: Optional[str] = None


class Review(BaseModel):
    user_id: str
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    text: str = Field(..., min_length=1)
    date: Optional[datetime] = None

    @field_validator("text")
    @classmethod
    def strip_text(cls, v):
        return v.strip()


class Contact(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone_no: str = Field(..., min_length=10)
    subject: str = Field(..., min_length=1)
    message: str = Field(..., min_length=10)
    status: Literal["new", "in-progress", "resolved", "closed"] = "new"

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.strip().lower()


# Request bodies

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=8)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class CartItemIn(BaseModel):
    product_id: str
    variant_sku: Optional[str] = None
    quantity: int = Field(1, ge=1)


class CheckoutRequest(BaseModel):
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment_method: PaymentMethod = "cod"


class OrderUpdate(BaseModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    expected_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    reason: Optional[str] = None
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    notes: Optional[str] = None


class ReasonBody(BaseModel):
    reason: Optional[str] = None


class PaymentInitiateRequest(BaseModel):
    order_id: str
    redirect_url: str


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    brand_name: Optional[str] = None
    model: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    main_category: Optional[MainCategory] = None
    sub_category: Optional[str] = None
    tags: Optional[List[str]] = None
    variants: Optional[List[Variant]] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=10)
    images: Optional[List[str]] = Field(None, min_length=1)
    specifications: Optional[Specifications] = None
    min_stock_alert: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None
    meta_title: Optional[str] = Field(None, max_length=60)
    meta_description: Optional[str] = Field(None, max_length=160)


class VariantStockUpdate(BaseModel):
    stock: int = Field(..., ge=0)


class RoleUpdate(BaseModel):
    role: Role


class WishlistIn(BaseModel):
    product_id: str


class ReviewIn(BaseModel):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    text: str = Field(..., min_length=1)
