import re
from typing import List, Optional

from pydantic import BaseModel, Field, validator

from models import ROLES

PHONE_RE = re.compile(r"^\d{10,15}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
THEMES = ("cyberpunk", "windows11", "apple")
STAFF_STATUSES = ("PREPARING", "READY", "SERVED", "CANCELLED")


def _check_phone(v: str) -> str:
    v = v.strip()
    if not PHONE_RE.match(v):
        raise ValueError("Phone must be 10 to 15 digits")
    return v


def _check_email(v: Optional[str]) -> Optional[str]:
    if v is None or v.strip() == "":
        return None
    v = v.strip()
    if not EMAIL_RE.match(v):
        raise ValueError("Invalid email address")
    return v


def _check_not_blank(v: str, label: str) -> str:
    if not v or len(v.strip()) == 0:
        raise ValueError(f"{label} cannot be empty")
    return v.strip()


def _reject_null(v):
    if v is None:
        raise ValueError("Field cannot be null")
    return v


# ---------- auth ----------

class CustomerRegister(BaseModel):
    name: str
    email: Optional[str] = None
    phone: str

    @validator("name")
    def validate_name(cls, v: str) -> str:
        return _check_not_blank(v, "Name")

    @validator("email")
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v)

    @validator("phone")
    def validate_phone(cls, v: str) -> str:
        return _check_phone(v)


class UserLogin(BaseModel):
    identifier: Optional[str] = None
    phone: Optional[str] = None
    password: str

    @validator("password")
    def validate_password(cls, v: str, values) -> str:
        if len(v) < 4:
            raise ValueError("Password must be at least 4 characters")
        if not (values.get("identifier") or values.get("phone")):
            raise ValueError("Identifier is required")
        return v

    @property
    def login_identifier(self) -> str:
        return (self.identifier or self.phone or "").strip()


class PasswordChange(BaseModel):
    current_password: str = Field(..., alias="currentPassword")
    new_password: str = Field(..., alias="newPassword")

    @validator("current_password")
    def validate_current_password(cls, v: str) -> str:
        if len(v) < 4:
            raise ValueError("Password must be at least 4 characters")
        return v

    @validator("new_password")
    def validate_new_password(cls, v: str) -> str:
        if len(v) < 6:
            raise ValueError("New password must be at least 6 characters")
        return v


# ---------- orders ----------

class OrderItemCreate(BaseModel):
    product_id: int = Field(..., alias="productId")
    qty: int

    @validator("qty")
    def validate_qty(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1")
        if v > 20:
            raise ValueError("Quantity cannot exceed 20")
        return v


class OrderCreate(BaseModel):
    table_code: str = Field(..., alias="tableCode")
    notes: Optional[str] = None
    items: List[OrderItemCreate]

    @validator("table_code")
    def validate_table_code(cls, v: str) -> str:
        return _check_not_blank(v, "Table code")

    @validator("items")
    def validate_items(cls, v: List[OrderItemCreate]) -> List[OrderItemCreate]:
        if not v:
            raise ValueError("Order must contain at least one item")
        return v


class ReviewCreate(BaseModel):
    rating: int
    comment: Optional[str] = None

    @validator("rating")
    def validate_rating(cls, v: int) -> int:
        if v < 1 or v > 10:
            raise ValueError("Rating must be between 1 and 10")
        return v


class OrderAccept(BaseModel):
    eta_minutes: int = Field(..., alias="etaMinutes")

    @validator("eta_minutes")
    def validate_eta(cls, v: int) -> int:
        if v < 1 or v > 120:
            raise ValueError("ETA must be between 1 and 120 minutes")
        return v


class OrderStatusUpdate(BaseModel):
    status: str

    @validator("status")
    def validate_status(cls, v: str) -> str:
        if v not in STAFF_STATUSES:
            raise ValueError(f"Status must be one of {', '.join(STAFF_STATUSES)}")
        return v


# ---------- admin: catalog ----------

class CategoryCreate(BaseModel):
    name_en: str = Field(..., min_length=1)
    name_bn: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    sort_order: int = 0


class CategoryUpdate(BaseModel):
    name_en: Optional[str] = Field(None, min_length=1)
    name_bn: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = Field(None, min_length=1)
    sort_order: Optional[int] = None

    @validator("name_en", "name_bn", "slug", "sort_order", pre=True)
    def reject_null(cls, v):
        return _reject_null(v)


class ProductCreate(BaseModel):
    category_id: int
    slug: str = Field(..., min_length=1)
    name_en: str = Field(..., min_length=1)
    name_bn: str = Field(..., min_length=1)
    description_en: str = Field(..., min_length=1)
    description_bn: str = Field(..., min_length=1)
    price_tk: int
    is_active: bool = True
    is_featured: bool = False
    is_trending: bool = False
    is_hot: bool = False
    media_image_url: Optional[str] = None
    media_video_url: Optional[str] = None

    @validator("price_tk")
    def validate_price(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Price must be at least 1")
        return v


class ProductUpdate(BaseModel):
    category_id: Optional[int] = None
    slug: Optional[str] = Field(None, min_length=1)
    name_en: Optional[str] = Field(None, min_length=1)
    name_bn: Optional[str] = Field(None, min_length=1)
    description_en: Optional[str] = Field(None, min_length=1)
    description_bn: Optional[str] = Field(None, min_length=1)
    price_tk: Optional[int] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None
    is_trending: Optional[bool] = None
    is_hot: Optional[bool] = None
    media_image_url: Optional[str] = None
    media_video_url: Optional[str] = None

    @validator("category_id", "slug", "name_en", "name_bn", "description_en", "description_bn", "price_tk",
               "is_active", "is_featured", "is_trending", "is_hot", pre=True)
    def reject_null(cls, v):
        return _reject_null(v)

    @validator("price_tk")
    def validate_price(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("Price must be at least 1")
        return v


# ---------- admin: seating ----------

class LocationCreate(BaseModel):
    name: str = Field(..., min_length=1)
    address: Optional[str] = None


class TableCreate(BaseModel):
    location_id: int
    code: str = Field(..., min_length=1)
    label: str = Field(..., min_length=1)


class TableUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=1)
    label: Optional[str] = Field(None, min_length=1)
    is_active: Optional[bool] = None

    @validator("code", "label", "is_active", pre=True)
    def reject_null(cls, v):
        return _reject_null(v)


# ---------- admin: users ----------

class AdminUserCreate(BaseModel):
    name: str
    phone: str
    email: Optional[str] = None
    role: str
    password: str
    username: Optional[str] = None

    @validator("name")
    def validate_name(cls, v: str) -> str:
        return _check_not_blank(v, "Name")

    @validator("phone")
    def validate_phone(cls, v: str) -> str:
        return _check_phone(v)

    @validator("email")
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v)

    @validator("role")
    def validate_role(cls, v: str) -> str:
        if v not in ROLES:
            raise ValueError(f"Role must be one of {', '.join(ROLES)}")
        return v

    @validator("password")
    def validate_password(cls, v: str) -> str:
        if len(v) < 4:
            raise ValueError("Password must be at least 4 characters")
        return v

    @validator("username")
    def validate_username(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and len(v.strip()) < 3:
            raise ValueError("Username must be at least 3 characters")
        return v.strip() if v is not None else v


class AdminUserUpdate(BaseModel):
    role: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    username: Optional[str] = None
    is_active: Optional[bool] = None

    @validator("role", "name", "phone", "is_active", pre=True)
    def reject_null(cls, v):
        return _reject_null(v)

    @validator("role")
    def validate_role(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in ROLES:
            raise ValueError(f"Role must be one of {', '.join(ROLES)}")
        return v

    @validator("email")
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v)

    @validator("phone")
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return _check_phone(v) if v is not None else v

    @validator("username")
    def validate_username(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and len(v.strip()) < 3:
            raise ValueError("Username must be at least 3 characters")
        return v


# ---------- admin: settings ----------

class ThemeUpdate(BaseModel):
    theme: str

    @validator("theme")
    def validate_theme(cls, v: str) -> str:
        if v not in THEMES:
            raise ValueError(f"Theme must be one of {', '.join(THEMES)}")
        return v


class BadgeDiscount(BaseModel):
    key: str = Field(..., min_length=1)
    discount_percent: int

    @validator("discount_percent")
    def validate_percent(cls, v: int) -> int:
        if v < 0 or v > 100:
            raise ValueError("Discount must be between 0 and 100")
        return v


class DiscountSettings(BaseModel):
    badges: List[BadgeDiscount]
