# models.py
from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, DateTime, Text
from sqlalchemy.orm import relationship

from database import Base
from timeutil import utcnow

ROLES = ("customer", "admin", "manager", "chef", "employee")

STATUS_PLACED = "PLACED"
STATUS_ACCEPTED = "ACCEPTED"
STATUS_PREPARING = "PREPARING"
STATUS_READY = "READY"
STATUS_SERVED = "SERVED"
STATUS_CANCELLED = "CANCELLED"

ACTIVE_STATUSES = (STATUS_PLACED, STATUS_ACCEPTED, STATUS_PREPARING, STATUS_READY)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    role = Column(String(20), nullable=False, default="customer")
    name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(15), unique=True, index=True, nullable=False)
    username = Column(String(50), unique=True, index=True, nullable=True)
    password_hash = Column(String(64), nullable=False)
    password_salt = Column(String(32), nullable=False)
    must_change_password = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    points = relationship("LoyaltyPoints", back_populates="user", uselist=False)
    orders = relationship("Order", back_populates="customer")


class UserSession(Base):
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, index=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_seen_at = Column(DateTime, default=utcnow, nullable=False)


class LoyaltyPoints(Base):
    __tablename__ = "user_points"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    points_total = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="points")


class BadgeLevel(Base):
    __tablename__ = "badge_levels"

    key = Column(String(30), primary_key=True)
    display_name_en = Column(String(60), nullable=False)
    display_name_bn = Column(String(60), nullable=False)
    min_points = Column(Integer, unique=True, nullable=False)
    discount_percent = Column(Integer, nullable=False, default=0)
    sort_order = Column(Integer, nullable=False, default=0)


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String(50), primary_key=True)
    value_json = Column(Text, nullable=False)


class Location(Base):
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    address = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    tables = relationship("Table", back_populates="location")


class Table(Base):
    __tablename__ = "tables"

    id = Column(Integer, primary_key=True, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    code = Column(String(40), unique=True, index=True, nullable=False)
    label = Column(String(60), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    location = relationship("Location", back_populates="tables")


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(80), unique=True, index=True, nullable=False)
    name_en = Column(String(120), nullable=False)
    name_bn = Column(String(120), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)

    products = relationship("Product", back_populates="category")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    slug = Column(String(80), unique=True, index=True, nullable=False)
    name_en = Column(String(120), nullable=False)
    name_bn = Column(String(120), nullable=False)
    description_en = Column(Text, nullable=False)
    description_bn = Column(Text, nullable=False)
    price_tk = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_featured = Column(Boolean, default=False, nullable=False)
    is_trending = Column(Boolean, default=False, nullable=False)
    is_hot = Column(Boolean, default=False, nullable=False)
    media_image_url = Column(String(500), nullable=True)
    media_video_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    category = relationship("Category", back_populates="products")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_code = Column(String(20), unique=True, index=True, nullable=False)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=False)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=STATUS_PLACED, index=True)
    placed_at = Column(DateTime, default=utcnow, nullable=False)
    accepted_at = Column(DateTime, nullable=True)
    eta_minutes = Column(Integer, nullable=True)
    eta_at = Column(DateTime, nullable=True)
    served_at = Column(DateTime, nullable=True)
    total_before_discount_tk = Column(Integer, nullable=False)
    discount_percent_applied = Column(Integer, nullable=False, default=0)
    discount_amount_tk = Column(Integer, nullable=False, default=0)
    total_after_discount_tk = Column(Integer, nullable=False)
    points_earned = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)

    customer = relationship("User", back_populates="orders")
    table = relationship("Table")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    review = relationship("Review", back_populates="order", uselist=False)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    product_name_snapshot_en = Column(String(120), nullable=False)
    product_name_snapshot_bn = Column(String(120), nullable=False)
    unit_price_snapshot_tk = Column(Integer, nullable=False)
    qty = Column(Integer, nullable=False)
    line_total_tk = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")


class OrderEvent(Base):
    __tablename__ = "order_events"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    event_type = Column(String(20), nullable=False)
    by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    payload_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    rating_1_10 = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    order = relationship("Order", back_populates="review")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    action = Column(String(20), nullable=False)
    entity_type = Column(String(30), nullable=False)
    entity_id = Column(String(40), nullable=False)
    payload_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
