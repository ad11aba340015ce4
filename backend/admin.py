import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import auth
import models
from audit import insert_audit_log
from database import get_db
from dependencies import require_role
from errors import Conflict, NotFound, ValidationFailed
from loyalty import top_customers
from redis_client import redis_client
from schemas import (
    AdminUserCreate,
    AdminUserUpdate,
    CategoryCreate,
    CategoryUpdate,
    DiscountSettings,
    LocationCreate,
    ProductCreate,
    ProductUpdate,
    TableCreate,
    TableUpdate,
    ThemeUpdate,
)
from settings_store import get_theme, set_theme

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

admin_or_manager = require_role("admin", "manager")

USER_COLUMNS = ("id", "role", "name", "email", "phone", "username", "must_change_password", "is_active")
REPORT_FORMATS = {"daily": "%Y-%m-%d", "monthly": "%Y-%m", "yearly": "%Y"}


def row_to_dict(row, columns=None) -> dict:
    names = columns or [c.name for c in row.__table__.columns]
    return {name: getattr(row, name) for name in names}


def paginate(query, page: int, page_size: int, max_page_size: int):
    page = max(page, 1)
    page_size = min(max(page_size, 1), max_page_size)
    total = query.order_by(None).count()
    items = query.offset((page - 1) * page_size).limit(page_size).all()
    return items, total


def flush_or_conflict(db: Session, message: str):
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise Conflict(message)


def commit_or_conflict(db: Session, message: str):
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict(message)


# ========== Categories ==========

@router.get("/categories")
def list_categories(page: int = 1, pageSize: int = 20, db: Session = Depends(get_db),
                    current_user: models.User = Depends(admin_or_manager)):
    query = db.query(models.Category).order_by(models.Category.sort_order)
    items, total = paginate(query, page, pageSize, 100)
    return {"items": [row_to_dict(c) for c in items], "total": total}


@router.post("/categories")
def create_category(data: CategoryCreate, db: Session = Depends(get_db),
                    current_user: models.User = Depends(admin_or_manager)):
    category = models.Category(**data.dict(), is_active=True)
    db.add(category)
    flush_or_conflict(db, "Category slug already exists")
    insert_audit_log(db, current_user.id, "CREATE", "category", category.id, data.dict())
    commit_or_conflict(db, "Category slug already exists")
    redis_client.invalidate_catalog_cache()
    return {"id": category.id}


@router.put("/categories/{category_id}")
def update_category(category_id: int, data: CategoryUpdate, db: Session = Depends(get_db),
                    current_user: models.User = Depends(admin_or_manager)):
    category = db.query(models.Category).filter(models.Category.id == category_id).first()
    if not category:
        raise NotFound("Category not found")
    changes = data.dict(exclude_unset=True)
    for key, value in changes.items():
        setattr(category, key, value)
    insert_audit_log(db, current_user.id, "UPDATE", "category", category_id, changes)
    commit_or_conflict(db, "Category slug already exists")
    redis_client.invalidate_catalog_cache()
    return {"ok": True}


@router.delete("/categories/{category_id}")
def deactivate_category(category_id: int, db: Session = Depends(get_db),
                        current_user: models.User = Depends(admin_or_manager)):
    category = db.query(models.Category).filter(models.Category.id == category_id).first()
    if not category:
        raise NotFound("Category not found")
    category.is_active = False
    insert_audit_log(db, current_user.id, "DEACTIVATE", "category", category_id)
    db.commit()
    redis_client.invalidate_catalog_cache()
    return {"ok": True}


# ========== Products ==========

@router.get("/products")
def list_products(page: int = 1, pageSize: int = 20, db: Session = Depends(get_db),
                  current_user: models.User = Depends(admin_or_manager)):
    query = db.query(models.Product).order_by(models.Product.created_at.desc())
    items, total = paginate(query, page, pageSize, 200)
    return {"items": [row_to_dict(p) for p in items], "total": total}


@router.post("/products")
def create_product(data: ProductCreate, db: Session = Depends(get_db),
                   current_user: models.User = Depends(admin_or_manager)):
    if not db.query(models.Category).filter(models.Category.id == data.category_id).first():
        raise ValidationFailed("Unknown category", {"category_id": data.category_id})
    product = models.Product(**data.dict())
    db.add(product)
    flush_or_conflict(db, "Product slug already exists")
    insert_audit_log(db, current_user.id, "CREATE", "product", product.id, data.dict())
    commit_or_conflict(db, "Product slug already exists")
    redis_client.invalidate_catalog_cache()
    return {"id": product.id}


@router.put("/products/{product_id}")
def update_product(product_id: int, data: ProductUpdate, db: Session = Depends(get_db),
                   current_user: models.User = Depends(admin_or_manager)):
    product = db.query(models.Product).filter(models.Product.id == product_id).first()
    if not product:
        raise NotFound("Product not found")
    changes = data.dict(exclude_unset=True)
    for key, value in changes.items():
        setattr(product, key, value)
    insert_audit_log(db, current_user.id, "UPDATE", "product", product_id, changes)
    commit_or_conflict(db, "Product slug already exists")
    redis_client.invalidate_catalog_cache()
    return {"ok": True}


@router.delete("/products/{product_id}")
def deactivate_product(product_id: int, db: Session = Depends(get_db),
                       current_user: models.User = Depends(admin_or_manager)):
    product = db.query(models.Product).filter(models.Product.id == product_id).first()
    if not product:
        raise NotFound("Product not found")
    product.is_active = False
    insert_audit_log(db, current_user.id, "DEACTIVATE", "product", product_id)
    db.commit()
    redis_client.invalidate_catalog_cache()
    return {"ok": True}


# ========== Locations & tables ==========

@router.get("/locations")
def list_locations(db: Session = Depends(get_db), current_user: models.User = Depends(admin_or_manager)):
    rows = db.query(models.Location).order_by(models.Location.created_at.desc()).all()
    return {"items": [row_to_dict(r) for r in rows]}


@router.post("/locations")
def create_location(data: LocationCreate, db: Session = Depends(get_db),
                    current_user: models.User = Depends(admin_or_manager)):
    location = models.Location(name=data.name, address=data.address, is_active=True)
    db.add(location)
    db.flush()
    insert_audit_log(db, current_user.id, "CREATE", "location", location.id, data.dict())
    db.commit()
    return {"id": location.id}


@router.get("/tables")
def list_tables(db: Session = Depends(get_db), current_user: models.User = Depends(admin_or_manager)):
    rows = db.query(models.Table).order_by(models.Table.label).all()
    return {"items": [row_to_dict(r) for r in rows]}


@router.post("/tables")
def create_table(data: TableCreate, db: Session = Depends(get_db),
                 current_user: models.User = Depends(admin_or_manager)):
    if not db.query(models.Location).filter(models.Location.id == data.location_id).first():
        raise ValidationFailed("Unknown location", {"location_id": data.location_id})
    table = models.Table(**data.dict(), is_active=True)
    db.add(table)
    flush_or_conflict(db, "Table code already exists")
    insert_audit_log(db, current_user.id, "CREATE", "table", table.id, data.dict())
    commit_or_conflict(db, "Table code already exists")
    return {"id": table.id}


@router.put("/tables/{table_id}")
def update_table(table_id: int, data: TableUpdate, db: Session = Depends(get_db),
                 current_user: models.User = Depends(admin_or_manager)):
    table = db.query(models.Table).filter(models.Table.id == table_id).first()
    if not table:
        raise NotFound("Table not found")
    changes = data.dict(exclude_unset=True)
    for key, value in changes.items():
        setattr(table, key, value)
    insert_audit_log(db, current_user.id, "UPDATE", "table", table_id, changes)
    commit_or_conflict(db, "Table code already exists")
    return {"ok": True}


# ========== Users ==========

@router.get("/users")
def list_users(page: int = 1, pageSize: int = 20, db: Session = Depends(get_db),
               current_user: models.User = Depends(admin_or_manager)):
    query = db.query(models.User).order_by(models.User.created_at.desc())
    items, total = paginate(query, page, pageSize, 200)
    return {"items": [row_to_dict(u, USER_COLUMNS) for u in items], "total": total}


@router.post("/users")
def create_user(data: AdminUserCreate, db: Session = Depends(get_db),
                current_user: models.User = Depends(admin_or_manager)):
    if db.query(models.User).filter(models.User.phone == data.phone).first():
        raise Conflict("Phone already registered")

    salt = auth.generate_salt()
    user = models.User(
        role=data.role,
        name=data.name,
        email=data.email,
        phone=data.phone,
        username=(data.username or data.phone).strip(),
        password_hash=auth.hash_password(data.password, salt, auth.PASSWORD_PEPPER),
        password_salt=salt,
        must_change_password=True,
        is_active=True,
    )
    db.add(user)
    flush_or_conflict(db, "Phone or username already registered")
    db.add(models.LoyaltyPoints(user_id=user.id, points_total=0))
    audit_payload = data.dict(exclude={"password"})
    insert_audit_log(db, current_user.id, "CREATE", "user", user.id, audit_payload)
    commit_or_conflict(db, "Phone or username already registered")
    logger.info("User %s created %s account %s", current_user.id, data.role, user.id)
    return {"id": user.id}


@router.put("/users/{user_id}")
def update_user(user_id: int, data: AdminUserUpdate, db: Session = Depends(get_db),
                current_user: models.User = Depends(admin_or_manager)):
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise NotFound("User not found")
    changes = data.dict(exclude_unset=True)
    for key, value in changes.items():
        setattr(user, key, value)
    insert_audit_log(db, current_user.id, "UPDATE", "user", user_id, changes)
    commit_or_conflict(db, "Phone or username already registered")
    return {"ok": True}


# ========== Reports ==========

@router.get("/reports/sales")
def sales_report(report_range: str = Query("daily", alias="range"), db: Session = Depends(get_db),
                 current_user: models.User = Depends(admin_or_manager)):
    fmt = REPORT_FORMATS.get(report_range, REPORT_FORMATS["daily"])
    orders = (
        db.query(models.Order.served_at, models.Order.total_after_discount_tk)
        .filter(models.Order.status == models.STATUS_SERVED, models.Order.served_at.isnot(None))
        .all()
    )
    totals = {}
    for served_at, total in orders:
        period = served_at.strftime(fmt)
        totals[period] = totals.get(period, 0) + total
    rows = [{"period": period, "total": totals[period]} for period in sorted(totals, reverse=True)]
    return {"rows": rows[:60]}


@router.get("/reports/best-items")
def best_items_report(db: Session = Depends(get_db), current_user: models.User = Depends(admin_or_manager)):
    qty = func.sum(models.OrderItem.qty).label("qty")
    rows = (
        db.query(models.OrderItem.product_name_snapshot_en, qty)
        .join(models.Order, models.Order.id == models.OrderItem.order_id)
        .filter(models.Order.status == models.STATUS_SERVED)
        .group_by(models.OrderItem.product_name_snapshot_en)
        .order_by(qty.desc())
        .limit(10)
        .all()
    )
    return {"items": [{"name": name, "qty": int(total)} for name, total in rows]}


@router.get("/reports/badges")
def badge_distribution(db: Session = Depends(get_db), current_user: models.User = Depends(admin_or_manager)):
    badges = db.query(models.BadgeLevel).order_by(models.BadgeLevel.min_points).all()
    points = [
        total for (total,) in db.query(models.LoyaltyPoints.points_total)
        .join(models.User, models.User.id == models.LoyaltyPoints.user_id)
        .filter(models.User.role == "customer")
        .all()
    ]
    distribution = []
    for index, badge in enumerate(badges):
        upper: Optional[int] = badges[index + 1].min_points if index + 1 < len(badges) else None
        count = sum(1 for p in points if p >= badge.min_points and (upper is None or p < upper))
        distribution.append({"key": badge.key, "label": badge.display_name_en, "count": count})
    return {"distribution": distribution}


@router.get("/leaderboard")
def admin_leaderboard(db: Session = Depends(get_db), current_user: models.User = Depends(admin_or_manager)):
    return {"leaderboard": top_customers(db, include_points=True)}


# ========== Settings ==========

@router.get("/settings/theme")
def read_theme(db: Session = Depends(get_db), current_user: models.User = Depends(admin_or_manager)):
    return {"theme": get_theme(db)}


@router.post("/settings/theme")
def update_theme(data: ThemeUpdate, db: Session = Depends(get_db),
                 current_user: models.User = Depends(admin_or_manager)):
    set_theme(db, data.theme)
    insert_audit_log(db, current_user.id, "UPDATE", "settings", "theme", data.dict())
    db.commit()
    return {"ok": True}


@router.get("/settings/discounts")
def read_discounts(db: Session = Depends(get_db), current_user: models.User = Depends(admin_or_manager)):
    rows = db.query(models.BadgeLevel).order_by(models.BadgeLevel.sort_order).all()
    columns = ("key", "display_name_en", "display_name_bn", "min_points", "discount_percent")
    return {"badges": [row_to_dict(r, columns) for r in rows]}


@router.post("/settings/discounts")
def update_discounts(data: DiscountSettings, db: Session = Depends(get_db),
                     current_user: models.User = Depends(admin_or_manager)):
    for badge in data.badges:
        db.query(models.BadgeLevel).filter(models.BadgeLevel.key == badge.key).update(
            {models.BadgeLevel.discount_percent: badge.discount_percent}, synchronize_session=False
        )
    insert_audit_log(db, current_user.id, "UPDATE", "badge_levels", "discounts", data.dict())
    db.commit()
    return {"ok": True}
