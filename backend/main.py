from fastapi import FastAPI, Depends, Query
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from typing import List, Optional
import logging
import os
import uvicorn

import models
from admin import router as admin_router
from auth_service import router as auth_router
from database import engine, get_db, init_cafe_defaults, wait_for_db
from dependencies import RequestContext, get_request_context, require_auth, require_role
from errors import Forbidden, NotFound, ValidationFailed, register_error_handlers
from loyalty import build_user_profile, top_customers
from orders import (
    accept_order,
    change_order_status,
    list_staff_orders,
    order_to_dict,
    place_order,
    submit_review,
)
from rate_limiter import LOGIN_WINDOW_SECONDS, MAX_LOGIN_ATTEMPTS, LoginRateLimiter
from redis_client import RedisAttemptStore, redis_client
from schemas import OrderAccept, OrderCreate, OrderStatusUpdate, ReviewCreate
from settings_store import get_theme

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("cafe")

STAFF_ROLES = ("chef", "employee", "manager", "admin")
FRONT_DESK_ROLES = ("employee", "manager", "admin")


def build_rate_limiter() -> LoginRateLimiter:
    store = RedisAttemptStore(redis_client.client) if redis_client.is_available() else None
    return LoginRateLimiter(
        store=store,
        max_attempts=int(os.getenv("LOGIN_MAX_ATTEMPTS", MAX_LOGIN_ATTEMPTS)),
        window_seconds=int(os.getenv("LOGIN_WINDOW_SECONDS", LOGIN_WINDOW_SECONDS)),
    )


app = FastAPI(title="Cafe table ordering")

origins = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)
app.state.login_rate_limiter = build_rate_limiter()
app.include_router(auth_router)
app.include_router(admin_router)


@app.on_event("startup")
def startup_event():
    if wait_for_db():
        try:
            models.Base.metadata.create_all(bind=engine)
            init_cafe_defaults()
            logger.info("Database initialised")
        except Exception:
            logger.exception("Database initialisation failed")
    else:
        logger.error("Database was not ready at startup")

    if redis_client.is_available():
        logger.info("Redis available, catalog caching and shared login limits enabled")
    else:
        logger.info("Redis not configured or unreachable, using in-process limits and no cache")


@app.get("/api/health")
def health_check():
    return {"ok": True, "cache": redis_client.get_cache_info()}


@app.get("/api/settings/theme")
def read_theme(db: Session = Depends(get_db)):
    return {"theme": get_theme(db)}


# ========== Catalog ==========

def product_to_dict(product: models.Product) -> dict:
    return {c.name: getattr(product, c.name) for c in models.Product.__table__.columns}


def category_to_dict(category: models.Category) -> dict:
    return {
        "id": category.id,
        "slug": category.slug,
        "name_en": category.name_en,
        "name_bn": category.name_bn,
        "sort_order": category.sort_order,
    }


def load_catalog(db: Session) -> dict:
    cached = redis_client.get_cached_catalog()
    if cached:
        return cached

    categories = (
        db.query(models.Category)
        .filter(models.Category.is_active.is_(True))
        .order_by(models.Category.sort_order)
        .all()
    )
    products = (
        db.query(models.Product)
        .filter(models.Product.is_active.is_(True))
        .order_by(
            models.Product.is_featured.desc(),
            models.Product.is_trending.desc(),
            models.Product.is_hot.desc(),
            models.Product.created_at.desc(),
        )
        .all()
    )
    catalog = jsonable_encoder({
        "categories": [category_to_dict(c) for c in categories],
        "products": [product_to_dict(p) for p in products],
    })
    redis_client.cache_catalog(catalog)
    return catalog


def previous_products(db: Session, customer_id: int, limit: int = 6) -> List[dict]:
    rows = (
        db.query(models.OrderItem.product_id)
        .join(models.Order, models.Order.id == models.OrderItem.order_id)
        .filter(models.Order.customer_id == customer_id)
        .order_by(models.Order.placed_at.desc())
        .all()
    )
    product_ids = []
    for (product_id,) in rows:
        if product_id not in product_ids:
            product_ids.append(product_id)
        if len(product_ids) == limit:
            break
    if not product_ids:
        return []
    products = {p.id: p for p in db.query(models.Product).filter(models.Product.id.in_(product_ids)).all()}
    return [product_to_dict(products[pid]) for pid in product_ids if pid in products]


def find_table(db: Session, table_code: str, active_only: bool = True) -> Optional[models.Table]:
    query = db.query(models.Table).filter(models.Table.code == table_code)
    if active_only:
        query = query.filter(models.Table.is_active.is_(True))
    return query.first()


@app.get("/api/menu")
def get_menu(table_code: Optional[str] = Query(None, alias="tableCode"), db: Session = Depends(get_db),
             ctx: RequestContext = Depends(get_request_context)):
    if not table_code:
        raise ValidationFailed("Missing tableCode")
    table = find_table(db, table_code)
    if not table:
        raise NotFound("Table not found")

    catalog = load_catalog(db)
    customer = None
    previous_items = []
    if ctx.user is not None and ctx.user.role == "customer":
        customer = build_user_profile(db, ctx.user)
        previous_items = previous_products(db, ctx.user.id)

    return {
        "table": {"id": table.id, "code": table.code, "label": table.label},
        "location": {"id": table.location_id, "name": table.location.name},
        "theme": get_theme(db),
        "categories": catalog["categories"],
        "products": catalog["products"],
        "customer": customer,
        "previousItems": previous_items,
    }


@app.get("/api/products")
def get_products(category: Optional[str] = None, hot: Optional[str] = None, trending: Optional[str] = None,
                 db: Session = Depends(get_db)):
    query = db.query(models.Product).filter(models.Product.is_active.is_(True))
    if category:
        query = query.join(models.Category, models.Category.id == models.Product.category_id).filter(
            models.Category.slug == category
        )
    if hot == "1":
        query = query.filter(models.Product.is_hot.is_(True))
    if trending == "1":
        query = query.filter(models.Product.is_trending.is_(True))
    return {"products": [product_to_dict(p) for p in query.all()]}


@app.get("/api/leaderboard")
def public_leaderboard(db: Session = Depends(get_db)):
    return {"leaderboard": top_customers(db, include_points=False)}


# ========== Customer orders ==========

@app.post("/api/orders")
def create_order(order: OrderCreate, db: Session = Depends(get_db),
                 current_user: models.User = Depends(require_auth)):
    db_order = place_order(db, current_user, order)
    return {"orderId": db_order.id, "order": order_to_dict(db_order, with_items=True)}


@app.get("/api/orders/current")
def get_current_order(table_code: Optional[str] = Query(None, alias="tableCode"), db: Session = Depends(get_db),
                      current_user: models.User = Depends(require_auth)):
    if not table_code:
        raise ValidationFailed("Missing tableCode")
    table = find_table(db, table_code, active_only=False)
    if not table:
        raise NotFound("Table not found")
    order = (
        db.query(models.Order)
        .filter(models.Order.table_id == table.id, models.Order.status.in_(models.ACTIVE_STATUSES))
        .order_by(models.Order.placed_at.desc())
        .first()
    )
    return {"order": order_to_dict(order, with_items=True) if order else None}


@app.get("/api/orders/history")
def get_order_history(db: Session = Depends(get_db), current_user: models.User = Depends(require_auth)):
    if current_user.role != "customer":
        raise Forbidden("Only customers can view history")
    orders = (
        db.query(models.Order)
        .filter(models.Order.customer_id == current_user.id)
        .order_by(models.Order.placed_at.desc())
        .limit(50)
        .all()
    )
    return {"orders": [order_to_dict(o) for o in orders]}


@app.get("/api/orders/{order_id}")
def get_order(order_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(require_auth)):
    order = db.query(models.Order).filter(models.Order.id == order_id).first()
    if not order:
        raise NotFound("Order not found")
    if current_user.role == "customer" and order.customer_id != current_user.id:
        raise Forbidden()
    return {"order": order_to_dict(order, with_items=True), "reviewed": order.review is not None}


@app.post("/api/orders/{order_id}/review")
def review_order(order_id: int, data: ReviewCreate, db: Session = Depends(get_db),
                 current_user: models.User = Depends(require_auth)):
    submit_review(db, order_id, current_user, data.rating, data.comment)
    return {"ok": True}


# ========== Staff ==========

@app.get("/api/staff/orders")
def get_staff_orders(status: Optional[str] = None, db: Session = Depends(get_db),
                     current_user: models.User = Depends(require_role(*STAFF_ROLES))):
    statuses = [s.strip() for s in status.split(",") if s.strip()] if status else [models.STATUS_PLACED]
    return {"orders": list_staff_orders(db, statuses)}


@app.post("/api/staff/orders/{order_id}/accept")
def staff_accept_order(order_id: int, data: OrderAccept, db: Session = Depends(get_db),
                       current_user: models.User = Depends(require_role(*FRONT_DESK_ROLES))):
    accept_order(db, order_id, data.eta_minutes, current_user)
    return {"ok": True}


@app.post("/api/staff/orders/{order_id}/status")
def staff_update_status(order_id: int, data: OrderStatusUpdate, db: Session = Depends(get_db),
                        current_user: models.User = Depends(require_role(*STAFF_ROLES))):
    change_order_status(db, order_id, data.status, current_user)
    return {"ok": True}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
