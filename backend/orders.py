"""
Order placement and the staff-driven status lifecycle.

PLACED -> ACCEPTED -> PREPARING -> READY -> SERVED, with CANCELLED reachable from
any state before SERVED. Points earned at placement are credited to the customer
only on the first move to SERVED.
"""
import logging
import random
from datetime import timedelta
from typing import Dict, FrozenSet, List

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import models
from audit import create_order_event
from errors import Conflict, Forbidden, InternalFailure, NotFound, ValidationFailed
from loyalty import OrderLine, credit_points, get_badge_for_user, order_totals
from models import (
    STATUS_ACCEPTED,
    STATUS_CANCELLED,
    STATUS_PLACED,
    STATUS_PREPARING,
    STATUS_READY,
    STATUS_SERVED,
)
from schemas import OrderCreate
from timeutil import utcnow

logger = logging.getLogger(__name__)

# Targets reachable through the staff status endpoint; ACCEPTED only via accept_order.
STATUS_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    STATUS_PLACED: frozenset({STATUS_PREPARING, STATUS_CANCELLED}),
    STATUS_ACCEPTED: frozenset({STATUS_PREPARING, STATUS_READY, STATUS_SERVED, STATUS_CANCELLED}),
    STATUS_PREPARING: frozenset({STATUS_READY, STATUS_SERVED, STATUS_CANCELLED}),
    STATUS_READY: frozenset({STATUS_SERVED, STATUS_CANCELLED}),
    STATUS_SERVED: frozenset({STATUS_SERVED}),
    STATUS_CANCELLED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in STATUS_TRANSITIONS.get(current, frozenset())


def generate_order_code(db: Session) -> str:
    date_part = utcnow().strftime("%Y%m%d")
    while True:
        code = f"ORD-{date_part}-{random.randint(0, 9999):04d}"
        exists = db.query(models.Order).filter(models.Order.order_code == code).first()
        if not exists:
            return code


def order_to_dict(order: models.Order, with_items: bool = False) -> dict:
    data = {
        "id": order.id,
        "order_code": order.order_code,
        "location_id": order.location_id,
        "table_id": order.table_id,
        "customer_id": order.customer_id,
        "status": order.status,
        "placed_at": order.placed_at,
        "accepted_at": order.accepted_at,
        "eta_minutes": order.eta_minutes,
        "eta_at": order.eta_at,
        "served_at": order.served_at,
        "total_before_discount_tk": order.total_before_discount_tk,
        "discount_percent_applied": order.discount_percent_applied,
        "discount_amount_tk": order.discount_amount_tk,
        "total_after_discount_tk": order.total_after_discount_tk,
        "points_earned": order.points_earned,
        "notes": order.notes,
    }
    if with_items:
        data["items"] = [order_item_to_dict(item) for item in order.items]
    return data


def order_item_to_dict(item: models.OrderItem) -> dict:
    return {
        "id": item.id,
        "order_id": item.order_id,
        "product_id": item.product_id,
        "product_name_snapshot_en": item.product_name_snapshot_en,
        "product_name_snapshot_bn": item.product_name_snapshot_bn,
        "unit_price_snapshot_tk": item.unit_price_snapshot_tk,
        "qty": item.qty,
        "line_total_tk": item.line_total_tk,
    }


def place_order(db: Session, customer: models.User, payload: OrderCreate) -> models.Order:
    """Price the cart against live products and persist order, lines and event at once."""
    if customer.role != "customer":
        raise Forbidden("Only customers can place orders")

    table = (
        db.query(models.Table)
        .filter(models.Table.code == payload.table_code, models.Table.is_active.is_(True))
        .first()
    )
    if not table:
        raise NotFound("Table not found")

    product_ids = {item.product_id for item in payload.items}
    products = {
        p.id: p
        for p in db.query(models.Product)
        .filter(models.Product.id.in_(product_ids), models.Product.is_active.is_(True))
        .all()
    }
    missing = sorted(product_ids - set(products))
    if missing:
        raise ValidationFailed("Invalid product", {"productIds": missing})

    badge = get_badge_for_user(db, customer.id)
    lines = [OrderLine(products[item.product_id].price_tk, item.qty) for item in payload.items]
    totals = order_totals(lines, badge.discount_percent)

    try:
        order = models.Order(
            order_code=generate_order_code(db),
            location_id=table.location_id,
            table_id=table.id,
            customer_id=customer.id,
            status=STATUS_PLACED,
            placed_at=utcnow(),
            total_before_discount_tk=totals.subtotal,
            discount_percent_applied=badge.discount_percent,
            discount_amount_tk=totals.discount_amount,
            total_after_discount_tk=totals.total_after,
            points_earned=totals.total_after,
            notes=payload.notes,
        )
        for item in payload.items:
            product = products[item.product_id]
            order.items.append(models.OrderItem(
                product_id=product.id,
                product_name_snapshot_en=product.name_en,
                product_name_snapshot_bn=product.name_bn,
                unit_price_snapshot_tk=product.price_tk,
                qty=item.qty,
                line_total_tk=product.price_tk * item.qty,
            ))
        db.add(order)
        db.flush()
        create_order_event(db, order.id, STATUS_PLACED, customer.id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to persist order for customer %s", customer.id)
        raise InternalFailure("Unable to place order")

    db.refresh(order)
    logger.info("Order %s placed by customer %s: %s tk", order.order_code, customer.id, order.total_after_discount_tk)
    return order


def _get_order(db: Session, order_id: int) -> models.Order:
    order = db.query(models.Order).filter(models.Order.id == order_id).first()
    if not order:
        raise NotFound("Order not found")
    return order


def accept_order(db: Session, order_id: int, eta_minutes: int, actor: models.User) -> models.Order:
    order = _get_order(db, order_id)
    if order.status != STATUS_PLACED:
        raise ValidationFailed("Order cannot be accepted")

    now = utcnow()
    try:
        order.status = STATUS_ACCEPTED
        order.accepted_at = now
        order.eta_minutes = eta_minutes
        order.eta_at = now + timedelta(minutes=eta_minutes)
        create_order_event(db, order.id, STATUS_ACCEPTED, actor.id, {"etaMinutes": eta_minutes})
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to accept order %s", order_id)
        raise InternalFailure()

    logger.info("Order %s accepted by user %s, eta %s min", order.order_code, actor.id, eta_minutes)
    return order


def change_order_status(db: Session, order_id: int, status: str, actor: models.User) -> models.Order:
    order = _get_order(db, order_id)
    previous = order.status
    if not can_transition(previous, status):
        raise ValidationFailed(f"Order cannot be moved to {status}", {"from": previous, "to": status})

    now = utcnow()
    values = {models.Order.status: status}
    if status == STATUS_SERVED:
        values[models.Order.served_at] = now
    elif status == STATUS_PREPARING and order.accepted_at is None:
        values[models.Order.accepted_at] = now
    elif status == STATUS_READY and order.eta_at is None:
        values[models.Order.eta_at] = now

    try:
        flipped = 0
        if previous != STATUS_SERVED:
            # Only flips a row still in the status checked above.
            flipped = (
                db.query(models.Order)
                .filter(models.Order.id == order.id, models.Order.status == previous)
                .update(values, synchronize_session=False)
            )
            if not flipped:
                current = db.query(models.Order.status).filter(models.Order.id == order.id).scalar()
                if not (current == STATUS_SERVED and status == STATUS_SERVED):
                    db.rollback()
                    raise ValidationFailed(f"Order cannot be moved to {status}", {"from": current, "to": status})
        if flipped and status == STATUS_SERVED:
            credit_points(db, order.customer_id, order.points_earned)
        create_order_event(db, order.id, status, actor.id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to move order %s to %s", order_id, status)
        raise InternalFailure()

    db.refresh(order)
    logger.info("Order %s: %s -> %s by user %s", order.order_code, previous, status, actor.id)
    return order


def submit_review(db: Session, order_id: int, customer: models.User, rating: int, comment=None) -> models.Review:
    order = _get_order(db, order_id)
    if customer.role != "customer" or order.customer_id != customer.id:
        raise Forbidden()
    if order.status != STATUS_SERVED:
        raise ValidationFailed("Order not served yet")
    existing = db.query(models.Review).filter(models.Review.order_id == order.id).first()
    if existing:
        raise Conflict("Review already submitted")

    review = models.Review(
        order_id=order.id,
        customer_id=customer.id,
        rating_1_10=rating,
        comment=comment,
        created_at=utcnow(),
    )
    try:
        db.add(review)
        db.commit()
    except IntegrityError:
        db.rollback()
        # the unique order_id constraint catches a concurrent duplicate
        raise Conflict("Review already submitted")
    return review


def list_staff_orders(db: Session, statuses: List[str]) -> List[dict]:
    rows = (
        db.query(models.Order, models.Table.label)
        .join(models.Table, models.Table.id == models.Order.table_id)
        .filter(models.Order.status.in_(statuses))
        .order_by(models.Order.placed_at.asc())
        .all()
    )
    result = []
    for order, table_label in rows:
        data = order_to_dict(order, with_items=True)
        data["table_label"] = table_label
        result.append(data)
    return result
