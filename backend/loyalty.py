"""
Loyalty points, badge tiers and order pricing.

Prices are integer taka; discounts round half up so a 10% discount on 55 is 6.
"""
from dataclasses import dataclass
from typing import Iterable, List, NamedTuple, Sequence

from sqlalchemy.orm import Session

import models


@dataclass(frozen=True)
class Badge:
    key: str
    display_name: str
    min_points: int
    discount_percent: int

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "displayName": self.display_name,
            "minPoints": self.min_points,
            "discountPercent": self.discount_percent,
        }


DEFAULT_BADGE = Badge(key="NEWBIE", display_name="Newbie", min_points=0, discount_percent=0)


class OrderLine(NamedTuple):
    unit_price: int
    qty: int


class OrderTotals(NamedTuple):
    subtotal: int
    discount_amount: int
    total_after: int


def badge_for_points(points: int, tiers: Iterable[Badge]) -> Badge:
    """Highest tier whose threshold the points reach, or the zero-discount default."""
    current = DEFAULT_BADGE
    for tier in sorted(tiers, key=lambda t: t.min_points):
        if tier.min_points > points:
            break
        current = tier
    return current


def discount_amount(subtotal: int, discount_percent: int) -> int:
    if discount_percent <= 0 or subtotal <= 0:
        return 0
    return (subtotal * discount_percent + 50) // 100


def order_totals(lines: Sequence[OrderLine], discount_percent: int) -> OrderTotals:
    subtotal = sum(line.unit_price * line.qty for line in lines)
    discount = discount_amount(subtotal, discount_percent)
    return OrderTotals(subtotal, discount, max(0, subtotal - discount))


def badge_from_row(row: models.BadgeLevel) -> Badge:
    return Badge(
        key=row.key,
        display_name=row.display_name_en,
        min_points=row.min_points,
        discount_percent=row.discount_percent,
    )


def load_badges(db: Session) -> List[Badge]:
    rows = db.query(models.BadgeLevel).order_by(models.BadgeLevel.min_points).all()
    return [badge_from_row(row) for row in rows]


def get_user_points(db: Session, user_id: int) -> int:
    row = db.query(models.LoyaltyPoints).filter(models.LoyaltyPoints.user_id == user_id).first()
    return row.points_total if row else 0


def get_badge_for_user(db: Session, user_id: int) -> Badge:
    return badge_for_points(get_user_points(db, user_id), load_badges(db))


def credit_points(db: Session, user_id: int, points: int) -> None:
    """Add points to the customer's running total. Caller commits."""
    row = db.query(models.LoyaltyPoints).filter(models.LoyaltyPoints.user_id == user_id).first()
    if row is None:
        db.add(models.LoyaltyPoints(user_id=user_id, points_total=points))
    else:
        db.query(models.LoyaltyPoints).filter(models.LoyaltyPoints.user_id == user_id).update(
            {models.LoyaltyPoints.points_total: models.LoyaltyPoints.points_total + points},
            synchronize_session=False,
        )


def build_user_profile(db: Session, user: models.User) -> dict:
    points = get_user_points(db, user.id)
    badge = badge_for_points(points, load_badges(db))
    return {
        "id": user.id,
        "role": user.role,
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "username": user.username or user.phone,
        "points": points,
        "badge": badge.to_dict(),
        "discountPercent": badge.discount_percent,
        "mustChangePassword": bool(user.must_change_password),
    }


def top_customers(db: Session, include_points: bool = False, limit: int = 100) -> List[dict]:
    rows = (
        db.query(models.User.name, models.LoyaltyPoints.points_total)
        .join(models.LoyaltyPoints, models.LoyaltyPoints.user_id == models.User.id)
        .filter(models.User.role == "customer")
        .order_by(models.LoyaltyPoints.points_total.desc())
        .limit(limit)
        .all()
    )
    leaderboard = []
    for rank, (name, points) in enumerate(rows, start=1):
        entry = {"rank": rank, "name": name}
        if include_points:
            entry["points"] = points
        leaderboard.append(entry)
    return leaderboard
