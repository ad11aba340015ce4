import json

from sqlalchemy.orm import Session

import models
from database import DEFAULT_THEME


def get_setting(db: Session, key: str, default=None):
    row = db.query(models.Setting).filter(models.Setting.key == key).first()
    if not row or not row.value_json:
        return default
    return json.loads(row.value_json)


def put_setting(db: Session, key: str, value) -> None:
    """Upsert a JSON setting. Caller commits."""
    row = db.query(models.Setting).filter(models.Setting.key == key).first()
    if row is None:
        db.add(models.Setting(key=key, value_json=json.dumps(value)))
    else:
        row.value_json = json.dumps(value)


def get_theme(db: Session) -> str:
    value = get_setting(db, "theme", {}) or {}
    return value.get("theme") or DEFAULT_THEME


def set_theme(db: Session, theme: str) -> None:
    put_setting(db, "theme", {"theme": theme})
