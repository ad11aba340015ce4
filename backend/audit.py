"""
Append-only trail of admin mutations and order status changes.

Rows are only ever inserted. The caller owns the transaction, so an audit record is
committed together with the change it describes.
"""
import json
import logging

from sqlalchemy.orm import Session

import models
from timeutil import utcnow

logger = logging.getLogger(__name__)


def _dump(payload):
    if payload is None:
        return None
    return json.dumps(payload, default=str)


def insert_audit_log(db: Session, actor_user_id: int, action: str, entity_type: str, entity_id, payload=None):
    entry = models.AuditLog(
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        payload_json=_dump(payload),
        created_at=utcnow(),
    )
    db.add(entry)
    logger.debug("audit %s %s/%s by user %s", action, entity_type, entity_id, actor_user_id)
    return entry


def create_order_event(db: Session, order_id: int, event_type: str, user_id=None, payload=None):
    event = models.OrderEvent(
        order_id=order_id,
        event_type=event_type,
        by_user_id=user_id,
        payload_json=_dump(payload),
        created_at=utcnow(),
    )
    db.add(event)
    return event
