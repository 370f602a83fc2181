from __future__ import annotations
import logging

from extensions import db
from models import AuditLog

log = logging.getLogger(__name__)

def record_audit(user_id: int | None, action: str, entity: str, entity_id: int | None, payload: dict | None = None) -> AuditLog:
    # пишем в ту же сессию: запись попадёт в БД вместе с основной транзакцией
    entry = AuditLog(user_id=user_id, action=action, entity=entity, entity_id=entity_id, payload=payload or {})
    db.session.add(entry)
    log.info("audit %s %s#%s", action, entity, entity_id, extra={"event": "audit"})
    return entry
