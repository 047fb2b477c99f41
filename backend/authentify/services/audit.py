import logging

from sqlalchemy.orm import Session
from authentify.models.audit_log import AuditLog
from authentify.services.users import as_uuid

logger = logging.getLogger("authentify.audit")

def audit(db: Session, actor_user_id, entity_type: str, entity_id: str, action: str, data: dict | None = None):
    row = AuditLog(
        actor_user_id=as_uuid(actor_user_id) if actor_user_id is not None else None,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        data=data or {},
    )
    db.add(row)
    logger.info("audit %s %s:%s", action, entity_type, entity_id)
