# exam_engine/services/audit_service.py
from typing import Any, Optional

from sqlalchemy.orm import Session

from exam_engine.models.audit_log import AuditLog


def record_audit(
    db: Session,
    *,
    entity_type: str,
    entity_id: int,
    action: str,
    performed_by: str,
    previous_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """
    Stage an audit row in the caller's session; it is committed together with
    the change it describes.
    """
    entry = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        performed_by=str(performed_by),
        previous_values=previous_values,
        new_values=new_values,
    )
    db.add(entry)
    return entry


def list_audit_entries(db: Session, *, entity_type: str, entity_id: int) -> list[AuditLog]:
    return (
        db.query(AuditLog)
        .filter(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.id.asc())
        .all()
    )
