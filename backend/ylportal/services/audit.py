from sqlalchemy.orm import Session
from ylportal.models.audit_log import AuditLog


def log_event(
    s: Session,
    user_id: str | None,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    details: dict | None = None,
):
    # committed by the caller, together with the change it records
    row = AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
    )
    s.add(row)
    return row
