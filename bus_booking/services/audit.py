from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from bus_booking.models.models import AuditLog


def log_audit(
    db: AsyncSession,
    actor: Optional[str],
    action: str,
    object_type: Optional[str] = None,
    object_id=None,
    detail: dict = None,
) -> AuditLog:
    audit = AuditLog(
        actor=actor,
        action=action,
        object_type=object_type,
        object_id=str(object_id) if object_id is not None else None,
        detail=detail,
    )
    db.add(audit)
    # do not commit here; caller should include in transaction context
    return audit
