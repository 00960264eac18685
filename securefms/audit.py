import logging

from sqlalchemy.orm import Session, joinedload

from securefms.models import AuditLog

logger = logging.getLogger(__name__)


def record(db: Session, action: str, user_id=None) -> AuditLog:
    """Stage an audit row; committed together with the caller's transaction."""
    entry = AuditLog(action=action, user_id=user_id)
    db.add(entry)
    logger.info("audit user=%s action=%s", user_id, action)
    return entry


def recent(db: Session, limit: int = 500):
    logs = (
        db.query(AuditLog)
        .options(joinedload(AuditLog.user))
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "timestamp": entry.timestamp,
            "user": entry.user.email if entry.user else "(deleted user)",
            "action": entry.action,
        }
        for entry in logs
    ]
