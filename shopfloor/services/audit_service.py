from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from shopfloor.db.base import Base
from shopfloor.models.audit_models import AuditLog

LOGGER = logging.getLogger("shopfloor.audit")


def log_audit(db: Session, entity_type: str, entity_key: str, action: str, details: str | None = None) -> None:
    db.add(
        AuditLog(
            EntityType=entity_type,
            EntityKey=entity_key,
            Action=action,
            Details=details[:2000] if details else details,
            CreatedAt=datetime.now(),
        )
    )


def serialize_audit(row: AuditLog) -> dict:
    return {
        "auditID": row.AuditID,
        "entityType": row.EntityType,
        "entityKey": row.EntityKey,
        "action": row.Action,
        "details": row.Details,
        "createdAt": row.CreatedAt,
    }


def recent_audit(db: Session, limit: int = 50) -> list[dict]:
    rows = db.execute(select(AuditLog).order_by(AuditLog.AuditID.desc()).limit(limit)).scalars().all()
    return [serialize_audit(row) for row in rows]


class AuditTrail:
    """Writes one AuditLogs row per sync event; a failing write never blocks the sync."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def ensure_schema(self) -> None:
        db = self._session_factory()
        try:
            Base.metadata.create_all(bind=db.get_bind())
        finally:
            db.close()

    def record(self, entity_key: str, action: str, details: str | None = None) -> None:
        entity_type = entity_key.split(":", 1)[0] if ":" in entity_key else "state"
        db = self._session_factory()
        try:
            log_audit(db, entity_type, entity_key, action, details)
            db.commit()
        except Exception as exc:
            db.rollback()
            LOGGER.warning("Audit write failed for %s %s: %s", entity_key, action, exc)
        finally:
            db.close()
