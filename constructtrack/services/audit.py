"""
Audit logging service.
Append-only audit log with integrity hashing.
"""
import hashlib
import json
from datetime import datetime, timezone
from typing import Optional, Dict
import uuid

from sqlalchemy.orm import Session

from ..models.models import AuditLog, User
from ..config import settings


def compute_integrity_hash(canonical_data: Dict, secret: str) -> str:
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def record_audit(
    db: Session,
    entity_type: str,
    entity_id: uuid.UUID,
    action: str,
    actor: Optional[User] = None,
    tenant_id: Optional[uuid.UUID] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    source: str = "api",
) -> AuditLog:
    """
    Stage an append-only audit entry in the caller's transaction.

    The entry is added and flushed but not committed, so it lands or rolls
    back together with the state change it describes.

    Args:
        db: Database session
        entity_type: time_record|contestation|tool|leave_request|tenant|user|...
        entity_id: Entity ID
        action: CHECK_IN|CHECK_OUT|APPROVE|REJECT|CONTEST|CHECKOUT|CHECKIN|...
        actor: User who performed the action
        tenant_id: Effective tenant of the action
        changes_json: Before/after diff
        context: Additional context

    Returns:
        The staged AuditLog
    """
    timestamp_utc = datetime.now(timezone.utc)
    actor_id = actor.id if actor is not None else None
    actor_role = actor.role if actor is not None else "system"

    integrity_hash = compute_integrity_hash(
        {
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "action": action,
            "actor_id": str(actor_id) if actor_id else None,
            "actor_role": actor_role,
            "tenant_id": str(tenant_id) if tenant_id else None,
            "source": source,
            "timestamp_utc": timestamp_utc.isoformat(),
            "changes": changes_json,
            "context": context,
        },
        settings.jwt_secret,
    )

    audit_log = AuditLog(
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        source=source,
        changes_json=changes_json,
        context=context,
        timestamp_utc=timestamp_utc,
        integrity_hash=integrity_hash,
    )
    db.add(audit_log)
    db.flush()
    return audit_log


def get_audit_logs(
    db: Session,
    tenant_id: uuid.UUID,
    entity_type: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    limit: int = 100,
    offset: int = 0
) -> list:
    query = db.query(AuditLog).filter(AuditLog.tenant_id == tenant_id)

    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)

    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)

    query = query.order_by(AuditLog.timestamp_utc.desc())
    return query.limit(limit).offset(offset).all()
