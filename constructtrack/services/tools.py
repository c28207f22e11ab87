"""
Tool checkout/checkin.

available <-> in_use, with damaged returns going to maintenance. Every move
appends a ToolTransaction in the same commit as the state change; the
transaction log is never updated or deleted.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..errors import ConflictError, ValidationError
from ..models.models import Site, Tool, ToolTransaction, User
from .audit import record_audit
from .notifications import notify_tool_incident, tenant_approvers
from .tenancy import load_scoped


logger = structlog.get_logger(__name__)

INCIDENT_STATUS = {"lost": "lost", "stolen": "stolen", "damaged": "maintenance"}


def _append_transaction(db: Session, tool: Tool, user: User, tx_type: str, site_id: Optional[uuid.UUID] = None,
                        condition: Optional[str] = None, notes: Optional[str] = None,
                        photo: Optional[str] = None) -> ToolTransaction:
    tx = ToolTransaction(
        tenant_id=tool.tenant_id,
        tool_id=tool.id,
        user_id=user.id,
        site_id=site_id,
        type=tx_type,
        condition=condition,
        notes=notes,
        photo=photo,
    )
    db.add(tx)
    db.flush()
    return tx


def checkout_tool(
    db: Session,
    user: User,
    tenant_id: uuid.UUID,
    tool_id: uuid.UUID,
    site_id: Optional[uuid.UUID] = None,
    condition: str = "good",
    notes: Optional[str] = None,
    photo: Optional[str] = None,
) -> ToolTransaction:
    tool = load_scoped(db, Tool, tool_id, tenant_id, "Tool")
    if site_id is not None:
        load_scoped(db, Site, site_id, tenant_id, "Site")
    if tool.status != "available":
        raise ConflictError("Tool is not available")

    # Compare-and-set: only one concurrent checkout can move the tool out of "available"
    result = db.execute(
        update(Tool)
        .where(Tool.id == tool.id, Tool.status == "available")
        .values(
            status="in_use",
            current_user_id=user.id,
            current_site_id=site_id,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ConflictError("Tool is not available")

    tx = _append_transaction(db, tool, user, "checkout", site_id, condition, notes, photo)
    record_audit(
        db,
        entity_type="tool",
        entity_id=tool.id,
        action="CHECKOUT",
        actor=user,
        tenant_id=tenant_id,
        changes_json={"before": {"status": "available"}, "after": {"status": "in_use"}},
        context={"transaction_id": str(tx.id), "site_id": str(site_id) if site_id else None},
    )
    db.commit()
    db.refresh(tx)
    logger.info("tool_checked_out", tool_id=str(tool.id), user_id=str(user.id))
    return tx


def checkin_tool(
    db: Session,
    user: User,
    tenant_id: uuid.UUID,
    tool_id: uuid.UUID,
    condition: str = "good",
    notes: Optional[str] = None,
    photo: Optional[str] = None,
) -> ToolTransaction:
    tool = load_scoped(db, Tool, tool_id, tenant_id, "Tool")
    if tool.status != "in_use":
        raise ConflictError("Tool is not checked out")

    new_status = "maintenance" if condition == "damaged" else "available"
    site_id = tool.current_site_id
    result = db.execute(
        update(Tool)
        .where(Tool.id == tool.id, Tool.status == "in_use")
        .values(
            status=new_status,
            current_user_id=None,
            current_site_id=None,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ConflictError("Tool is not checked out")

    tx = _append_transaction(db, tool, user, "checkin", site_id, condition, notes, photo)
    record_audit(
        db,
        entity_type="tool",
        entity_id=tool.id,
        action="CHECKIN",
        actor=user,
        tenant_id=tenant_id,
        changes_json={"before": {"status": "in_use"}, "after": {"status": new_status}},
        context={"transaction_id": str(tx.id), "condition": condition},
    )
    db.commit()
    db.refresh(tx)
    logger.info("tool_checked_in", tool_id=str(tool.id), user_id=str(user.id), status=new_status)
    return tx


def report_incident(
    db: Session,
    user: User,
    tenant_id: uuid.UUID,
    tool_id: uuid.UUID,
    incident: str,
    notes: Optional[str] = None,
    photo: Optional[str] = None,
) -> ToolTransaction:
    """Record a lost, stolen or damaged tool and notify the tenant's approvers."""
    if incident not in INCIDENT_STATUS:
        raise ValidationError("Incident must be lost, stolen or damaged")
    tool = load_scoped(db, Tool, tool_id, tenant_id, "Tool")
    if tool.status in ("lost", "stolen"):
        raise ConflictError(f"Tool is already {tool.status}")

    before = tool.status
    new_status = INCIDENT_STATUS[incident]
    site_id = tool.current_site_id
    result = db.execute(
        update(Tool)
        .where(Tool.id == tool.id, Tool.status == before)
        .values(
            status=new_status,
            current_user_id=None,
            current_site_id=None,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ConflictError("Tool status changed, reload and retry")
    tx = _append_transaction(
        db, tool, user, incident, site_id,
        condition="damaged" if incident == "damaged" else None, notes=notes, photo=photo,
    )
    record_audit(
        db,
        entity_type="tool",
        entity_id=tool.id,
        action=f"REPORT_{incident.upper()}",
        actor=user,
        tenant_id=tenant_id,
        changes_json={"before": {"status": before}, "after": {"status": new_status}},
        context={"transaction_id": str(tx.id)},
    )
    notify_tool_incident(db, tool, incident, tenant_approvers(db, tenant_id))
    db.commit()
    db.refresh(tx)
    logger.warning("tool_incident_reported", tool_id=str(tool.id), incident=incident)
    return tx
