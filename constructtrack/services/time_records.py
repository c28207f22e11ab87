"""
Time record state machine.

no active record -> checked in (pending) -> approved | rejected | contested

Every transition stages an audit entry and commits once, so the state change
and its audit trail land together.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ConflictError, ForbiddenError, ValidationError
from ..models.models import Client, Contestation, Site, TimeRecord, User
from .audit import record_audit
from .geofence import check_geofence, outside_reason
from .notifications import notify_contestation, notify_time_record_decision, tenant_approvers
from .tenancy import load_scoped
from .time_rules import compute_worked_hours


logger = structlog.get_logger(__name__)

DECIDABLE_STATUSES = ("pending", "contested")


def get_active_record(db: Session, user_id: uuid.UUID) -> Optional[TimeRecord]:
    return (
        db.query(TimeRecord)
        .filter(TimeRecord.user_id == user_id, TimeRecord.check_out_time.is_(None))
        .first()
    )


def check_in(
    db: Session,
    user: User,
    tenant_id: uuid.UUID,
    site_id: uuid.UUID,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    photo: Optional[str] = None,
    device_id: Optional[str] = None,
) -> TimeRecord:
    site = load_scoped(db, Site, site_id, tenant_id, "Site")

    if get_active_record(db, user.id) is not None:
        raise ConflictError("Already checked in")

    inside, distance = check_geofence(latitude, longitude, site.latitude, site.longitude, site.geofence_radius)
    record = TimeRecord(
        tenant_id=tenant_id,
        user_id=user.id,
        site_id=site.id,
        check_in_time=datetime.now(timezone.utc),
        check_in_latitude=latitude,
        check_in_longitude=longitude,
        check_in_photo=photo,
        check_in_device_id=device_id,
        status="pending",
        is_within_geofence=inside,
        is_suspicious=not inside,
        suspicious_reason=None if inside else outside_reason("Check-in", distance),
    )
    db.add(record)
    try:
        db.flush()
    except IntegrityError:
        # Lost the race against a concurrent check-in; the partial unique index held
        db.rollback()
        raise ConflictError("Already checked in")

    record_audit(
        db,
        entity_type="time_record",
        entity_id=record.id,
        action="CHECK_IN",
        actor=user,
        tenant_id=tenant_id,
        changes_json={"after": {"status": "pending"}},
        context={"site_id": str(site.id), "is_within_geofence": inside, "distance_m": distance},
    )
    db.commit()
    db.refresh(record)
    logger.info(
        "time_record_checked_in",
        time_record_id=str(record.id),
        user_id=str(user.id),
        site_id=str(site.id),
        suspicious=record.is_suspicious,
    )
    return record


def check_out(
    db: Session,
    user: User,
    tenant_id: uuid.UUID,
    record_id: uuid.UUID,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    photo: Optional[str] = None,
    device_id: Optional[str] = None,
) -> TimeRecord:
    record = load_scoped(db, TimeRecord, record_id, tenant_id, "Time record")
    if record.user_id != user.id:
        raise ForbiddenError("Cannot check out another user's record")
    if record.check_out_time is not None:
        raise ConflictError("Already checked out")

    now = datetime.now(timezone.utc)
    total, overtime = compute_worked_hours(record.check_in_time, now)

    values = {
        "check_out_time": now,
        "check_out_latitude": latitude,
        "check_out_longitude": longitude,
        "check_out_photo": photo,
        "check_out_device_id": device_id,
        "total_hours": total,
        "overtime_hours": overtime,
    }
    site = db.get(Site, record.site_id)
    inside, distance = check_geofence(
        latitude, longitude,
        site.latitude if site else None, site.longitude if site else None,
        site.geofence_radius if site else None,
    )
    if not inside:
        reason = outside_reason("Check-out", distance)
        values["is_suspicious"] = True
        values["suspicious_reason"] = f"{record.suspicious_reason}; {reason}" if record.suspicious_reason else reason

    # Conditional on the record still being open
    result = db.execute(
        update(TimeRecord)
        .where(TimeRecord.id == record.id, TimeRecord.check_out_time.is_(None))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ConflictError("Already checked out")

    record_audit(
        db,
        entity_type="time_record",
        entity_id=record.id,
        action="CHECK_OUT",
        actor=user,
        tenant_id=tenant_id,
        changes_json={"after": {"total_hours": str(total), "overtime_hours": str(overtime)}},
        context={"is_within_geofence": inside, "distance_m": distance},
    )
    db.commit()
    db.refresh(record)
    logger.info(
        "time_record_checked_out",
        time_record_id=str(record.id),
        user_id=str(user.id),
        total_hours=str(total),
        overtime_hours=str(overtime),
    )
    return record


def approve(db: Session, approver: User, tenant_id: uuid.UUID, record_id: uuid.UUID, note: Optional[str] = None) -> TimeRecord:
    record = load_scoped(db, TimeRecord, record_id, tenant_id, "Time record")
    if record.status not in DECIDABLE_STATUSES:
        raise ConflictError(f"Time record is {record.status}")

    before = record.status
    record.status = "approved"
    record.approved_at = datetime.now(timezone.utc)
    record.approved_by = approver.id

    record_audit(
        db,
        entity_type="time_record",
        entity_id=record.id,
        action="APPROVE",
        actor=approver,
        tenant_id=tenant_id,
        changes_json={"before": {"status": before}, "after": {"status": "approved"}},
        context={"note": note, "worker_id": str(record.user_id)},
    )
    notify_time_record_decision(db, record, "approved")
    db.commit()
    db.refresh(record)
    logger.info("time_record_approved", time_record_id=str(record.id), approver_id=str(approver.id))
    return record


def reject(db: Session, approver: User, tenant_id: uuid.UUID, record_id: uuid.UUID, reason: Optional[str]) -> TimeRecord:
    if not reason or not reason.strip():
        raise ValidationError("Rejection reason is required")
    record = load_scoped(db, TimeRecord, record_id, tenant_id, "Time record")
    if record.status not in DECIDABLE_STATUSES:
        raise ConflictError(f"Time record is {record.status}")

    before = record.status
    record.status = "rejected"
    record.rejected_at = datetime.now(timezone.utc)
    record.rejected_by = approver.id
    record.notes = reason.strip()

    record_audit(
        db,
        entity_type="time_record",
        entity_id=record.id,
        action="REJECT",
        actor=approver,
        tenant_id=tenant_id,
        changes_json={"before": {"status": before}, "after": {"status": "rejected"}},
        context={"rejection_reason": record.notes, "worker_id": str(record.user_id)},
    )
    notify_time_record_decision(db, record, "rejected", record.notes)
    db.commit()
    db.refresh(record)
    logger.info("time_record_rejected", time_record_id=str(record.id), approver_id=str(approver.id))
    return record


def client_owns_record(db: Session, client_user: User, record: TimeRecord) -> bool:
    """True if ``client_user`` is the portal login of the record's site client."""
    site = db.get(Site, record.site_id)
    if site is None:
        return False
    client = db.get(Client, site.client_id)
    return client is not None and client.user_id == client_user.id


def force_contested(record: TimeRecord) -> str:
    """
    Put a record into "contested" whatever its current status.

    A client contestation overrides any prior decision, approved and rejected
    included. Returns the previous status.
    """
    before = record.status
    record.status = "contested"
    return before


def contest(
    db: Session,
    client_user: User,
    tenant_id: uuid.UUID,
    record_id: uuid.UUID,
    reason: str,
    severity: str = "minor",
) -> Contestation:
    record = load_scoped(db, TimeRecord, record_id, tenant_id, "Time record")
    if not client_owns_record(db, client_user, record):
        raise ForbiddenError("Time record does not belong to your sites")

    contestation = Contestation(
        tenant_id=tenant_id,
        time_record_id=record.id,
        client_id=client_user.id,
        reason=reason,
        severity=severity,
        status="pending",
    )
    db.add(contestation)
    before = force_contested(record)
    db.flush()

    record_audit(
        db,
        entity_type="time_record",
        entity_id=record.id,
        action="CONTEST",
        actor=client_user,
        tenant_id=tenant_id,
        changes_json={"before": {"status": before}, "after": {"status": "contested"}},
        context={"contestation_id": str(contestation.id), "severity": severity},
    )
    notify_contestation(db, contestation, tenant_approvers(db, tenant_id))
    db.commit()
    db.refresh(contestation)
    logger.info(
        "time_record_contested",
        time_record_id=str(record.id),
        contestation_id=str(contestation.id),
        previous_status=before,
    )
    return contestation


def client_validate(db: Session, client_user: User, tenant_id: uuid.UUID, record_id: uuid.UUID) -> TimeRecord:
    """Set the client-validated flag; leaves the approval status alone."""
    record = load_scoped(db, TimeRecord, record_id, tenant_id, "Time record")
    if not client_owns_record(db, client_user, record):
        raise ForbiddenError("Time record does not belong to your sites")
    if record.client_validated:
        return record

    record.client_validated = True
    record.client_validated_at = datetime.now(timezone.utc)
    record_audit(
        db,
        entity_type="time_record",
        entity_id=record.id,
        action="CLIENT_VALIDATE",
        actor=client_user,
        tenant_id=tenant_id,
        changes_json={"before": {"client_validated": False}, "after": {"client_validated": True}},
    )
    db.commit()
    db.refresh(record)
    return record


def resolve_contestation(
    db: Session,
    approver: User,
    tenant_id: uuid.UUID,
    contestation_id: uuid.UUID,
    status: str,
    resolution: Optional[str] = None,
) -> Contestation:
    contestation = load_scoped(db, Contestation, contestation_id, tenant_id, "Contestation")
    if contestation.status != "pending":
        raise ConflictError(f"Contestation is {contestation.status}")
    if status not in ("resolved", "rejected"):
        raise ValidationError("Status must be resolved or rejected")

    contestation.status = status
    contestation.resolution = resolution
    contestation.resolved_by = approver.id
    contestation.resolved_at = datetime.now(timezone.utc)
    record_audit(
        db,
        entity_type="contestation",
        entity_id=contestation.id,
        action="RESOLVE",
        actor=approver,
        tenant_id=tenant_id,
        changes_json={"before": {"status": "pending"}, "after": {"status": status}},
        context={"time_record_id": str(contestation.time_record_id)},
    )
    db.commit()
    db.refresh(contestation)
    return contestation
