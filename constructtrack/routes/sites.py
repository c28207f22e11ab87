import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_tenant_context, require_permission
from ..errors import ConflictError, ValidationError
from ..models.models import ChatParticipant, ChatRoom, Client, Site, SiteAssignment, User
from ..schemas.sites import (
    ClientCreate,
    ClientResponse,
    SiteCreate,
    SiteUpdate,
    SiteResponse,
    AssignmentCreate,
    AssignmentResponse,
)
from ..services.audit import record_audit
from ..services.permissions import Capability, UserRole, parse_role
from ..services.tenancy import RequestContext, load_scoped


router = APIRouter(tags=["sites"])


# =====================
# Clients
# =====================


@router.get("/clients", response_model=List[ClientResponse])
def list_clients(db: Session = Depends(get_db), ctx: RequestContext = Depends(get_tenant_context)):
    query = db.query(Client).filter(Client.tenant_id == ctx.tenant_id)
    if parse_role(ctx.user.role) == UserRole.client:
        query = query.filter(Client.user_id == ctx.user.id)
    return query.order_by(Client.name).all()


@router.post("/clients", response_model=ClientResponse, status_code=201)
def create_client(
    payload: ClientCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.MANAGE_CLIENTS)),
):
    if payload.user_id is not None:
        portal_user = load_scoped(db, User, payload.user_id, ctx.tenant_id, "User")
        if parse_role(portal_user.role) != UserRole.client:
            raise ValidationError("Portal login must have the client role")
    client = Client(tenant_id=ctx.tenant_id, **payload.model_dump())
    db.add(client)
    db.flush()
    record_audit(db, "client", client.id, "CREATE", actor=ctx.user, tenant_id=ctx.tenant_id)
    db.commit()
    db.refresh(client)
    return client


# =====================
# Sites
# =====================


@router.get("/sites", response_model=List[SiteResponse])
def list_sites(
    status: Optional[str] = Query(default=None),
    client_id: Optional[uuid.UUID] = Query(default=None),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_tenant_context),
):
    query = db.query(Site).filter(Site.tenant_id == ctx.tenant_id)
    if status:
        query = query.filter(Site.status == status)
    if client_id is not None:
        query = query.filter(Site.client_id == client_id)
    if parse_role(ctx.user.role) == UserRole.client:
        query = query.join(Client, Client.id == Site.client_id).filter(Client.user_id == ctx.user.id)
    return query.order_by(Site.name).all()


@router.get("/sites/{site_id}", response_model=SiteResponse)
def get_site(site_id: uuid.UUID, db: Session = Depends(get_db), ctx: RequestContext = Depends(get_tenant_context)):
    return load_scoped(db, Site, site_id, ctx.tenant_id, "Site")


@router.post("/sites", response_model=SiteResponse, status_code=201)
def create_site(
    payload: SiteCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.MANAGE_SITES)),
):
    load_scoped(db, Client, payload.client_id, ctx.tenant_id, "Client")
    data = payload.model_dump()
    data["billing_type"] = payload.billing_type.value
    site = Site(tenant_id=ctx.tenant_id, **data)
    db.add(site)
    db.flush()
    # Every site gets its chat room
    db.add(ChatRoom(tenant_id=ctx.tenant_id, site_id=site.id, name=site.name, type="site"))
    record_audit(db, "site", site.id, "CREATE", actor=ctx.user, tenant_id=ctx.tenant_id)
    db.commit()
    db.refresh(site)
    return site


@router.patch("/sites/{site_id}", response_model=SiteResponse)
def update_site(
    site_id: uuid.UUID,
    payload: SiteUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.MANAGE_SITES)),
):
    site = load_scoped(db, Site, site_id, ctx.tenant_id, "Site")
    data = payload.model_dump(mode="json", exclude_unset=True)
    for key, value in data.items():
        setattr(site, key, value)
    record_audit(db, "site", site.id, "UPDATE", actor=ctx.user, tenant_id=ctx.tenant_id,
                 changes_json={"after": data})
    db.commit()
    db.refresh(site)
    return site


# =====================
# Assignments
# =====================


@router.get("/sites/{site_id}/assignments", response_model=List[AssignmentResponse])
def list_assignments(
    site_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.VIEW_TEAM_TIMESHEETS)),
):
    load_scoped(db, Site, site_id, ctx.tenant_id, "Site")
    return db.query(SiteAssignment).filter(SiteAssignment.site_id == site_id).all()


@router.post("/sites/{site_id}/assignments", response_model=AssignmentResponse, status_code=201)
def assign_worker(
    site_id: uuid.UUID,
    payload: AssignmentCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.MANAGE_SITES)),
):
    site = load_scoped(db, Site, site_id, ctx.tenant_id, "Site")
    worker = load_scoped(db, User, payload.user_id, ctx.tenant_id, "User")
    existing = (
        db.query(SiteAssignment)
        .filter(SiteAssignment.site_id == site.id, SiteAssignment.user_id == worker.id)
        .first()
    )
    if existing is not None:
        raise ConflictError("User is already assigned to this site")

    assignment = SiteAssignment(site_id=site.id, user_id=worker.id, role=payload.role.value)
    db.add(assignment)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError("User is already assigned to this site")

    room = db.query(ChatRoom).filter(ChatRoom.site_id == site.id).first()
    if room is not None:
        joined = (
            db.query(ChatParticipant)
            .filter(ChatParticipant.room_id == room.id, ChatParticipant.user_id == worker.id)
            .first()
        )
        if joined is None:
            db.add(ChatParticipant(room_id=room.id, user_id=worker.id))
    record_audit(db, "site", site.id, "ASSIGN", actor=ctx.user, tenant_id=ctx.tenant_id,
                 context={"user_id": str(worker.id), "role": payload.role.value})
    db.commit()
    db.refresh(assignment)
    return assignment
