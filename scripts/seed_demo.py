"""
Seed a demo company with people, a site, tools and a week of approved shifts.

Usage:
    python scripts/seed_demo.py [--password PASSWORD] [--superadmin-email EMAIL]
"""
import sys
import os
import argparse
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from constructtrack.config import settings
from constructtrack.db import Base, SessionLocal, engine
from constructtrack.auth.security import get_password_hash
from constructtrack.models.models import (
    ChatParticipant,
    ChatRoom,
    Client,
    Site,
    SiteAssignment,
    Tenant,
    TimeRecord,
    Tool,
    User,
)
from constructtrack.services.time_rules import compute_worked_hours


DEMO_TENANT = "Demo Construcciones"

PEOPLE = [
    ("admin", "admin@demo-construcciones.es", "Lucia", "Prieto", None),
    ("manager", "encargado@demo-construcciones.es", "Javier", "Navarro", None),
    ("employee", "pedro@demo-construcciones.es", "Pedro", "Ruiz", Decimal("18.50")),
    ("employee", "marta@demo-construcciones.es", "Marta", "Gil", Decimal("19.00")),
    ("employee", "ion@demo-construcciones.es", "Ion", "Popescu", Decimal("17.25")),
    ("client", "obra@promotora-sol.es", "Elena", "Sol", None),
]

TOOLS = [
    ("Hilti TE 30 hammer drill", "drills", "DEMO-TOOL-001"),
    ("Bosch GLL 3-80 laser level", "survey", "DEMO-TOOL-002"),
    ("Makita DGA504 grinder", "cutting", "DEMO-TOOL-003"),
]


def _user(db, tenant, role, email, first_name, last_name, hourly_rate, password):
    user = db.query(User).filter(User.email == email).first()
    if user:
        print(f"[SKIP] {email} already exists")
        return user
    user = User(
        tenant_id=tenant.id if tenant is not None else None,
        email=email,
        password_hash=get_password_hash(password),
        first_name=first_name,
        last_name=last_name,
        role=role,
        hourly_rate=hourly_rate,
        vacation_days_balance=settings.default_vacation_days,
    )
    db.add(user)
    db.flush()
    print(f"[ADD] {role}: {email}")
    return user


def _week_of_shifts(db, tenant, site, workers):
    """Approved shifts for the last five weekdays; the first worker stays an hour late."""
    today = datetime.now(timezone.utc).replace(hour=7, minute=0, second=0, microsecond=0)
    day = today - timedelta(days=1)
    added = 0
    while added < 5:
        if day.weekday() < 5:
            for i, worker in enumerate(workers):
                check_in = day + timedelta(minutes=15 * i)
                check_out = check_in + timedelta(hours=9 if i == 0 else 8)
                total, overtime = compute_worked_hours(check_in, check_out)
                db.add(TimeRecord(
                    tenant_id=tenant.id,
                    user_id=worker.id,
                    site_id=site.id,
                    check_in_time=check_in,
                    check_out_time=check_out,
                    check_in_latitude=site.latitude,
                    check_in_longitude=site.longitude,
                    total_hours=total,
                    overtime_hours=overtime,
                    status="approved",
                ))
            added += 1
        day -= timedelta(days=1)


def seed_demo(password: str, superadmin_email: str):
    """Create the demo tenant unless it already exists"""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        _user(db, None, "superadmin", superadmin_email, "Platform", "Admin", None, password)

        tenant = db.query(Tenant).filter(Tenant.name == DEMO_TENANT).first()
        if tenant:
            print(f"[SKIP] Tenant '{DEMO_TENANT}' already exists")
            db.commit()
            return
        tenant = Tenant(
            name=DEMO_TENANT,
            email="info@demo-construcciones.es",
            settings={"geofence_radius": settings.geo_radius_m_default},
        )
        db.add(tenant)
        db.flush()
        print(f"[ADD] tenant: {tenant.name}")

        users = {}
        for role, email, first_name, last_name, rate in PEOPLE:
            users.setdefault(role, []).append(
                _user(db, tenant, role, email, first_name, last_name, rate, password)
            )

        client = Client(
            tenant_id=tenant.id,
            name="Promotora Sol S.L.",
            tax_id="B12345678",
            email="obra@promotora-sol.es",
            contact_person="Elena Sol",
            user_id=users["client"][0].id,
        )
        db.add(client)
        db.flush()

        site = Site(
            tenant_id=tenant.id,
            client_id=client.id,
            name="Residencial Las Acacias",
            address="Calle de Alcala 120, Madrid",
            latitude=40.4237,
            longitude=-3.6746,
            geofence_radius=settings.geo_radius_m_default,
            billing_type="hourly",
            hourly_rate=Decimal("32.00"),
        )
        db.add(site)
        db.flush()
        room = ChatRoom(tenant_id=tenant.id, site_id=site.id, name=site.name, type="site")
        db.add(room)
        db.flush()
        print(f"[ADD] site: {site.name}")

        workers = users["employee"]
        for worker in workers + users["manager"]:
            role = "supervisor" if worker.role == "manager" else "worker"
            db.add(SiteAssignment(site_id=site.id, user_id=worker.id, role=role))
            db.add(ChatParticipant(room_id=room.id, user_id=worker.id))

        for name, category, qr_code in TOOLS:
            db.add(Tool(tenant_id=tenant.id, name=name, category=category, qr_code=qr_code, status="available"))

        _week_of_shifts(db, tenant, site, workers)
        db.commit()
        print("[OK] Demo data created")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed a demo tenant")
    parser.add_argument("--password", default="Demo2024!", help="Password for every seeded user")
    parser.add_argument("--superadmin-email", default="root@constructtrack.io")
    args = parser.parse_args()
    seed_demo(args.password, args.superadmin_email)
