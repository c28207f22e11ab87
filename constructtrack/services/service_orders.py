"""
Service order cost engine.

Aggregates time records per site over a closed local-date range and prices
them by the site's billing type. The aggregation itself (aggregate_service_orders)
is pure; load_and_calculate() only gathers the rows for one tenant.
"""
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Client, Site, TimeRecord, User
from .time_rules import as_utc, local_date, local_day_bounds


CENTS = Decimal("0.01")
ZERO = Decimal("0")
DAILY_HOURS = Decimal("8")


@dataclass(frozen=True)
class SiteRow:
    id: str
    name: str
    client_id: Optional[str]
    client_name: Optional[str]
    billing_type: Optional[str]
    rate: Any


@dataclass(frozen=True)
class RecordRow:
    site_id: str
    user_id: str
    worker_name: str
    check_in_time: datetime
    status: str
    total_hours: Any
    overtime_hours: Any


def safe_number(value: Any) -> Decimal:
    """
    Lenient numeric parse.

    Accepts numbers and strings with either '.' or ',' as the decimal mark.
    Missing, unparseable or non-finite values become 0.
    """
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    if isinstance(value, (int, float)):
        try:
            parsed = Decimal(str(value))
        except InvalidOperation:
            return ZERO
        return parsed if parsed.is_finite() else ZERO
    text = str(value).strip().replace(",", ".")
    if not text:
        return ZERO
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return ZERO
    return parsed if parsed.is_finite() else ZERO


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def price_site(billing_type: Optional[str], rate: Decimal, regular_hours: Decimal,
               overtime_hours: Decimal, work_days: int, multiplier: Decimal):
    """Return (regular_cost, overtime_cost) before rounding. Unknown billing types cost nothing."""
    if billing_type == "hourly":
        return regular_hours * rate, overtime_hours * rate * multiplier
    if billing_type == "daily":
        # rate is a per-day rate here
        return Decimal(work_days) * rate, overtime_hours * (rate / DAILY_HOURS) * multiplier
    if billing_type == "fixed":
        return rate, ZERO
    return ZERO, ZERO


def aggregate_service_orders(
    sites: Iterable[SiteRow],
    records: Iterable[RecordRow],
    start: date,
    end: date,
    timezone_str: Optional[str] = None,
    multiplier: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Build the service-order report.

    Args:
        sites: Candidate sites (already filtered by tenant/site/client)
        records: Time records of those sites; any not checked in within
            [start 00:00, end 23:59:59.999999] local time are ignored
        start: First local date of the period
        end: Last local date of the period (inclusive)
        timezone_str: Timezone for day bounds and work-day keys
        multiplier: Overtime multiplier (default from settings)

    Returns:
        {"orders": [...], "totals": {...}, "period": {...}, "overtime_multiplier": float}
    """
    tz = timezone_str or settings.tz_default
    mult = safe_number(settings.overtime_multiplier if multiplier is None else multiplier)
    start_utc, end_utc = local_day_bounds(start, end, tz)

    by_site: Dict[str, List[RecordRow]] = {}
    for rec in records:
        if start_utc <= as_utc(rec.check_in_time) <= end_utc:
            by_site.setdefault(rec.site_id, []).append(rec)

    orders = []
    for site in sites:
        site_records = by_site.get(site.id)
        if not site_records:
            continue

        approved = [r for r in site_records if r.status == "approved"]
        pending_count = sum(1 for r in site_records if r.status == "pending")

        total_hours = ZERO
        overtime_hours = ZERO
        workers: Dict[str, str] = {}
        work_days = set()
        for rec in approved:
            total_hours += safe_number(rec.total_hours)
            overtime_hours += safe_number(rec.overtime_hours)
            workers.setdefault(rec.user_id, rec.worker_name)
            work_days.add(local_date(rec.check_in_time, tz))

        regular_hours = max(ZERO, total_hours - overtime_hours)
        rate = safe_number(site.rate)
        regular_cost, overtime_cost = price_site(
            site.billing_type, rate, regular_hours, overtime_hours, len(work_days), mult
        )
        regular_cost = to_cents(regular_cost)
        overtime_cost = to_cents(overtime_cost)

        worker_ids = sorted(workers)
        orders.append({
            "site_id": site.id,
            "site_name": site.name,
            "client_id": site.client_id,
            "client_name": site.client_name or "Unknown",
            "billing_type": site.billing_type or "hourly",
            "hourly_rate": float(to_cents(rate)),
            "total_hours": to_cents(total_hours),
            "overtime_hours": to_cents(overtime_hours),
            "regular_hours": to_cents(regular_hours),
            "approved_records": len(approved),
            "pending_records": pending_count,
            "regular_cost": regular_cost,
            "overtime_cost": overtime_cost,
            "total_cost": regular_cost + overtime_cost,
            "workers": [workers[w] for w in worker_ids],
            "worker_ids": worker_ids,
            "work_days": len(work_days),
        })

    # Highest cost first; site id keeps equal costs in a stable order
    orders.sort(key=lambda o: (-o["total_cost"], o["site_id"]))

    totals = {
        "total_hours": sum((o["total_hours"] for o in orders), ZERO),
        "overtime_hours": sum((o["overtime_hours"] for o in orders), ZERO),
        "total_cost": sum((o["total_cost"] for o in orders), ZERO),
        "approved_records": sum(o["approved_records"] for o in orders),
        "pending_records": sum(o["pending_records"] for o in orders),
    }

    money_keys = ("total_hours", "overtime_hours", "regular_hours", "regular_cost", "overtime_cost", "total_cost")
    for order in orders:
        for key in money_keys:
            order[key] = float(order[key])
    for key in ("total_hours", "overtime_hours", "total_cost"):
        totals[key] = float(to_cents(totals[key]))

    return {
        "orders": orders,
        "totals": totals,
        "period": {"start_date": start.isoformat(), "end_date": end.isoformat()},
        "overtime_multiplier": float(mult),
    }


def load_and_calculate(
    db: Session,
    tenant_id: uuid.UUID,
    start: date,
    end: date,
    site_id: Optional[uuid.UUID] = None,
    client_id: Optional[uuid.UUID] = None,
    timezone_str: Optional[str] = None,
) -> Dict[str, Any]:
    """Gather one tenant's sites and in-range records, then aggregate."""
    tz = timezone_str or settings.tz_default
    site_query = (
        db.query(Site, Client)
        .outerjoin(Client, Client.id == Site.client_id)
        .filter(Site.tenant_id == tenant_id)
    )
    if site_id is not None:
        site_query = site_query.filter(Site.id == site_id)
    if client_id is not None:
        site_query = site_query.filter(Site.client_id == client_id)

    sites = []
    for site, client in site_query.all():
        sites.append(SiteRow(
            id=str(site.id),
            name=site.name,
            client_id=str(site.client_id) if site.client_id else None,
            client_name=client.name if client is not None else None,
            billing_type=site.billing_type,
            rate=site.hourly_rate,
        ))
    if not sites:
        return aggregate_service_orders([], [], start, end, tz)

    start_utc, end_utc = local_day_bounds(start, end, tz)
    site_ids = [uuid.UUID(s.id) for s in sites]
    rows = (
        db.query(TimeRecord, User)
        .join(User, User.id == TimeRecord.user_id)
        .filter(
            TimeRecord.tenant_id == tenant_id,
            TimeRecord.site_id.in_(site_ids),
            TimeRecord.check_in_time >= start_utc,
            TimeRecord.check_in_time <= end_utc,
        )
        .all()
    )
    records = [
        RecordRow(
            site_id=str(rec.site_id),
            user_id=str(rec.user_id),
            worker_name=user.full_name,
            check_in_time=rec.check_in_time,
            status=rec.status,
            total_hours=rec.total_hours,
            overtime_hours=rec.overtime_hours,
        )
        for rec, user in rows
    ]
    return aggregate_service_orders(sites, records, start, end, tz)
