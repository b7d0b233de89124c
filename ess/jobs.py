from datetime import date, datetime, timedelta

import holidays
import structlog
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from . import clock
from .attendance import auto_clock_out_at, close_forgotten_record, find_schedule
from .claims import expire_stale_claims
from .companies import CompanyProfile
from .config import settings
from .db import transactional
from .extra_shifts import expire_stale_extra_shifts
from .leave import init_year_balances
from .leave_requests import expire_stale_leave
from .notifications import notify
from .models import ClockInRecord, Company, Employee, PublicHoliday
from .overtime import expire_stale_overtime

logger = structlog.get_logger("ess.jobs")

EXPIRY_REASON = "Expired without decision"


@transactional
def expire_stale_requests(db: Session, *, now: datetime | None = None, days: int | None = None) -> dict:
    """Move requests left pending past the window to ``rejected``."""
    now = now or clock.utc_now_naive()
    days = int(days if days is not None else settings.STALE_REQUEST_DAYS)
    cutoff = now - timedelta(days=max(1, days))
    result = {
        "leave": expire_stale_leave(db, cutoff, EXPIRY_REASON),
        "claims": expire_stale_claims(db, cutoff, EXPIRY_REASON),
        "extra_shifts": expire_stale_extra_shifts(db, cutoff, EXPIRY_REASON),
        "overtime": expire_stale_overtime(db, cutoff, EXPIRY_REASON),
    }
    logger.info("stale_requests_expired", cutoff=cutoff.isoformat(), **result)
    return result


@transactional
def initialize_leave_year(db: Session, *, year: int, company_id: int | None = None) -> dict:
    stmt = select(Company)
    if company_id is not None:
        stmt = stmt.where(Company.id == company_id)
    created = {}
    for company in db.execute(stmt.order_by(Company.id.asc())).scalars().all():
        created[company.id] = init_year_balances(db, company.id, year, CompanyProfile.from_company(company))
    logger.info("leave_year_initialized", year=year, created=created)
    return created


@transactional
def seed_public_holidays(db: Session, *, year: int, country: str | None = None, company_id: int | None = None) -> int:
    """Load the national calendar for ``year``; rows without a company apply to every company."""
    country = (country or settings.HOLIDAY_COUNTRY).upper()
    calendar = holidays.country_holidays(country, years=year)
    existing = set(
        db.execute(
            select(PublicHoliday.holiday_date).where(
                PublicHoliday.holiday_date >= date(year, 1, 1),
                PublicHoliday.holiday_date <= date(year, 12, 31),
                or_(PublicHoliday.company_id.is_(None), PublicHoliday.company_id == company_id),
            )
        ).scalars().all()
    )
    inserted = 0
    for day, name in sorted(calendar.items()):
        if day in existing:
            continue
        db.add(PublicHoliday(company_id=company_id, holiday_date=day, name=name[:160]))
        inserted += 1
    logger.info("public_holidays_seeded", year=year, country=country, company_id=company_id, inserted=inserted)
    return inserted


@transactional
def auto_clock_out(db: Session, *, now: datetime | None = None) -> int:
    """Close records from earlier days that were never clocked out; each one is queued for HR review."""
    now = now or clock.now()
    records = db.execute(
        select(ClockInRecord)
        .where(
            ClockInRecord.work_date < now.date(),
            ClockInRecord.clock_in_1.is_not(None),
            ClockInRecord.clock_out_2.is_(None),
        )
        .order_by(ClockInRecord.work_date.asc(), ClockInRecord.id.asc())
        .with_for_update()
    ).scalars().all()
    closed = 0
    for record in records:
        schedule = find_schedule(db, record.employee_id, record.work_date)
        if auto_clock_out_at(record, schedule) > now:
            # night shift still inside its grace hour
            continue
        employee = db.get(Employee, record.employee_id)
        close_forgotten_record(record, employee, schedule)
        notify(
            db,
            employee.id,
            "auto_clock_out",
            "Auto Clock-Out",
            f"You were clocked out automatically for {record.work_date.isoformat()}. "
            f"Recorded hours: {record.total_work_minutes / 60:.2f}. HR will review the record.",
            related_kind="clock_in_record",
            related_id=record.id,
        )
        closed += 1
    logger.info("auto_clock_out_completed", cutoff=now.isoformat(), closed=closed, open_records=len(records))
    return closed
