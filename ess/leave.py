import math
from datetime import date, timedelta

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import clock
from .clock import utc_now_naive
from .companies import CompanyProfile
from .config import settings
from .errors import ConflictError, InternalError, ValidationError
from .models import Employee, LeaveBalance, LeaveRequest, LeaveType, PublicHoliday

logger = structlog.get_logger("ess.leave")

DAYS_PER_YEAR = 365.25
ACTIVE_REQUEST_STATUSES = ("pending", "approved")
NOTICE_EMPLOYMENT_STATUSES = {"notice", "resigned_pending"}
HALF_DAY_VALUES = {"am", "pm"}


def service_years(join_date: date, on: date) -> float:
    return max(0, (on - join_date).days) / DAYS_PER_YEAR


def select_entitlement(leave_type: LeaveType, years: float) -> float:
    best_threshold = None
    best_days = None
    for rule in leave_type.entitlement_rules or []:
        threshold = float(rule.get("min_years", 0))
        if threshold <= years and (best_threshold is None or threshold > best_threshold):
            best_threshold = threshold
            best_days = float(rule["days"])
    if best_days is None:
        return float(leave_type.default_days_per_year or 0)
    return best_days


def completed_months(join_date: date, on: date) -> int:
    if join_date.year > on.year:
        return 0
    if join_date.year == on.year:
        return max(0, on.month - join_date.month)
    return on.month - 1


def round_days(value: float, mode: str) -> float:
    # 6 decimals absorbs float noise such as 14 * 3 / 12
    value = round(float(value), 6)
    if mode == "up":
        return float(math.ceil(value))
    if mode == "down":
        return float(math.floor(value))
    return math.floor(value * 2 + 0.5) / 2


def _num(value) -> float:
    return float(value or 0)


def available_days(balance: LeaveBalance) -> float:
    return _num(balance.entitled_days) + _num(balance.carried_forward) - _num(balance.used_days)


def balance_summary(
    balance: LeaveBalance,
    leave_type: LeaveType,
    employee: Employee,
    profile: CompanyProfile,
    on: date,
    *,
    pending_days: float = 0.0,
) -> dict:
    entitled = _num(balance.entitled_days)
    carried = _num(balance.carried_forward)
    used = _num(balance.used_days)
    months = completed_months(employee.join_date, on) if balance.year == on.year else 12
    ytd_earned = round_days(entitled * months / 12, profile.proration_rounding)
    return {
        "leave_type_id": leave_type.id,
        "code": leave_type.code,
        "name": leave_type.name,
        "is_paid": bool(leave_type.is_paid),
        "year": balance.year,
        "entitled_days": entitled,
        "carried_forward": carried,
        "used_days": used,
        "pending_days": float(pending_days),
        "available_days": entitled + carried - used - float(pending_days),
        "completed_months": months,
        "ytd_earned": ytd_earned,
        "advance_leave": entitled - ytd_earned,
        "earned_balance": ytd_earned + carried - used,
    }


def holidays_between(db: Session, company_id: int, start: date, end: date) -> set[date]:
    rows = db.execute(
        select(PublicHoliday.holiday_date).where(
            PublicHoliday.holiday_date >= start,
            PublicHoliday.holiday_date <= end,
            or_(PublicHoliday.company_id.is_(None), PublicHoliday.company_id == company_id),
        )
    ).scalars().all()
    return set(rows)


def count_leave_days(
    db: Session,
    profile: CompanyProfile,
    start: date,
    end: date,
    *,
    half_day: str | None = None,
    consecutive: bool = False,
) -> float:
    if end < start:
        raise ValidationError("End date must be after start date")
    if half_day is not None:
        if half_day not in HALF_DAY_VALUES:
            raise ValidationError("half_day must be 'am' or 'pm'")
        if start != end:
            raise ValidationError("Half-day leave must start and end on the same day")
    if consecutive:
        return float((end - start).days + 1)

    holidays = holidays_between(db, profile.company_id, start, end)
    days = 0
    current = start
    while current <= end:
        if profile.is_working_day(current) and current not in holidays:
            days += 1
        current += timedelta(days=1)
    if half_day is not None and days == 1:
        return 0.5
    return float(days)


def check_past_date(leave_type: LeaveType, start: date, on: date) -> None:
    if start >= on:
        return
    if not leave_type.requires_attachment:
        raise ValidationError("Cannot apply for leave on past dates")
    window = int(settings.MEDICAL_BACKDATE_DAYS)
    if (on - start).days > window:
        raise ValidationError(f"{leave_type.name} can only be backdated up to {window} days")


def check_last_working_day(employee: Employee, end: date) -> None:
    if employee.employment_status not in NOTICE_EMPLOYMENT_STATUSES or employee.last_working_day is None:
        return
    if end > employee.last_working_day:
        raise ValidationError(
            f"Leave cannot extend beyond your last working day ({employee.last_working_day.isoformat()})"
        )


def _year_bounds(year: int) -> tuple[date, date]:
    return date(year, 1, 1), date(year, 12, 31)


def count_occurrences(db: Session, employee_id: int, leave_type_id: int, year: int) -> int:
    first, last = _year_bounds(year)
    return int(
        db.execute(
            select(func.count(LeaveRequest.id)).where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.leave_type_id == leave_type_id,
                LeaveRequest.status.in_(ACTIVE_REQUEST_STATUSES),
                LeaveRequest.start_date >= first,
                LeaveRequest.start_date <= last,
            )
        ).scalar_one()
    )


def pending_days(db: Session, employee_id: int, leave_type_id: int, year: int) -> float:
    first, last = _year_bounds(year)
    total = db.execute(
        select(func.coalesce(func.sum(LeaveRequest.total_days), 0)).where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.leave_type_id == leave_type_id,
            LeaveRequest.status == "pending",
            LeaveRequest.start_date >= first,
            LeaveRequest.start_date <= last,
        )
    ).scalar_one()
    return float(total or 0)


def check_eligibility(
    db: Session,
    employee: Employee,
    leave_type: LeaveType,
    *,
    start: date,
    attachment_url: str | None,
    on: date,
) -> None:
    restriction = (leave_type.gender_restriction or "").strip().lower()
    if restriction and (employee.gender or "").strip().lower() != restriction:
        raise ValidationError(f"This leave type is only available for {restriction} employees")

    if leave_type.min_service_days:
        service_days = (on - employee.join_date).days
        if service_days < int(leave_type.min_service_days):
            raise ValidationError(f"Minimum {leave_type.min_service_days} days of service required")

    if leave_type.max_occurrences:
        used = count_occurrences(db, employee.id, leave_type.id, start.year)
        if used >= int(leave_type.max_occurrences):
            raise ValidationError(f"Maximum {leave_type.max_occurrences} occurrences already used")

    if leave_type.requires_attachment and not (attachment_url or "").strip():
        raise ValidationError(f"{leave_type.name} requires a supporting document")


def check_overlap(db: Session, employee_id: int, start: date, end: date) -> None:
    conflict = db.execute(
        select(LeaveRequest.id).where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status.in_(ACTIVE_REQUEST_STATUSES),
            LeaveRequest.start_date <= end,
            LeaveRequest.end_date >= start,
        )
    ).first()
    if conflict is not None:
        raise ConflictError("You already have a leave request for these dates")


def _get_balance(db: Session, employee_id: int, leave_type_id: int, year: int) -> LeaveBalance | None:
    return db.execute(
        select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type_id == leave_type_id,
            LeaveBalance.year == year,
        )
    ).scalar_one_or_none()


def carry_forward_for(
    db: Session,
    employee: Employee,
    leave_type: LeaveType,
    year: int,
    profile: CompanyProfile,
) -> float:
    if not leave_type.carries_forward:
        return 0.0
    previous = _get_balance(db, employee.id, leave_type.id, year - 1)
    if previous is None:
        return 0.0
    cap = leave_type.max_carry_forward
    if cap is None:
        cap = profile.max_carry_forward
    return min(max(0.0, available_days(previous)), float(cap))


def _entitlement_reference_day(year: int, on: date) -> date:
    if year == on.year:
        return on
    first, last = _year_bounds(year)
    return first if year > on.year else last


def ensure_balance(
    db: Session,
    employee: Employee,
    leave_type: LeaveType,
    year: int,
    profile: CompanyProfile,
    *,
    on: date | None = None,
) -> LeaveBalance:
    """Return the balance row for (employee, type, year), creating it on first use."""
    row = _get_balance(db, employee.id, leave_type.id, year)
    if row is not None:
        return row

    on = on or clock.today()
    entitled = select_entitlement(leave_type, service_years(employee.join_date, _entitlement_reference_day(year, on)))
    carried = carry_forward_for(db, employee, leave_type, year, profile)
    now = utc_now_naive()
    row = LeaveBalance(
        employee_id=employee.id,
        leave_type_id=leave_type.id,
        year=year,
        entitled_days=entitled,
        carried_forward=carried,
        used_days=0,
        created_at=now,
        updated_at=now,
    )
    try:
        with db.begin_nested():
            db.add(row)
    except IntegrityError:
        # another transaction created it first
        row = _get_balance(db, employee.id, leave_type.id, year)
        if row is None:
            raise InternalError("Leave balance could not be initialized")
        return row
    logger.info(
        "leave_balance_initialized",
        employee_id=employee.id,
        leave_type=leave_type.code,
        year=year,
        entitled_days=entitled,
        carried_forward=carried,
    )
    return row


def require_balance(
    db: Session,
    employee: Employee,
    leave_type: LeaveType,
    year: int,
    profile: CompanyProfile,
) -> LeaveBalance | None:
    """Balance for a paid type (always present after init), ``None`` for unpaid types."""
    if not leave_type.is_paid:
        return None
    balance = ensure_balance(db, employee, leave_type, year, profile)
    if balance is None:
        raise InternalError(f"No {leave_type.code} balance for employee {employee.id} in {year}")
    return balance


def debit_balance(balance: LeaveBalance, days: float) -> None:
    available = available_days(balance)
    if float(days) > available + 1e-9:
        raise ConflictError(f"Insufficient leave balance. Available: {available:g} days, Requested: {float(days):g} days")
    balance.used_days = _num(balance.used_days) + float(days)
    balance.updated_at = utc_now_naive()


def credit_balance(balance: LeaveBalance, days: float) -> None:
    balance.used_days = max(0.0, _num(balance.used_days) - float(days))
    balance.updated_at = utc_now_naive()


def applicable_leave_types(db: Session, employee: Employee) -> list[LeaveType]:
    rows = db.execute(
        select(LeaveType)
        .where(
            LeaveType.is_active.is_(True),
            or_(LeaveType.company_id.is_(None), LeaveType.company_id == employee.company_id),
        )
        .order_by(LeaveType.code.asc(), LeaveType.id.asc())
    ).scalars().all()
    gender = (employee.gender or "").strip().lower()
    return [
        row
        for row in rows
        if not row.gender_restriction or row.gender_restriction.strip().lower() == gender
    ]


def init_year_balances(db: Session, company_id: int, year: int, profile: CompanyProfile) -> int:
    employees = db.execute(
        select(Employee).where(Employee.company_id == company_id, Employee.status == "active")
    ).scalars().all()
    created = 0
    for employee in employees:
        for leave_type in applicable_leave_types(db, employee):
            if not leave_type.is_paid:
                continue
            if _get_balance(db, employee.id, leave_type.id, year) is None:
                ensure_balance(db, employee, leave_type, year, profile)
                created += 1
    return created
