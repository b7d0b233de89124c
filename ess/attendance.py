from datetime import date, datetime, time, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import clock
from .clock import utc_now_naive
from .config import settings
from .db import transactional
from .errors import AuthorizationError, ConflictError, DependencyError, NotFoundError, ValidationError
from .geocoding import reverse_geocode
from .models import ClockInRecord, Employee, Schedule, ShiftTemplate
from .scope import Principal, load_principal_employee, resolve_scope

logger = structlog.get_logger("ess.attendance")

PUNCH_SLOTS = ("clock_in_1", "clock_out_1", "clock_in_2", "clock_out_2")
_PHOTO_COLUMNS = {
    "clock_in_1": "photo_in_1",
    "clock_out_1": "photo_out_1",
    "clock_in_2": "photo_in_2",
    "clock_out_2": "photo_out_2",
}
_LOCATION_COLUMNS = {
    "clock_in_1": "location_in_1",
    "clock_out_1": "location_out_1",
    "clock_in_2": "location_in_2",
    "clock_out_2": "location_out_2",
}
_ADDRESSED_SLOTS = {"clock_in_1": "address_in_1", "clock_out_2": "address_out_2"}
PART_TIME_MARKERS = {"part_time", "parttime", "part_timer"}
AUTO_CLOCK_OUT_GRACE = timedelta(hours=1)


def is_part_time(employee: Employee) -> bool:
    for value in (employee.work_type, employee.employment_type):
        normalized = (value or "").strip().lower().replace("-", "_").replace(" ", "_")
        if normalized in PART_TIME_MARKERS:
            return True
    return False


def next_action(record: ClockInRecord | None) -> str | None:
    if record is None or record.clock_in_1 is None:
        return "clock_in_1"
    if record.clock_out_2 is not None:
        return None
    if record.clock_out_1 is None:
        return "clock_out_1"
    if record.clock_in_2 is None:
        return "clock_in_2"
    return "clock_out_2"


def punch_status(record: ClockInRecord | None) -> str:
    if record is None or record.clock_in_1 is None:
        return "not_started"
    if record.clock_out_2 is not None:
        return "completed"
    if record.clock_out_1 is not None and record.clock_in_2 is None:
        return "on_break"
    return "working"


def _minutes_between(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds() // 60))


def work_minutes(record: ClockInRecord) -> tuple[int, int]:
    """Return (worked, break) minutes for the punches recorded so far."""
    worked = 0
    breaks = 0
    if record.clock_in_1 and record.clock_out_1:
        worked += _minutes_between(record.clock_in_1, record.clock_out_1)
    if record.clock_in_2 and record.clock_out_2:
        worked += _minutes_between(record.clock_in_2, record.clock_out_2)
    if record.clock_in_1 and record.clock_out_2 and not record.clock_out_1 and not record.clock_in_2:
        worked = _minutes_between(record.clock_in_1, record.clock_out_2)
    if record.clock_out_1 and record.clock_in_2:
        breaks = _minutes_between(record.clock_out_1, record.clock_in_2)
    return worked, breaks


def shift_span_minutes(start: time, end: time) -> int:
    start_dt = datetime.combine(date.min, start)
    end_dt = datetime.combine(date.min, end)
    if end_dt <= start_dt:
        end_dt += timedelta(days=1)
    return int((end_dt - start_dt).total_seconds() // 60)


def expected_work_minutes(schedule: Schedule | None) -> int | None:
    if schedule is None or schedule.status != "scheduled":
        return None
    if schedule.shift_start is None or schedule.shift_end is None:
        return None
    return max(0, shift_span_minutes(schedule.shift_start, schedule.shift_end) - int(schedule.break_duration or 0))


def compute_overtime(worked: int, expected: int | None, threshold: int, *, part_time: bool) -> tuple[int, bool]:
    if part_time:
        return 0, False
    baseline = expected if expected is not None else threshold
    ot_minutes = max(0, int(worked) - int(baseline))
    return ot_minutes, ot_minutes >= int(settings.OT_FLAG_MINUTES)


def within_schedule(schedule: Schedule | None, moment: datetime) -> bool:
    if schedule is None or schedule.status != "scheduled":
        return False
    if schedule.shift_start is None or schedule.shift_end is None:
        return False
    start = datetime.combine(schedule.schedule_date, schedule.shift_start)
    end = datetime.combine(schedule.schedule_date, schedule.shift_end)
    if end <= start:
        end += timedelta(days=1)
    return start <= moment <= end


def find_schedule(db: Session, employee_id: int, work_date: date) -> Schedule | None:
    return db.execute(
        select(Schedule).where(Schedule.employee_id == employee_id, Schedule.schedule_date == work_date)
    ).scalar_one_or_none()


def match_shift_template(db: Session, schedule: Schedule | None) -> ShiftTemplate | None:
    """Template of a schedule; ad-hoc rows are matched on (company, start, end) for display."""
    if schedule is None:
        return None
    if schedule.shift_template_id is not None:
        return db.get(ShiftTemplate, schedule.shift_template_id)
    if schedule.shift_start is None or schedule.shift_end is None:
        return None
    return db.execute(
        select(ShiftTemplate)
        .where(
            ShiftTemplate.company_id == schedule.company_id,
            ShiftTemplate.start_time == schedule.shift_start,
            ShiftTemplate.end_time == schedule.shift_end,
            ShiftTemplate.is_active.is_(True),
        )
        .order_by(ShiftTemplate.id.asc())
    ).scalars().first()


def _today_record(db: Session, employee_id: int, work_date: date) -> ClockInRecord | None:
    return db.execute(
        select(ClockInRecord)
        .where(ClockInRecord.employee_id == employee_id, ClockInRecord.work_date == work_date)
        .with_for_update()
    ).scalar_one_or_none()


def crosses_midnight(schedule: Schedule | None) -> bool:
    if schedule is None or schedule.status != "scheduled":
        return False
    if schedule.shift_start is None or schedule.shift_end is None:
        return False
    return schedule.shift_end <= schedule.shift_start


def auto_clock_out_at(record: ClockInRecord, schedule: Schedule | None) -> datetime:
    """Closing time for a record nobody clocked out of.

    Day shifts close at midnight; shifts that run past midnight close an hour after they end.
    """
    next_day = record.work_date + timedelta(days=1)
    if crosses_midnight(schedule):
        return datetime.combine(next_day, schedule.shift_end) + AUTO_CLOCK_OUT_GRACE
    return datetime.combine(next_day, time(0, 0))


def _overnight_record(db: Session, employee_id: int, moment: datetime) -> ClockInRecord | None:
    """Yesterday's open record when its night shift is still running at ``moment``."""
    record = _today_record(db, employee_id, moment.date() - timedelta(days=1))
    if record is None or record.clock_in_1 is None or record.clock_out_2 is not None:
        return None
    schedule = find_schedule(db, employee_id, record.work_date)
    if not crosses_midnight(schedule) or moment > auto_clock_out_at(record, schedule):
        return None
    return record


def close_forgotten_record(record: ClockInRecord, employee: Employee, schedule: Schedule | None) -> None:
    record.clock_out_2 = auto_clock_out_at(record, schedule)
    worked, breaks = work_minutes(record)
    cap = int(settings.OT_DEFAULT_THRESHOLD_MINUTES)
    if is_part_time(employee):
        expected = expected_work_minutes(schedule)
        if expected is not None:
            cap = expected
    record.total_work_minutes = min(worked, cap)
    record.break_minutes = breaks
    # no overtime is ever credited for hours nobody clocked out of
    record.ot_minutes = 0
    record.ot_flagged = False
    record.status = "completed"
    record.is_auto_clock_out = True
    record.auto_clock_out_reason = "forgot"
    record.needs_review = True
    record.updated_at = utc_now_naive()


def _check_order(action: str, record: ClockInRecord | None) -> None:
    if action == "clock_in_1":
        if record is not None and record.clock_in_1 is not None:
            raise ConflictError("You have already clocked in for today")
        return
    if record is None or record.clock_in_1 is None:
        if action == "clock_in_2":
            raise ValidationError("You must go on break first")
        raise ValidationError("You must clock in first")
    if action == "clock_out_1":
        if record.clock_out_1 is not None:
            raise ConflictError("You have already taken your break")
        if record.clock_out_2 is not None:
            raise ConflictError("You have already clocked out for the day")
    elif action == "clock_in_2":
        if record.clock_out_1 is None:
            raise ValidationError("You must go on break first")
        if record.clock_in_2 is not None:
            raise ConflictError("You have already returned from break")
    elif action == "clock_out_2":
        if record.clock_out_2 is not None:
            raise ConflictError("You have already clocked out for the day")
        if record.clock_out_1 is not None and record.clock_in_2 is None:
            raise ValidationError("You must return from break first")


def _format_location(latitude: float | None, longitude: float | None) -> str | None:
    if latitude is None or longitude is None:
        return None
    return f"{float(latitude):.6f},{float(longitude):.6f}"


def _lookup_address(latitude: float, longitude: float) -> str | None:
    try:
        return reverse_geocode(latitude, longitude)
    except DependencyError:
        # the punch stands without an address
        logger.warning("punch_address_unavailable")
        return None


def refresh_measures(record: ClockInRecord, employee: Employee, schedule: Schedule | None, threshold: int) -> None:
    worked, breaks = work_minutes(record)
    record.total_work_minutes = worked
    record.break_minutes = breaks
    if record.clock_out_2 is None:
        return
    ot_minutes, flagged = compute_overtime(
        worked,
        expected_work_minutes(schedule),
        threshold,
        part_time=is_part_time(employee),
    )
    record.ot_minutes = ot_minutes
    record.ot_flagged = flagged
    record.status = "completed"


@transactional
def punch(
    db: Session,
    principal: Principal,
    *,
    action: str,
    photo_url: str | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
) -> ClockInRecord:
    if action not in PUNCH_SLOTS:
        raise ValidationError(f"Invalid action. Must be one of: {', '.join(PUNCH_SLOTS)}")
    scope = resolve_scope(db, principal)
    employee = scope.employee
    if employee is None:
        raise ValidationError("Only employees can clock in")

    moment = clock.now().replace(microsecond=0)
    photo_url = (photo_url or "").strip()[:500] or None
    location = _format_location(latitude, longitude)
    if action == "clock_in_1":
        if not photo_url:
            raise ValidationError("Photo is required for clock-in")
        if location is None:
            raise ValidationError("GPS location is required for clock-in")
    address = None
    if action in _ADDRESSED_SLOTS and location is not None:
        # resolved before the record row is locked
        address = _lookup_address(latitude, longitude)

    work_date = moment.date()
    record = _today_record(db, employee.id, work_date)
    if record is None and action != "clock_in_1":
        record = _overnight_record(db, employee.id, moment)
        if record is not None:
            work_date = record.work_date
    _check_order(action, record)

    schedule = find_schedule(db, employee.id, work_date)
    if action == "clock_in_1":
        record = ClockInRecord(
            employee_id=employee.id,
            company_id=employee.company_id,
            outlet_id=employee.outlet_id,
            department_id=employee.department_id,
            work_date=work_date,
            status="in_progress",
            schedule_id=schedule.id if schedule is not None else None,
            within_schedule=within_schedule(schedule, moment),
            created_at=utc_now_naive(),
        )
        db.add(record)

    setattr(record, action, moment)
    setattr(record, _PHOTO_COLUMNS[action], photo_url)
    setattr(record, _LOCATION_COLUMNS[action], location)
    if action in _ADDRESSED_SLOTS:
        setattr(record, _ADDRESSED_SLOTS[action], address)
    refresh_measures(record, employee, schedule, scope.profile.ot_threshold_minutes)
    record.updated_at = utc_now_naive()
    db.flush()

    logger.info(
        "punch_recorded",
        employee_id=employee.id,
        action=action,
        work_date=work_date.isoformat(),
        within_schedule=record.within_schedule,
        ot_minutes=record.ot_minutes,
        ot_flagged=record.ot_flagged,
    )
    return record


def today_status(db: Session, principal: Principal) -> dict:
    employee = load_principal_employee(db, principal)
    work_date = clock.today()
    record = db.execute(
        select(ClockInRecord).where(ClockInRecord.employee_id == employee.id, ClockInRecord.work_date == work_date)
    ).scalar_one_or_none()
    schedule = find_schedule(db, employee.id, work_date)
    template = match_shift_template(db, schedule)
    return {
        "work_date": work_date,
        "status": punch_status(record),
        "next_action": next_action(record),
        "clock_in_required": bool(employee.clock_in_required),
        "record": record,
        "schedule": schedule,
        "shift_code": template.code if template is not None else None,
    }


def list_my_attendance(db: Session, principal: Principal, *, year: int, month: int) -> dict:
    employee = load_principal_employee(db, principal)
    if not 1 <= int(month) <= 12:
        raise ValidationError("month must be between 1 and 12")
    first = date(year, month, 1)
    last = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    records = db.execute(
        select(ClockInRecord)
        .where(
            ClockInRecord.employee_id == employee.id,
            ClockInRecord.work_date >= first,
            ClockInRecord.work_date < last,
        )
        .order_by(ClockInRecord.work_date.desc())
    ).scalars().all()
    return {
        "records": records,
        "summary": {
            "total_days": len(records),
            "completed_days": sum(1 for r in records if r.status == "completed"),
            "pending_completion": sum(1 for r in records if r.status == "in_progress"),
            "total_work_minutes": sum(int(r.total_work_minutes or 0) for r in records),
            "total_ot_minutes": sum(int(r.ot_minutes or 0) for r in records),
        },
    }


def _require_admin_scope(db: Session, principal: Principal, company_id: int | None):
    if not principal.is_admin:
        raise AuthorizationError("Only HR admins can review auto clock-outs", rule="admin")
    return resolve_scope(db, principal, company_id=company_id)


def list_auto_clock_outs(db: Session, principal: Principal, *, company_id: int | None = None) -> list[ClockInRecord]:
    scope = _require_admin_scope(db, principal, company_id)
    return db.execute(
        select(ClockInRecord)
        .where(
            ClockInRecord.company_id == scope.company_id,
            ClockInRecord.is_auto_clock_out.is_(True),
            ClockInRecord.needs_review.is_(True),
        )
        .order_by(ClockInRecord.work_date.desc(), ClockInRecord.id.asc())
    ).scalars().all()


@transactional
def review_auto_clock_out(
    db: Session,
    principal: Principal,
    record_id: int,
    *,
    adjusted_minutes: int | None = None,
    company_id: int | None = None,
) -> ClockInRecord:
    scope = _require_admin_scope(db, principal, company_id)
    record = db.execute(
        select(ClockInRecord).where(ClockInRecord.id == record_id).with_for_update()
    ).scalar_one_or_none()
    if record is None or record.company_id != scope.company_id or not record.is_auto_clock_out:
        raise NotFoundError("Record not found")
    if not record.needs_review:
        raise ConflictError("Record has already been reviewed")
    if adjusted_minutes is not None:
        if adjusted_minutes < 0 or adjusted_minutes > 24 * 60:
            raise ValidationError("adjusted_minutes must be between 0 and 1440")
        record.total_work_minutes = int(adjusted_minutes)
    record.needs_review = False
    record.reviewed_by = principal.actor_ref
    record.reviewed_at = utc_now_naive()
    record.updated_at = record.reviewed_at
    logger.info(
        "auto_clock_out_reviewed",
        record_id=record.id,
        actor=principal.actor_ref,
        adjusted_minutes=adjusted_minutes,
    )
    return record
