from datetime import date, time, timedelta

import structlog
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from . import clock
from .audit import log_audit_event
from .clock import utc_now_naive
from .config import settings
from .db import transactional
from .errors import ConflictError, EssError, NotFoundError, ValidationError
from .models import Employee, PublicHoliday, Schedule, ShiftTemplate
from .permissions import Decision, check_scope, require, require_capability
from .roles import Role
from .scope import Principal, Scope, resolve_scope

logger = structlog.get_logger("ess.schedules")

SCHEDULE_STATUSES = {"scheduled", "off", "leave", "public_holiday"}
OFF_STATUSES = {"off", "leave", "public_holiday"}
LEAD_TIME_EXEMPT_ROLES = {Role.DIRECTOR, Role.BOSS, Role.ADMIN, Role.SUPER_ADMIN}
NO_REST_DAY_RUN = 6


def check_edit_window(scope: Scope, schedule_date: date, today: date) -> None:
    if scope.role in LEAD_TIME_EXEMPT_ROLES:
        return
    lead = int(settings.SCHEDULE_LEAD_DAYS)
    if schedule_date < today + timedelta(days=lead):
        raise ValidationError(f"Cannot create/edit schedules within {lead} days (T+{lead} rule)")


def is_public_holiday(db: Session, company_id: int, day: date) -> bool:
    row = db.execute(
        select(PublicHoliday.id).where(
            PublicHoliday.holiday_date == day,
            or_(PublicHoliday.company_id.is_(None), PublicHoliday.company_id == company_id),
        )
    ).first()
    return row is not None


def resolve_shift(
    db: Session,
    company_id: int,
    *,
    shift_template_id: int | None = None,
    shift_start: time | None = None,
    shift_end: time | None = None,
    break_duration: int | None = None,
    status: str | None = None,
) -> dict:
    """Shift fields for a schedule row, from a template when one is given."""
    if shift_template_id is not None:
        template = db.get(ShiftTemplate, shift_template_id)
        if template is None or template.company_id != company_id or not template.is_active:
            raise NotFoundError("Shift template not found")
        if template.is_off:
            return {
                "shift_template_id": template.id,
                "shift_start": None,
                "shift_end": None,
                "break_duration": 0,
                "status": "off",
            }
        return {
            "shift_template_id": template.id,
            "shift_start": template.start_time,
            "shift_end": template.end_time,
            "break_duration": int(template.break_duration or 0),
            "status": "scheduled",
        }

    status = (status or "scheduled").strip().lower()
    if status not in SCHEDULE_STATUSES:
        raise ValidationError(f"Invalid schedule status: {status}")
    if status == "scheduled" and (shift_start is None or shift_end is None):
        raise ValidationError("Shift start and end times are required")
    if break_duration is not None and int(break_duration) < 0:
        raise ValidationError("Break duration cannot be negative")
    return {
        "shift_template_id": None,
        "shift_start": shift_start if status == "scheduled" else None,
        "shift_end": shift_end if status == "scheduled" else None,
        "break_duration": int(break_duration or 0),
        "status": status,
    }


def _load_employee_in_scope(db: Session, scope: Scope, employee_id: int, *, action: str) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None or employee.company_id != scope.company_id:
        raise NotFoundError("Employee not found")
    require(check_scope(scope, employee), action=action, employee_id=employee_id)
    return employee


def _manager_scope(db: Session, principal: Principal, company_id: int | None, action: str) -> Scope:
    scope = resolve_scope(db, principal, company_id=company_id)
    if not scope.is_admin:
        require_capability(scope, "can_manage_schedule", action=action)
    return scope


def schedule_exists(db: Session, employee_id: int, schedule_date: date) -> bool:
    return db.execute(
        select(Schedule.id).where(Schedule.employee_id == employee_id, Schedule.schedule_date == schedule_date)
    ).first() is not None


def add_schedule(db: Session, employee: Employee, schedule_date: date, shift: dict, *, actor: str) -> Schedule:
    if schedule_exists(db, employee.id, schedule_date):
        raise ConflictError("Schedule already exists for this date")
    now = utc_now_naive()
    row = Schedule(
        employee_id=employee.id,
        company_id=employee.company_id,
        outlet_id=employee.outlet_id,
        department_id=employee.department_id,
        schedule_date=schedule_date,
        is_public_holiday=is_public_holiday(db, employee.company_id, schedule_date),
        created_by=actor,
        created_at=now,
        updated_at=now,
        **shift,
    )
    db.add(row)
    db.flush()
    log_audit_event(
        db,
        "schedule.create",
        company_id=employee.company_id,
        actor=actor,
        entity=f"schedule:{row.id}",
        payload={"employee_id": employee.id, "schedule_date": schedule_date.isoformat(), "status": row.status},
    )
    return row


def _create_one(db: Session, scope: Scope, principal: Principal, entry: dict, today: date) -> Schedule:
    schedule_date = entry["schedule_date"]
    check_edit_window(scope, schedule_date, today)
    employee = _load_employee_in_scope(db, scope, entry["employee_id"], action="schedule.create")
    shift = resolve_shift(
        db,
        scope.company_id,
        shift_template_id=entry.get("shift_template_id"),
        shift_start=entry.get("shift_start"),
        shift_end=entry.get("shift_end"),
        break_duration=entry.get("break_duration"),
        status=entry.get("status"),
    )
    return add_schedule(db, employee, schedule_date, shift, actor=principal.actor_ref)


@transactional
def create_schedule(
    db: Session,
    principal: Principal,
    *,
    employee_id: int,
    schedule_date: date,
    shift_template_id: int | None = None,
    shift_start: time | None = None,
    shift_end: time | None = None,
    break_duration: int | None = None,
    status: str | None = None,
    company_id: int | None = None,
) -> Schedule:
    scope = _manager_scope(db, principal, company_id, "schedule.create")
    entry = {
        "employee_id": employee_id,
        "schedule_date": schedule_date,
        "shift_template_id": shift_template_id,
        "shift_start": shift_start,
        "shift_end": shift_end,
        "break_duration": break_duration,
        "status": status,
    }
    return _create_one(db, scope, principal, entry, clock.today())


@transactional
def bulk_create_schedules(
    db: Session,
    principal: Principal,
    entries: list[dict],
    *,
    company_id: int | None = None,
) -> dict:
    """Create many schedules; rows failing a rule are reported and the rest are kept."""
    scope = _manager_scope(db, principal, company_id, "schedule.bulk_create")
    today = clock.today()
    created: list[Schedule] = []
    errors: list[dict] = []
    for index, entry in enumerate(entries):
        try:
            with db.begin_nested():
                created.append(_create_one(db, scope, principal, entry, today))
        except EssError as exc:
            errors.append(
                {
                    "index": index,
                    "employee_id": entry.get("employee_id"),
                    "schedule_date": entry.get("schedule_date"),
                    "error": exc.message,
                }
            )
    if errors:
        logger.info("schedule_bulk_row_errors", created=len(created), failed=len(errors))
    return {"created": created, "errors": errors}


def _lock_schedule(db: Session, scope: Scope, schedule_id: int) -> Schedule:
    row = db.execute(
        select(Schedule).where(Schedule.id == schedule_id).with_for_update()
    ).scalar_one_or_none()
    if row is None or row.company_id != scope.company_id:
        raise NotFoundError("Schedule not found")
    return row


@transactional
def update_schedule(
    db: Session,
    principal: Principal,
    schedule_id: int,
    *,
    shift_template_id: int | None = None,
    shift_start: time | None = None,
    shift_end: time | None = None,
    break_duration: int | None = None,
    status: str | None = None,
    company_id: int | None = None,
) -> Schedule:
    scope = _manager_scope(db, principal, company_id, "schedule.update")
    row = _lock_schedule(db, scope, schedule_id)
    check_edit_window(scope, row.schedule_date, clock.today())
    _load_employee_in_scope(db, scope, row.employee_id, action="schedule.update")
    shift = resolve_shift(
        db,
        scope.company_id,
        shift_template_id=shift_template_id,
        shift_start=shift_start,
        shift_end=shift_end,
        break_duration=break_duration,
        status=status,
    )
    for key, value in shift.items():
        setattr(row, key, value)
    row.updated_at = utc_now_naive()
    log_audit_event(
        db,
        "schedule.update",
        company_id=row.company_id,
        actor=principal.actor_ref,
        entity=f"schedule:{row.id}",
        payload={"status": row.status},
    )
    return row


@transactional
def delete_schedule(db: Session, principal: Principal, schedule_id: int, *, company_id: int | None = None) -> None:
    scope = _manager_scope(db, principal, company_id, "schedule.delete")
    row = _lock_schedule(db, scope, schedule_id)
    check_edit_window(scope, row.schedule_date, clock.today())
    _load_employee_in_scope(db, scope, row.employee_id, action="schedule.delete")
    log_audit_event(
        db,
        "schedule.delete",
        company_id=row.company_id,
        actor=principal.actor_ref,
        entity=f"schedule:{row.id}",
        payload={"employee_id": row.employee_id, "schedule_date": row.schedule_date.isoformat()},
    )
    db.delete(row)


def list_schedules(
    db: Session,
    principal: Principal,
    *,
    start: date,
    end: date,
    employee_id: int | None = None,
    unit_id: int | None = None,
    company_id: int | None = None,
) -> list[Schedule]:
    """Own schedules for staff; any in-scope schedules for schedule managers."""
    if end < start:
        raise ValidationError("End date must be after start date")
    scope = resolve_scope(db, principal, company_id=company_id)
    stmt = select(Schedule).where(
        Schedule.company_id == scope.company_id,
        Schedule.schedule_date >= start,
        Schedule.schedule_date <= end,
    )
    unit_column = Schedule.outlet_id if scope.managed_kind == "outlet" else Schedule.department_id
    can_see_team = scope.is_admin or scope.whole_company or bool(scope.managed_ids)
    if not can_see_team:
        stmt = stmt.where(Schedule.employee_id == scope.employee.id)
    else:
        if not scope.whole_company:
            own = [scope.employee.id] if scope.employee is not None else []
            stmt = stmt.where(or_(unit_column.in_(scope.managed_ids), Schedule.employee_id.in_(own)))
        if employee_id is not None:
            stmt = stmt.where(Schedule.employee_id == employee_id)
        if unit_id is not None:
            stmt = stmt.where(unit_column == unit_id)
    stmt = stmt.order_by(Schedule.schedule_date.asc(), Schedule.employee_id.asc())
    return db.execute(stmt).scalars().all()


def _longest_run(flags: list[bool]) -> int:
    best = current = 0
    for worked in flags:
        current = current + 1 if worked else 0
        best = max(best, current)
    return best


def weekly_validation(
    db: Session,
    principal: Principal,
    *,
    week_start: date,
    unit_id: int | None = None,
    company_id: int | None = None,
) -> list[dict]:
    scope = _manager_scope(db, principal, company_id, "schedule.validate")
    if unit_id is not None and not scope.whole_company and unit_id not in scope.managed_ids:
        denied = Decision(False, f"No permission for this {scope.managed_kind}", f"scope.{scope.managed_kind}")
        require(denied, action="schedule.validate", unit_id=unit_id)

    unit_column = Employee.outlet_id if scope.managed_kind == "outlet" else Employee.department_id
    stmt = select(Employee).where(Employee.company_id == scope.company_id, Employee.status == "active")
    if unit_id is not None:
        stmt = stmt.where(unit_column == unit_id)
    elif not scope.whole_company:
        stmt = stmt.where(unit_column.in_(scope.managed_ids))
    employees = db.execute(stmt.order_by(Employee.name.asc(), Employee.id.asc())).scalars().all()

    week_end = week_start + timedelta(days=6)
    days = [week_start + timedelta(days=offset) for offset in range(7)]
    schedules = db.execute(
        select(Schedule).where(
            Schedule.employee_id.in_([e.id for e in employees]),
            Schedule.schedule_date >= week_start,
            Schedule.schedule_date <= week_end,
        )
    ).scalars().all()
    by_key = {(s.employee_id, s.schedule_date): s for s in schedules}

    report = []
    for employee in employees:
        worked_flags = []
        off_days = unscheduled = 0
        for day in days:
            row = by_key.get((employee.id, day))
            if row is None:
                unscheduled += 1
                worked_flags.append(False)
            elif row.status in OFF_STATUSES:
                off_days += 1
                worked_flags.append(False)
            else:
                worked_flags.append(True)
        max_run = _longest_run(worked_flags)
        report.append(
            {
                "employee_id": employee.id,
                "employee_name": employee.name,
                "work_days": sum(worked_flags),
                "off_days": off_days,
                "unscheduled_days": unscheduled,
                "max_consecutive_work": max_run,
                "warning": "no rest day" if max_run >= NO_REST_DAY_RUN and off_days == 0 else None,
            }
        )
    return report
