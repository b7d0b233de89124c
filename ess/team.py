from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import clock
from .models import Claim, ClockInRecord, Department, Employee, LeaveRequest, Outlet, Schedule
from .permissions import Decision, require, require_capability
from .scope import Principal, Scope, employee_level, resolve_scope


def _team_scope(db: Session, principal: Principal, company_id: int | None, action: str) -> Scope:
    scope = resolve_scope(db, principal, company_id=company_id)
    if not scope.is_admin:
        require_capability(scope, "can_view_team", action=action)
    return scope


def _check_unit(scope: Scope, unit_id: int, action: str) -> None:
    if unit_id in scope.managed_ids:
        return
    label = "outlet" if scope.managed_kind == "outlet" else "department"
    require(Decision(False, f"No permission for this {label}", f"scope.{label}"), action=action, unit_id=unit_id)


def _unit_column(scope: Scope):
    return Employee.outlet_id if scope.managed_kind == "outlet" else Employee.department_id


def unit_staff(db: Session, scope: Scope, unit_id: int) -> list[Employee]:
    """Active staff of one unit, most senior first, without the viewer."""
    stmt = select(Employee).where(
        Employee.company_id == scope.company_id,
        _unit_column(scope) == unit_id,
        Employee.status == "active",
    )
    if scope.employee is not None:
        stmt = stmt.where(Employee.id != scope.employee.id)
    rows = db.execute(stmt).scalars().all()
    return sorted(rows, key=lambda e: (-employee_level(e), e.name))


def unit_attendance(db: Session, staff: list[Employee], day: date) -> list[dict]:
    ids = [e.id for e in staff]
    if not ids:
        return []
    records = {
        r.employee_id: r
        for r in db.execute(
            select(ClockInRecord).where(ClockInRecord.employee_id.in_(ids), ClockInRecord.work_date == day)
        ).scalars()
    }
    schedules = {
        s.employee_id: s
        for s in db.execute(select(Schedule).where(Schedule.employee_id.in_(ids), Schedule.schedule_date == day)).scalars()
    }
    rows = []
    for employee in staff:
        record = records.get(employee.id)
        schedule = schedules.get(employee.id)
        rows.append(
            {
                "employee_id": employee.id,
                "employee_code": employee.employee_code,
                "name": employee.name,
                "schedule_status": schedule.status if schedule is not None else None,
                "shift_start": schedule.shift_start if schedule is not None else None,
                "shift_end": schedule.shift_end if schedule is not None else None,
                "clock_in": record.clock_in_1 if record is not None else None,
                "clock_out": record.clock_out_2 if record is not None else None,
                "attendance_status": record.status if record is not None else None,
            }
        )
    return rows


def _pending_count(db: Session, model, ids: list[int]) -> int:
    if not ids:
        return 0
    return int(
        db.execute(select(func.count(model.id)).where(model.employee_id.in_(ids), model.status == "pending")).scalar_one()
    )


def team_overview(db: Session, principal: Principal, *, company_id: int | None = None) -> dict:
    scope = _team_scope(db, principal, company_id, "team.overview")
    unit_model = Outlet if scope.managed_kind == "outlet" else Department
    units = []
    if scope.managed_ids:
        units = db.execute(
            select(unit_model).where(unit_model.id.in_(scope.managed_ids)).order_by(unit_model.name.asc())
        ).scalars().all()

    today = clock.today()
    summary = {"total_units": len(units), "total_staff": 0, "pending_leave": 0, "pending_claims": 0, "clocked_in_today": 0}
    out = []
    for unit in units:
        staff = unit_staff(db, scope, unit.id)
        ids = [e.id for e in staff]
        attendance = unit_attendance(db, staff, today)
        working = sum(1 for row in attendance if row["clock_in"] is not None and row["clock_out"] is None)
        not_clocked_in = [
            row for row in attendance if row["schedule_status"] == "scheduled" and row["clock_in"] is None
        ]
        pending_leave = _pending_count(db, LeaveRequest, ids)
        pending_claims = _pending_count(db, Claim, ids)
        out.append(
            {
                "id": unit.id,
                "name": unit.name,
                "staff_count": len(staff),
                "staff": staff,
                "attendance_today": [row for row in attendance if row["clock_in"] is not None],
                "clocked_in_count": working,
                "not_clocked_in": not_clocked_in,
                "pending_leave_count": pending_leave,
                "pending_claims_count": pending_claims,
            }
        )
        summary["total_staff"] += len(staff)
        summary["pending_leave"] += pending_leave
        summary["pending_claims"] += pending_claims
        summary["clocked_in_today"] += working
    return {"kind": scope.managed_kind, "work_date": today, "units": out, "summary": summary}


def list_unit_staff(db: Session, principal: Principal, unit_id: int, *, company_id: int | None = None) -> list[Employee]:
    scope = _team_scope(db, principal, company_id, "team.staff")
    _check_unit(scope, unit_id, "team.staff")
    return unit_staff(db, scope, unit_id)


def unit_attendance_report(
    db: Session,
    principal: Principal,
    unit_id: int,
    *,
    day: date | None = None,
    company_id: int | None = None,
) -> list[dict]:
    scope = _team_scope(db, principal, company_id, "team.attendance")
    _check_unit(scope, unit_id, "team.attendance")
    return unit_attendance(db, unit_staff(db, scope, unit_id), day or clock.today())
