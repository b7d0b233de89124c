from datetime import date, time

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import clock, lifecycle
from .db import transactional
from .errors import ConflictError, ValidationError
from .models import ExtraShiftRequest
from .schedules import add_schedule, resolve_shift, schedule_exists
from .scope import Principal, load_principal_employee, resolve_scope


class ExtraShiftKind(lifecycle.RequestKind):
    name = "extra_shift"
    label = "Extra Shift"
    model = ExtraShiftRequest
    capability = "can_manage_schedule"

    def describe(self, row: ExtraShiftRequest) -> str:
        return f"extra shift request for {row.request_date.isoformat()}"

    def on_approve(self, db, row, owner, profile):
        if schedule_exists(db, owner.id, row.request_date):
            raise ConflictError("Employee already has a schedule for this date")
        shift = resolve_shift(
            db,
            owner.company_id,
            shift_template_id=row.shift_template_id,
            shift_start=row.shift_start,
            shift_end=row.shift_end,
        )
        schedule = add_schedule(db, owner, row.request_date, shift, actor=f"extra_shift:{row.id}")
        row.schedule_id = schedule.id
        return None


EXTRA_SHIFT = ExtraShiftKind()


def _has_pending_request(db: Session, employee_id: int, request_date: date) -> bool:
    return db.execute(
        select(ExtraShiftRequest.id).where(
            ExtraShiftRequest.employee_id == employee_id,
            ExtraShiftRequest.request_date == request_date,
            ExtraShiftRequest.status == "pending",
        )
    ).first() is not None


@transactional
def request_extra_shift(
    db: Session,
    principal: Principal,
    *,
    request_date: date,
    shift_template_id: int | None = None,
    shift_start: time | None = None,
    shift_end: time | None = None,
    reason: str | None = None,
) -> ExtraShiftRequest:
    scope = resolve_scope(db, principal)
    employee = scope.employee
    if employee is None:
        raise ValidationError("Only employees can request extra shifts")
    if request_date < clock.today():
        raise ValidationError("Cannot request extra shift for past dates")
    if schedule_exists(db, employee.id, request_date):
        raise ConflictError("You already have a schedule for this date")
    if _has_pending_request(db, employee.id, request_date):
        raise ConflictError("You already have a pending request for this date")
    # validates the template or the ad-hoc times up front
    shift = resolve_shift(
        db,
        employee.company_id,
        shift_template_id=shift_template_id,
        shift_start=shift_start,
        shift_end=shift_end,
    )

    row = ExtraShiftRequest(
        employee_id=employee.id,
        request_date=request_date,
        shift_template_id=shift["shift_template_id"],
        shift_start=shift["shift_start"],
        shift_end=shift["shift_end"],
        reason=(reason or "").strip()[:500] or None,
    )
    return lifecycle.create(db, EXTRA_SHIFT, row, employee, scope.profile, actor=principal.actor_ref)


@transactional
def approve_extra_shift(db: Session, principal: Principal, request_id: int, *, company_id: int | None = None) -> ExtraShiftRequest:
    scope = resolve_scope(db, principal, company_id=company_id)
    return lifecycle.approve(db, EXTRA_SHIFT, scope, principal, request_id)


@transactional
def reject_extra_shift(
    db: Session,
    principal: Principal,
    request_id: int,
    *,
    reason: str | None,
    company_id: int | None = None,
) -> ExtraShiftRequest:
    scope = resolve_scope(db, principal, company_id=company_id)
    return lifecycle.reject(db, EXTRA_SHIFT, scope, principal, request_id, reason)


@transactional
def cancel_extra_shift(db: Session, principal: Principal, request_id: int) -> ExtraShiftRequest:
    scope = resolve_scope(db, principal)
    return lifecycle.cancel(db, EXTRA_SHIFT, scope, principal, request_id)


def list_my_extra_shifts(db: Session, principal: Principal) -> list[ExtraShiftRequest]:
    employee = load_principal_employee(db, principal)
    return db.execute(
        select(ExtraShiftRequest)
        .where(ExtraShiftRequest.employee_id == employee.id)
        .order_by(ExtraShiftRequest.request_date.desc(), ExtraShiftRequest.id.desc())
    ).scalars().all()


def list_team_pending_extra_shifts(
    db: Session,
    principal: Principal,
    *,
    company_id: int | None = None,
) -> list[ExtraShiftRequest]:
    scope = resolve_scope(db, principal, company_id=company_id)
    return lifecycle.pending_for_approver(db, EXTRA_SHIFT, scope)


def expire_stale_extra_shifts(db: Session, cutoff, reason: str) -> int:
    rows = db.execute(
        select(ExtraShiftRequest).where(ExtraShiftRequest.status == "pending", ExtraShiftRequest.created_at < cutoff)
    ).scalars().all()
    for row in rows:
        lifecycle.expire(db, EXTRA_SHIFT, row, reason)
    return len(rows)
