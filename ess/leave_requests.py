from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import clock, leave, lifecycle
from .db import transactional
from .errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .models import LeaveRequest, LeaveType
from .notifications import notify
from .permissions import has_capability
from .scope import Principal, employee_role, load_principal_employee, resolve_scope


class LeaveKind(lifecycle.RequestKind):
    name = "leave"
    label = "Leave"
    model = LeaveRequest
    capability = "can_approve_leave"

    def describe(self, row: LeaveRequest) -> str:
        code = row.leave_type.code if row.leave_type is not None else "leave"
        return f"{code} leave {row.start_date.isoformat()} to {row.end_date.isoformat()}"

    def on_create(self, db, row, owner, profile):
        level = lifecycle.initial_level(profile, employee_role(owner))
        return level, profile.auto_approves(row.leave_type)

    def _balance(self, db, row, owner, profile):
        # a request crossing new year is charged in full to its start year
        return leave.require_balance(db, owner, row.leave_type, row.start_date.year, profile)

    def on_approve(self, db, row, owner, profile):
        balance = self._balance(db, row, owner, profile)
        if balance is None:
            return None
        leave.debit_balance(balance, row.total_days)
        return float(row.total_days)

    def on_cancel(self, db, row, owner, profile, previous_status):
        if previous_status != "approved":
            return None
        balance = self._balance(db, row, owner, profile)
        if balance is not None:
            leave.credit_balance(balance, row.total_days)
        return None


LEAVE = LeaveKind()


def _load_leave_type(db: Session, leave_type_id: int, company_id: int) -> LeaveType:
    leave_type = db.get(LeaveType, leave_type_id)
    if leave_type is None or not leave_type.is_active:
        raise NotFoundError("Leave type not found")
    if leave_type.company_id is not None and leave_type.company_id != company_id:
        raise NotFoundError("Leave type not found")
    return leave_type


@transactional
def apply_leave(
    db: Session,
    principal: Principal,
    *,
    leave_type_id: int,
    start_date: date,
    end_date: date,
    reason: str | None = None,
    half_day: str | None = None,
    mc_url: str | None = None,
) -> LeaveRequest:
    scope = resolve_scope(db, principal)
    employee = scope.employee
    if employee is None:
        raise ValidationError("Only employees can apply for leave")
    profile = scope.profile
    leave_type = _load_leave_type(db, leave_type_id, employee.company_id)
    today = clock.today()
    half_day = (half_day or "").strip().lower() or None
    mc_url = (mc_url or "").strip()[:500] or None

    if end_date < start_date:
        raise ValidationError("End date must be after start date")
    leave.check_past_date(leave_type, start_date, today)
    leave.check_last_working_day(employee, end_date)
    leave.check_eligibility(db, employee, leave_type, start=start_date, attachment_url=mc_url, on=today)
    leave.check_overlap(db, employee.id, start_date, end_date)

    total_days = leave.count_leave_days(
        db,
        profile,
        start_date,
        end_date,
        half_day=half_day,
        consecutive=bool(leave_type.is_consecutive),
    )
    if total_days <= 0:
        raise ValidationError("The selected dates contain no working days")

    balance = leave.require_balance(db, employee, leave_type, start_date.year, profile)
    if balance is not None:
        available = leave.available_days(balance) - leave.pending_days(db, employee.id, leave_type.id, start_date.year)
        if total_days > available + 1e-9:
            raise ValidationError(
                f"Insufficient leave balance. Available: {available:g} days, Requested: {total_days:g} days"
            )

    row = LeaveRequest(
        employee_id=employee.id,
        leave_type_id=leave_type.id,
        start_date=start_date,
        end_date=end_date,
        total_days=total_days,
        half_day=half_day,
        reason=(reason or "").strip()[:500] or None,
        mc_url=mc_url,
    )
    row.leave_type = leave_type
    lifecycle.create(db, LEAVE, row, employee, profile, actor=principal.actor_ref)
    row.auto_approved = row.status == "approved"
    return row


@transactional
def approve_leave(db: Session, principal: Principal, request_id: int, *, company_id: int | None = None) -> LeaveRequest:
    scope = resolve_scope(db, principal, company_id=company_id)
    return lifecycle.approve(db, LEAVE, scope, principal, request_id)


@transactional
def reject_leave(
    db: Session,
    principal: Principal,
    request_id: int,
    *,
    reason: str | None,
    company_id: int | None = None,
) -> LeaveRequest:
    scope = resolve_scope(db, principal, company_id=company_id)
    return lifecycle.reject(db, LEAVE, scope, principal, request_id, reason)


@transactional
def cancel_leave(db: Session, principal: Principal, request_id: int, *, company_id: int | None = None) -> LeaveRequest:
    scope = resolve_scope(db, principal, company_id=company_id)
    return lifecycle.cancel(db, LEAVE, scope, principal, request_id)


@transactional
def revert_leave(db: Session, principal: Principal, request_id: int) -> LeaveRequest:
    """Owner hands an auto-approved leave back to the admin queue and gets the days back."""
    scope = resolve_scope(db, principal)
    row = lifecycle.lock_request(db, LEAVE, request_id)
    if scope.employee is None or row.employee_id != scope.employee.id:
        raise AuthorizationError("You can only revert your own leave requests", rule="owner")
    if not row.auto_approved:
        raise ConflictError("This leave was not auto-approved")
    if row.status != "approved":
        raise ConflictError("Leave is no longer in approved status")

    owner = scope.employee
    balance = leave.require_balance(db, owner, row.leave_type, row.start_date.year, scope.profile)
    if balance is not None:
        leave.credit_balance(balance, row.total_days)
    lifecycle.set_status(row, "pending")
    row.approval_level = lifecycle.FINAL_LEVEL
    row.auto_approved = False
    row.admin_approver_id = None
    row.admin_approved_at = None
    notify(
        db,
        owner.id,
        "leave_reverted",
        "Leave Reverted",
        f"Your {LEAVE.describe(row)} was reverted to pending and awaits admin approval",
        related_kind="leave",
        related_id=row.id,
    )
    lifecycle.log_transition(
        LEAVE,
        row,
        from_status="approved",
        from_level=lifecycle.FINAL_LEVEL,
        actor=principal.actor_ref,
        company_id=owner.company_id,
        db=db,
    )
    return row


def get_leave_request(db: Session, principal: Principal, request_id: int) -> LeaveRequest:
    scope = resolve_scope(db, principal)
    row = db.get(LeaveRequest, request_id)
    if row is None:
        raise NotFoundError("Leave request not found")
    if scope.employee is not None and row.employee_id == scope.employee.id:
        return row
    owner = lifecycle.load_owner(db, row)
    if scope.is_admin or has_capability(scope, "can_view_team"):
        if scope.covers(owner):
            return row
    raise NotFoundError("Leave request not found")


def list_my_leave(
    db: Session,
    principal: Principal,
    *,
    status_filter: str | None = None,
    year: int | None = None,
) -> list[LeaveRequest]:
    employee = load_principal_employee(db, principal)
    stmt = select(LeaveRequest).where(LeaveRequest.employee_id == employee.id)
    if status_filter:
        stmt = stmt.where(LeaveRequest.status == status_filter.strip().lower())
    if year:
        stmt = stmt.where(LeaveRequest.start_date >= date(year, 1, 1), LeaveRequest.start_date <= date(year, 12, 31))
    stmt = stmt.order_by(LeaveRequest.start_date.desc(), LeaveRequest.id.desc())
    return db.execute(stmt).scalars().all()


def list_team_pending_leave(db: Session, principal: Principal, *, company_id: int | None = None) -> list[LeaveRequest]:
    scope = resolve_scope(db, principal, company_id=company_id)
    return lifecycle.pending_for_approver(db, LEAVE, scope)


@transactional
def get_balances(db: Session, principal: Principal, *, year: int | None = None) -> list[dict]:
    scope = resolve_scope(db, principal)
    employee = scope.employee
    if employee is None:
        raise ValidationError("Only employees have leave balances")
    today = clock.today()
    year = year or today.year
    summaries = []
    for leave_type in leave.applicable_leave_types(db, employee):
        if not leave_type.is_paid:
            continue
        balance = leave.ensure_balance(db, employee, leave_type, year, scope.profile, on=today)
        summaries.append(
            leave.balance_summary(
                balance,
                leave_type,
                employee,
                scope.profile,
                today,
                pending_days=leave.pending_days(db, employee.id, leave_type.id, year),
            )
        )
    return summaries


def list_leave_types(db: Session, principal: Principal) -> list[LeaveType]:
    employee = load_principal_employee(db, principal)
    return leave.applicable_leave_types(db, employee)


def expire_stale_leave(db: Session, cutoff, reason: str) -> int:
    rows = db.execute(
        select(LeaveRequest).where(LeaveRequest.status == "pending", LeaveRequest.created_at < cutoff)
    ).scalars().all()
    for row in rows:
        lifecycle.expire(db, LEAVE, row, reason)
    return len(rows)
