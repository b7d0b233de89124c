"""Approval protocol shared by leave, claim and extra-shift requests.

Requests walk levels 1 -> 2 -> 3 (supervisor, manager, admin). The table in
``select_approval_step`` decides what a principal's approval does at the
current level; everything kind-specific lives in ``RequestKind`` hooks.
"""
from dataclasses import dataclass

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from .audit import log_audit_event
from .clock import utc_now_naive
from .companies import CompanyProfile
from .errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .models import Employee, EmployeeDepartment, EmployeeOutlet
from .notifications import notify
from .permissions import check_target, has_capability, require, require_capability
from .roles import ADMIN_ROLES, TOP_ROLES, Role
from .scope import Principal, Scope, employee_role

logger = structlog.get_logger("ess.lifecycle")

FINAL_LEVEL = 3
ALLOWED_STATUS_TRANSITIONS = {
    "pending": {"pending", "approved", "rejected", "cancelled"},
    # approved -> pending is a revert, approved -> cancelled an admin cancellation
    "approved": {"pending", "cancelled"},
    "rejected": set(),
    "cancelled": set(),
}
ROLE_TITLES = {
    Role.SUPERVISOR: "supervisor",
    Role.MANAGER: "manager",
    Role.DIRECTOR: "director",
    Role.BOSS: "boss",
}


@dataclass(frozen=True)
class ApprovalStep:
    next_level: int
    final: bool
    slots: tuple


def select_approval_step(role: Role, level: int) -> ApprovalStep:
    if role in ADMIN_ROLES:
        if level == FINAL_LEVEL:
            return ApprovalStep(FINAL_LEVEL, True, ("admin",))
        if level == 1:
            raise ConflictError("This request requires supervisor approval first")
        raise ConflictError("This request requires manager approval")
    if role == Role.SUPERVISOR:
        if level == 1:
            return ApprovalStep(2, False, ("supervisor",))
        if level == 2:
            raise ConflictError("This request requires manager approval")
        raise ConflictError("This request is awaiting admin approval")
    if role == Role.MANAGER:
        if level == 1:
            return ApprovalStep(FINAL_LEVEL, False, ("supervisor", "manager"))
        if level == 2:
            return ApprovalStep(FINAL_LEVEL, False, ("manager",))
        raise ConflictError("This request is awaiting admin approval")
    if role in TOP_ROLES:
        if level in (1, 2):
            return ApprovalStep(FINAL_LEVEL, False, ("manager",))
        raise ConflictError("This request is awaiting admin approval")
    raise AuthorizationError("Your role cannot approve requests", rule="lifecycle.role")


def initial_level(profile: CompanyProfile, owner_role: Role) -> int:
    if not profile.is_outlet:
        return FINAL_LEVEL
    if owner_role == Role.SUPERVISOR:
        return 2
    if owner_role in {Role.MANAGER, *TOP_ROLES}:
        return FINAL_LEVEL
    return 1


def set_status(row, to_status: str) -> None:
    if to_status not in ALLOWED_STATUS_TRANSITIONS.get(row.status, set()):
        raise ConflictError(f"Cannot move request from {row.status} to {to_status}")
    row.status = to_status
    row.updated_at = utc_now_naive()


class RequestKind:
    """Hooks that make the shared protocol specific to one request table."""

    name = "request"
    label = "Request"
    model = None
    capability = "can_approve_leave"

    def describe(self, row) -> str:
        return f"{self.label.lower()} #{row.id}"

    def on_create(self, db: Session, row, owner: Employee, profile: CompanyProfile) -> tuple[int, bool]:
        return initial_level(profile, employee_role(owner)), False

    def on_approve(self, db: Session, row, owner: Employee, profile: CompanyProfile) -> float | None:
        return None

    def on_reject(self, db: Session, row, owner: Employee, profile: CompanyProfile) -> None:
        return None

    def on_cancel(self, db: Session, row, owner: Employee, profile: CompanyProfile, previous_status: str) -> None:
        return None


def lock_request(db: Session, kind: RequestKind, request_id: int):
    row = db.execute(
        select(kind.model)
        .where(kind.model.id == request_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if row is None:
        raise NotFoundError(f"{kind.label} request not found")
    return row


def load_owner(db: Session, row) -> Employee:
    owner = db.get(Employee, row.employee_id)
    if owner is None:
        raise NotFoundError("Employee not found")
    return owner


def _approver_id(principal: Principal) -> int | None:
    return principal.admin_id if principal.is_admin else principal.employee_id


def authorize_decision(scope: Scope, kind: RequestKind, owner: Employee, row, *, action: str) -> None:
    context = {"request_kind": kind.name, "request_id": row.id}
    if not scope.is_admin:
        require_capability(scope, kind.capability, action=action)
    require(check_target(scope, owner), action=action, **context)


def find_next_approver(db: Session, owner: Employee, level: int, profile: CompanyProfile) -> Employee | None:
    wanted = {1: "supervisor", 2: "manager"}.get(level)
    if wanted is None:
        return None
    if profile.is_outlet:
        unit_id, unit_column = owner.outlet_id, Employee.outlet_id
        assigned = select(EmployeeOutlet.employee_id).where(EmployeeOutlet.outlet_id == unit_id)
    else:
        unit_id, unit_column = owner.department_id, Employee.department_id
        assigned = select(EmployeeDepartment.employee_id).where(EmployeeDepartment.department_id == unit_id)
    if unit_id is None:
        return None
    return db.execute(
        select(Employee)
        .where(
            Employee.company_id == owner.company_id,
            Employee.status == "active",
            Employee.id != owner.id,
            func.lower(Employee.employee_role) == wanted,
            or_(unit_column == unit_id, Employee.id.in_(assigned)),
        )
        .order_by(Employee.id.asc())
    ).scalars().first()


def log_transition(kind: RequestKind, row, *, from_status: str, from_level: int, actor: str, company_id: int | None, db: Session) -> None:
    logger.info(
        "request_transition",
        request_kind=kind.name,
        request_id=row.id,
        from_status=from_status,
        to_status=row.status,
        from_level=from_level,
        to_level=row.approval_level,
        actor=actor,
    )
    log_audit_event(
        db,
        f"{kind.name}.{row.status}",
        company_id=company_id,
        actor=actor,
        entity=f"{kind.name}:{row.id}",
        payload={"from_status": from_status, "from_level": from_level, "to_level": row.approval_level},
    )


def create(db: Session, kind: RequestKind, row, owner: Employee, profile: CompanyProfile, *, actor: str):
    level, auto = kind.on_create(db, row, owner, profile)
    row.status = "pending"
    row.approval_level = level
    row.created_at = row.updated_at = utc_now_naive()
    db.add(row)
    db.flush()

    if auto:
        set_status(row, "approved")
        kind.on_approve(db, row, owner, profile)
        notify(
            db,
            owner.id,
            f"{kind.name}_auto_approved",
            f"{kind.label} Auto-Approved",
            f"Your {kind.describe(row)} was auto-approved",
            related_kind=kind.name,
            related_id=row.id,
        )
    else:
        approver = find_next_approver(db, owner, level, profile)
        if approver is not None:
            notify(
                db,
                approver.id,
                f"{kind.name}_submitted",
                f"New {kind.label} Request",
                f"{owner.name} submitted a {kind.describe(row)}",
                related_kind=kind.name,
                related_id=row.id,
            )
    log_transition(kind, row, from_status="new", from_level=level, actor=actor, company_id=owner.company_id, db=db)
    return row


def approve(db: Session, kind: RequestKind, scope: Scope, principal: Principal, request_id: int):
    row = lock_request(db, kind, request_id)
    if row.status != "pending":
        raise ConflictError(f"{kind.label} request is not pending")
    owner = load_owner(db, row)
    authorize_decision(scope, kind, owner, row, action=f"{kind.name}.approve")
    step = select_approval_step(scope.role, row.approval_level)

    from_status, from_level = row.status, row.approval_level
    now = utc_now_naive()
    for slot in step.slots:
        setattr(row, f"{slot}_approver_id", _approver_id(principal))
        setattr(row, f"{slot}_approved_at", now)
    row.approval_level = step.next_level
    row.updated_at = now

    if step.final:
        set_status(row, "approved")
        kind.on_approve(db, row, owner, scope.profile)
        notify(
            db,
            owner.id,
            f"{kind.name}_approved",
            f"{kind.label} Approved",
            f"Your {kind.describe(row)} has been approved",
            related_kind=kind.name,
            related_id=row.id,
        )
    else:
        title = ROLE_TITLES.get(scope.role, "approver")
        notify(
            db,
            owner.id,
            f"{kind.name}_advanced",
            f"{kind.label} Progressed",
            f"Your {kind.describe(row)} was approved by your {title} and awaits level {row.approval_level} approval",
            related_kind=kind.name,
            related_id=row.id,
        )
    log_transition(kind, row, from_status=from_status, from_level=from_level, actor=principal.actor_ref, company_id=owner.company_id, db=db)
    return row


def reject(db: Session, kind: RequestKind, scope: Scope, principal: Principal, request_id: int, reason: str | None):
    reason = (reason or "").strip()[:500]
    if not reason:
        raise ValidationError("Rejection reason is required")
    row = lock_request(db, kind, request_id)
    if row.status != "pending":
        raise ConflictError(f"{kind.label} request is not pending")
    owner = load_owner(db, row)
    authorize_decision(scope, kind, owner, row, action=f"{kind.name}.reject")
    if not scope.is_admin:
        # rejecting is allowed exactly where approving would be
        select_approval_step(scope.role, row.approval_level)

    from_status, from_level = row.status, row.approval_level
    set_status(row, "rejected")
    row.rejection_reason = reason
    row.rejected_by = principal.actor_ref
    row.rejected_at = utc_now_naive()
    kind.on_reject(db, row, owner, scope.profile)
    notify(
        db,
        owner.id,
        f"{kind.name}_rejected",
        f"{kind.label} Rejected",
        f"Your {kind.describe(row)} was rejected: {reason}",
        related_kind=kind.name,
        related_id=row.id,
    )
    log_transition(kind, row, from_status=from_status, from_level=from_level, actor=principal.actor_ref, company_id=owner.company_id, db=db)
    return row


def cancel(db: Session, kind: RequestKind, scope: Scope, principal: Principal, request_id: int):
    """Owner cancels while pending; an admin may also cancel an approved request."""
    row = lock_request(db, kind, request_id)
    owner = load_owner(db, row)
    from_status, from_level = row.status, row.approval_level

    if principal.is_admin:
        require(check_target(scope, owner), action=f"{kind.name}.cancel", request_kind=kind.name, request_id=row.id)
        if row.status not in {"pending", "approved"}:
            raise ConflictError("Can only cancel pending or approved requests")
    else:
        if owner.id != principal.employee_id:
            raise AuthorizationError(f"You can only cancel your own {kind.label.lower()} requests", rule="owner")
        if row.status != "pending":
            raise ConflictError("Can only cancel pending requests")

    set_status(row, "cancelled")
    row.cancelled_at = utc_now_naive()
    kind.on_cancel(db, row, owner, scope.profile, from_status)
    notify(
        db,
        owner.id,
        f"{kind.name}_cancelled",
        f"{kind.label} Cancelled",
        f"Your {kind.describe(row)} has been cancelled",
        related_kind=kind.name,
        related_id=row.id,
    )
    log_transition(kind, row, from_status=from_status, from_level=from_level, actor=principal.actor_ref, company_id=owner.company_id, db=db)
    return row


def expire(db: Session, kind: RequestKind, row, reason: str):
    owner = load_owner(db, row)
    from_status, from_level = row.status, row.approval_level
    set_status(row, "rejected")
    row.rejection_reason = reason
    row.rejected_by = "system"
    row.rejected_at = utc_now_naive()
    notify(
        db,
        owner.id,
        f"{kind.name}_expired",
        f"{kind.label} Expired",
        f"Your {kind.describe(row)} expired: {reason}",
        related_kind=kind.name,
        related_id=row.id,
    )
    log_transition(kind, row, from_status=from_status, from_level=from_level, actor="system", company_id=owner.company_id, db=db)
    return row


def _actionable(scope: Scope, row) -> bool:
    if scope.is_admin:
        return row.approval_level == FINAL_LEVEL
    try:
        select_approval_step(scope.role, row.approval_level)
    except (ConflictError, AuthorizationError):
        return False
    return True


def pending_for_approver(db: Session, kind: RequestKind, scope: Scope) -> list:
    """Pending requests the principal could act on right now."""
    if not scope.is_admin and not has_capability(scope, kind.capability):
        return []
    model = kind.model
    unit_column = Employee.outlet_id if scope.managed_kind == "outlet" else Employee.department_id
    stmt = (
        select(model)
        .join(Employee, Employee.id == model.employee_id)
        .where(model.status == "pending", Employee.company_id == scope.company_id)
    )
    if not scope.whole_company:
        if not scope.managed_ids:
            return []
        stmt = stmt.where(unit_column.in_(scope.managed_ids))
    if scope.employee is not None:
        stmt = stmt.where(model.employee_id != scope.employee.id)
    rows = db.execute(stmt.order_by(model.created_at.asc(), model.id.asc())).scalars().all()
    return [
        row
        for row in rows
        if _actionable(scope, row) and check_target(scope, row.employee)
    ]
