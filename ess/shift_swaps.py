import structlog
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from . import clock
from .audit import log_audit_event
from .clock import utc_now_naive
from .companies import CompanyProfile
from .db import transactional
from .errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .lifecycle import find_next_approver
from .models import Employee, Schedule, ShiftSwapRequest
from .notifications import notify
from .permissions import check_target, require, require_capability
from .schedules import check_edit_window
from .scope import Principal, load_principal_employee, resolve_scope

logger = structlog.get_logger("ess.shift_swaps")

ALLOWED_SWAP_TRANSITIONS = {
    "pending_target": {"pending_supervisor", "rejected", "cancelled"},
    "pending_supervisor": {"approved", "rejected"},
    "approved": set(),
    "rejected": set(),
    "cancelled": set(),
}
OPEN_SWAP_STATUSES = ("pending_target", "pending_supervisor")
SWAPPED_FIELDS = ("shift_template_id", "shift_start", "shift_end", "break_duration", "status")


def _set_swap_status(row: ShiftSwapRequest, to_status: str, actor: str) -> None:
    from_status = row.status
    if to_status not in ALLOWED_SWAP_TRANSITIONS.get(from_status, set()):
        raise ConflictError(f"Cannot move swap request from {from_status} to {to_status}")
    row.status = to_status
    row.updated_at = utc_now_naive()
    logger.info(
        "request_transition",
        request_kind="shift_swap",
        request_id=row.id,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
    )


def _lock_swap(db: Session, swap_id: int) -> ShiftSwapRequest:
    row = db.execute(
        select(ShiftSwapRequest)
        .where(ShiftSwapRequest.id == swap_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if row is None:
        raise NotFoundError("Swap request not found")
    return row


def _load_schedule(db: Session, schedule_id: int) -> Schedule:
    row = db.execute(select(Schedule).where(Schedule.id == schedule_id).with_for_update()).scalar_one_or_none()
    if row is None:
        raise NotFoundError("Schedule not found")
    return row


@transactional
def request_swap(
    db: Session,
    principal: Principal,
    *,
    requester_schedule_id: int,
    target_schedule_id: int,
    reason: str | None = None,
) -> ShiftSwapRequest:
    scope = resolve_scope(db, principal)
    requester = scope.employee
    if requester is None:
        raise ValidationError("Only employees can request shift swaps")
    if not scope.profile.is_outlet:
        raise ValidationError("Shift swaps are only available for outlet-based companies")

    mine = _load_schedule(db, requester_schedule_id)
    theirs = _load_schedule(db, target_schedule_id)
    if mine.employee_id != requester.id:
        raise AuthorizationError("You can only swap your own shifts", rule="owner")
    if theirs.employee_id == requester.id:
        raise ValidationError("Cannot swap with yourself")
    target = db.get(Employee, theirs.employee_id)
    if target is None or target.company_id != requester.company_id or target.status != "active":
        raise NotFoundError("Colleague not found")
    if target.outlet_id != requester.outlet_id:
        raise ValidationError("You can only swap shifts with colleagues in your outlet")
    today = clock.today()
    if mine.schedule_date < today or theirs.schedule_date < today:
        raise ValidationError("Cannot swap past shifts")
    for schedule in (mine, theirs):
        check_edit_window(scope, schedule.schedule_date, today)

    open_swap = db.execute(
        select(ShiftSwapRequest.id).where(
            ShiftSwapRequest.status.in_(OPEN_SWAP_STATUSES),
            or_(
                ShiftSwapRequest.requester_schedule_id.in_([mine.id, theirs.id]),
                ShiftSwapRequest.target_schedule_id.in_([mine.id, theirs.id]),
            ),
        )
    ).first()
    if open_swap is not None:
        raise ConflictError("A swap request is already pending for this shift")

    now = utc_now_naive()
    row = ShiftSwapRequest(
        company_id=requester.company_id,
        outlet_id=requester.outlet_id,
        requester_id=requester.id,
        target_id=target.id,
        requester_schedule_id=mine.id,
        target_schedule_id=theirs.id,
        reason=(reason or "").strip()[:500] or None,
        status="pending_target",
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.flush()
    notify(
        db,
        target.id,
        "swap_requested",
        "Shift Swap Request",
        f"{requester.name} wants to swap their {mine.schedule_date.isoformat()} shift "
        f"with your {theirs.schedule_date.isoformat()} shift",
        related_kind="shift_swap",
        related_id=row.id,
    )
    log_audit_event(db, "swap.create", company_id=row.company_id, actor=principal.actor_ref, entity=f"swap:{row.id}")
    return row


@transactional
def respond_to_swap(db: Session, principal: Principal, swap_id: int, *, accept: bool) -> ShiftSwapRequest:
    employee = load_principal_employee(db, principal)
    row = _lock_swap(db, swap_id)
    if row.target_id != employee.id:
        raise AuthorizationError("Only the requested colleague can respond to this swap", rule="owner")
    if row.status != "pending_target":
        raise ConflictError("Swap request is not awaiting your response")
    row.target_responded_at = utc_now_naive()
    requester = db.get(Employee, row.requester_id)

    if accept:
        _set_swap_status(row, "pending_supervisor", principal.actor_ref)
        notify(
            db,
            requester.id,
            "swap_accepted",
            "Swap Accepted",
            f"{employee.name} accepted your swap request; it now awaits supervisor approval",
            related_kind="shift_swap",
            related_id=row.id,
        )
        approver = find_next_approver(db, requester, 1, CompanyProfile.from_company(requester.company))
        if approver is not None and approver.id not in {row.requester_id, row.target_id}:
            notify(
                db,
                approver.id,
                "swap_submitted",
                "Shift Swap Approval",
                f"Swap between {requester.name} and {employee.name} awaits your approval",
                related_kind="shift_swap",
                related_id=row.id,
            )
    else:
        _set_swap_status(row, "rejected", principal.actor_ref)
        row.rejection_reason = "Declined by colleague"
        notify(
            db,
            requester.id,
            "swap_declined",
            "Swap Declined",
            f"{employee.name} declined your swap request",
            related_kind="shift_swap",
            related_id=row.id,
        )
    return row


@transactional
def cancel_swap(db: Session, principal: Principal, swap_id: int) -> ShiftSwapRequest:
    employee = load_principal_employee(db, principal)
    row = _lock_swap(db, swap_id)
    if row.requester_id != employee.id:
        raise AuthorizationError("You can only cancel your own swap requests", rule="owner")
    if row.status != "pending_target":
        raise ConflictError("Can only cancel swap requests awaiting a response")
    _set_swap_status(row, "cancelled", principal.actor_ref)
    notify(
        db,
        row.target_id,
        "swap_cancelled",
        "Swap Cancelled",
        f"{employee.name} cancelled their swap request",
        related_kind="shift_swap",
        related_id=row.id,
    )
    return row


def _exchange(db: Session, mine: Schedule, theirs: Schedule) -> None:
    if mine.schedule_date == theirs.schedule_date:
        # same day: exchange the shifts, each employee keeps their row
        for field in SWAPPED_FIELDS:
            mine_value, theirs_value = getattr(mine, field), getattr(theirs, field)
            setattr(mine, field, theirs_value)
            setattr(theirs, field, mine_value)
    else:
        for schedule, new_owner in ((mine, theirs.employee_id), (theirs, mine.employee_id)):
            clash = db.execute(
                select(Schedule.id).where(
                    Schedule.employee_id == new_owner,
                    Schedule.schedule_date == schedule.schedule_date,
                )
            ).first()
            if clash is not None:
                raise ConflictError("One of the employees already has a schedule on the swapped date")
        mine.employee_id, theirs.employee_id = theirs.employee_id, mine.employee_id
    now = utc_now_naive()
    mine.updated_at = now
    theirs.updated_at = now


@transactional
def decide_swap(
    db: Session,
    principal: Principal,
    swap_id: int,
    *,
    approve: bool,
    reason: str | None = None,
    company_id: int | None = None,
) -> ShiftSwapRequest:
    reason = (reason or "").strip()[:500] or None
    if not approve and reason is None:
        raise ValidationError("Rejection reason is required")
    scope = resolve_scope(db, principal, company_id=company_id)
    if not scope.is_admin:
        require_capability(scope, "can_approve_swaps", action="swap.decide")
    row = _lock_swap(db, swap_id)
    if row.company_id != scope.company_id:
        raise NotFoundError("Swap request not found")
    if row.status != "pending_supervisor":
        raise ConflictError("Swap request is not awaiting supervisor approval")
    requester = db.get(Employee, row.requester_id)
    target = db.get(Employee, row.target_id)
    for party in (requester, target):
        require(check_target(scope, party), action="swap.decide", swap_id=row.id, employee_id=party.id)

    if approve:
        mine = _load_schedule(db, row.requester_schedule_id)
        theirs = _load_schedule(db, row.target_schedule_id)
        if mine.employee_id != row.requester_id or theirs.employee_id != row.target_id:
            raise ConflictError("Schedules changed since the swap was requested")
        for schedule in (mine, theirs):
            check_edit_window(scope, schedule.schedule_date, clock.today())
        _exchange(db, mine, theirs)
        _set_swap_status(row, "approved", principal.actor_ref)
    else:
        _set_swap_status(row, "rejected", principal.actor_ref)
        row.rejection_reason = reason
    row.supervisor_id = principal.admin_id if principal.is_admin else principal.employee_id
    row.supervisor_decided_at = utc_now_naive()

    verdict = "approved" if approve else "rejected"
    for party in (requester, target):
        notify(
            db,
            party.id,
            f"swap_{verdict}",
            f"Shift Swap {verdict.title()}",
            f"The shift swap between {requester.name} and {target.name} was {verdict}"
            + (f": {reason}" if reason and not approve else ""),
            related_kind="shift_swap",
            related_id=row.id,
        )
    log_audit_event(db, f"swap.{verdict}", company_id=row.company_id, actor=principal.actor_ref, entity=f"swap:{row.id}")
    return row


def list_my_swaps(db: Session, principal: Principal) -> list[ShiftSwapRequest]:
    employee = load_principal_employee(db, principal)
    return db.execute(
        select(ShiftSwapRequest)
        .where(or_(ShiftSwapRequest.requester_id == employee.id, ShiftSwapRequest.target_id == employee.id))
        .order_by(ShiftSwapRequest.created_at.desc(), ShiftSwapRequest.id.desc())
    ).scalars().all()


def list_pending_swaps(db: Session, principal: Principal, *, company_id: int | None = None) -> list[ShiftSwapRequest]:
    scope = resolve_scope(db, principal, company_id=company_id)
    if not scope.is_admin:
        require_capability(scope, "can_approve_swaps", action="swap.list_pending")
    rows = db.execute(
        select(ShiftSwapRequest)
        .where(ShiftSwapRequest.company_id == scope.company_id, ShiftSwapRequest.status == "pending_supervisor")
        .order_by(ShiftSwapRequest.created_at.asc())
    ).scalars().all()
    visible = []
    for row in rows:
        requester = db.get(Employee, row.requester_id)
        target = db.get(Employee, row.target_id)
        if check_target(scope, requester) and check_target(scope, target):
            visible.append(row)
    return visible
