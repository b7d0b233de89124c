import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from .audit import log_audit_event
from .clock import utc_now_naive
from .db import transactional
from .errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .models import ClockInRecord, Employee
from .notifications import notify
from .permissions import check_target, has_capability, require, require_capability
from .scope import Principal, Scope, resolve_scope

logger = structlog.get_logger("ess.overtime")

BATCH_ACTIONS = {"approve", "reject"}
MAX_BATCH_SIZE = 200


def _format_minutes(minutes: int) -> str:
    hours, rest = divmod(int(minutes or 0), 60)
    return f"{hours}h {rest}m" if hours else f"{rest}m"


def _require_approver(scope: Scope, action: str) -> None:
    if not scope.is_admin:
        require_capability(scope, "can_approve_ot", action=action)


def list_pending_overtime(db: Session, principal: Principal, *, company_id: int | None = None) -> list[ClockInRecord]:
    """Flagged, undecided OT the principal may decide: in scope and strictly below them."""
    scope = resolve_scope(db, principal, company_id=company_id)
    if not scope.is_admin and not has_capability(scope, "can_approve_ot"):
        return []
    unit_column = Employee.outlet_id if scope.managed_kind == "outlet" else Employee.department_id
    stmt = (
        select(ClockInRecord)
        .join(Employee, Employee.id == ClockInRecord.employee_id)
        .where(
            Employee.company_id == scope.company_id,
            ClockInRecord.ot_flagged.is_(True),
            ClockInRecord.ot_approved.is_(None),
        )
    )
    if not scope.whole_company:
        if not scope.managed_ids:
            return []
        stmt = stmt.where(unit_column.in_(scope.managed_ids))
    rows = db.execute(stmt.order_by(ClockInRecord.work_date.asc(), ClockInRecord.id.asc())).scalars().all()
    return [row for row in rows if check_target(scope, row.employee)]


def _lock_record(db: Session, record_id: int) -> ClockInRecord:
    record = db.execute(
        select(ClockInRecord)
        .where(ClockInRecord.id == record_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if record is None:
        raise NotFoundError("Record not found")
    return record


def _decide(db: Session, scope: Scope, principal: Principal, record: ClockInRecord, *, approve: bool, reason: str | None) -> None:
    if not record.ot_flagged:
        raise ValidationError("No flagged overtime")
    if record.ot_approved is not None:
        raise ConflictError("Already processed")
    owner = db.get(Employee, record.employee_id)
    require(
        check_target(scope, owner),
        action="overtime.approve" if approve else "overtime.reject",
        record_id=record.id,
    )

    record.ot_approved = approve
    record.ot_approved_by = principal.actor_ref
    record.ot_approved_at = utc_now_naive()
    record.ot_rejection_reason = None if approve else reason
    record.updated_at = utc_now_naive()

    day = record.work_date.isoformat()
    if approve:
        notify(
            db,
            owner.id,
            "ot_approved",
            "OT Approved",
            f"Your overtime of {_format_minutes(record.ot_minutes)} on {day} has been approved",
            related_kind="overtime",
            related_id=record.id,
        )
    else:
        notify(
            db,
            owner.id,
            "ot_rejected",
            "OT Rejected",
            f"Your overtime on {day} was rejected: {reason}",
            related_kind="overtime",
            related_id=record.id,
        )
    log_audit_event(
        db,
        "overtime.approved" if approve else "overtime.rejected",
        company_id=owner.company_id,
        actor=principal.actor_ref,
        entity=f"overtime:{record.id}",
        payload={"ot_minutes": record.ot_minutes},
    )
    logger.info(
        "request_transition",
        request_kind="overtime",
        request_id=record.id,
        from_status="pending",
        to_status="approved" if approve else "rejected",
        actor=principal.actor_ref,
    )


def _clean_reason(approve: bool, reason: str | None) -> str | None:
    reason = (reason or "").strip()[:500] or None
    if not approve and reason is None:
        raise ValidationError("Rejection reason is required")
    return reason


@transactional
def decide_overtime(
    db: Session,
    principal: Principal,
    record_id: int,
    *,
    approve: bool,
    reason: str | None = None,
    company_id: int | None = None,
) -> ClockInRecord:
    reason = _clean_reason(approve, reason)
    scope = resolve_scope(db, principal, company_id=company_id)
    _require_approver(scope, "overtime.decide")
    record = _lock_record(db, record_id)
    _decide(db, scope, principal, record, approve=approve, reason=reason)
    return record


def _skip_reason(exc: Exception) -> str:
    if isinstance(exc, AuthorizationError) and exc.rule == "hierarchy":
        return "Hierarchy restriction"
    return getattr(exc, "message", str(exc))


@transactional
def batch_decide_overtime(
    db: Session,
    principal: Principal,
    record_ids: list[int],
    *,
    action: str,
    reason: str | None = None,
    company_id: int | None = None,
) -> dict:
    """Decide many OT records in one transaction with a savepoint per record.

    A record that fails a check is rolled back to its savepoint and reported
    under ``skipped``; the others commit together.
    """
    action = (action or "").strip().lower()
    if action not in BATCH_ACTIONS:
        raise ValidationError("action must be 'approve' or 'reject'")
    if not record_ids:
        raise ValidationError("No records selected")
    if len(record_ids) > MAX_BATCH_SIZE:
        raise ValidationError(f"At most {MAX_BATCH_SIZE} records per batch")
    approve = action == "approve"
    reason = _clean_reason(approve, reason)
    scope = resolve_scope(db, principal, company_id=company_id)
    _require_approver(scope, "overtime.batch")

    outcome = {"approved": [], "rejected": [], "skipped": []}
    for record_id in record_ids:
        try:
            with db.begin_nested():
                record = _lock_record(db, int(record_id))
                _decide(db, scope, principal, record, approve=approve, reason=reason)
        except (ValidationError, ConflictError, AuthorizationError, NotFoundError) as exc:
            outcome["skipped"].append({"id": int(record_id), "reason": _skip_reason(exc)})
            continue
        outcome["approved" if approve else "rejected"].append(int(record_id))

    logger.info(
        "overtime_batch_decided",
        action=action,
        actor=principal.actor_ref,
        approved=len(outcome["approved"]),
        rejected=len(outcome["rejected"]),
        skipped=len(outcome["skipped"]),
    )
    return outcome


def expire_stale_overtime(db: Session, cutoff, reason: str) -> int:
    rows = db.execute(
        select(ClockInRecord).where(
            ClockInRecord.ot_flagged.is_(True),
            ClockInRecord.ot_approved.is_(None),
            ClockInRecord.created_at < cutoff,
        )
    ).scalars().all()
    for record in rows:
        record.ot_approved = False
        record.ot_approved_by = "system"
        record.ot_approved_at = utc_now_naive()
        record.ot_rejection_reason = reason
        notify(
            db,
            record.employee_id,
            "ot_expired",
            "OT Expired",
            f"Your overtime on {record.work_date.isoformat()} expired: {reason}",
            related_kind="overtime",
            related_id=record.id,
        )
    return len(rows)
