from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import clock, lifecycle
from .db import transactional
from .errors import ValidationError
from .models import Claim
from .roles import TOP_ROLES, Role
from .scope import Principal, employee_role, load_principal_employee, resolve_scope

CLAIM_CATEGORIES = {"medical", "travel", "meal", "parking", "mileage", "phone", "training", "other"}


class ClaimKind(lifecycle.RequestKind):
    name = "claim"
    label = "Claim"
    model = Claim
    capability = "can_approve_claims"

    def describe(self, row: Claim) -> str:
        return f"{row.category} claim of {float(row.amount):.2f} dated {row.claim_date.isoformat()}"

    def on_create(self, db, row, owner, profile):
        # nobody in the company outranks these owners, so they go straight to admin
        if employee_role(owner) in {Role.MANAGER, *TOP_ROLES}:
            return lifecycle.FINAL_LEVEL, False
        return 1, False


CLAIM = ClaimKind()


@transactional
def submit_claim(
    db: Session,
    principal: Principal,
    *,
    claim_date: date,
    category: str,
    amount: float,
    description: str | None = None,
    receipt_url: str | None = None,
) -> Claim:
    scope = resolve_scope(db, principal)
    employee = scope.employee
    if employee is None:
        raise ValidationError("Only employees can submit claims")
    category = (category or "").strip().lower()
    if category not in CLAIM_CATEGORIES:
        raise ValidationError(f"Invalid claim category: {category or '(empty)'}")
    if amount is None or float(amount) <= 0:
        raise ValidationError("Amount must be greater than zero")
    if claim_date > clock.today():
        raise ValidationError("Claim date cannot be in the future")

    row = Claim(
        employee_id=employee.id,
        claim_date=claim_date,
        category=category,
        amount=round(float(amount), 2),
        description=(description or "").strip()[:500] or None,
        receipt_url=(receipt_url or "").strip()[:500] or None,
    )
    return lifecycle.create(db, CLAIM, row, employee, scope.profile, actor=principal.actor_ref)


@transactional
def approve_claim(db: Session, principal: Principal, claim_id: int, *, company_id: int | None = None) -> Claim:
    scope = resolve_scope(db, principal, company_id=company_id)
    return lifecycle.approve(db, CLAIM, scope, principal, claim_id)


@transactional
def reject_claim(
    db: Session,
    principal: Principal,
    claim_id: int,
    *,
    reason: str | None,
    company_id: int | None = None,
) -> Claim:
    scope = resolve_scope(db, principal, company_id=company_id)
    return lifecycle.reject(db, CLAIM, scope, principal, claim_id, reason)


@transactional
def cancel_claim(db: Session, principal: Principal, claim_id: int) -> Claim:
    scope = resolve_scope(db, principal)
    return lifecycle.cancel(db, CLAIM, scope, principal, claim_id)


def list_my_claims(
    db: Session,
    principal: Principal,
    *,
    status_filter: str | None = None,
    year: int | None = None,
) -> list[Claim]:
    employee = load_principal_employee(db, principal)
    stmt = select(Claim).where(Claim.employee_id == employee.id)
    if status_filter:
        stmt = stmt.where(Claim.status == status_filter.strip().lower())
    if year:
        stmt = stmt.where(Claim.claim_date >= date(year, 1, 1), Claim.claim_date <= date(year, 12, 31))
    return db.execute(stmt.order_by(Claim.claim_date.desc(), Claim.id.desc())).scalars().all()


def list_team_pending_claims(db: Session, principal: Principal, *, company_id: int | None = None) -> list[Claim]:
    scope = resolve_scope(db, principal, company_id=company_id)
    return lifecycle.pending_for_approver(db, CLAIM, scope)


def expire_stale_claims(db: Session, cutoff, reason: str) -> int:
    rows = db.execute(select(Claim).where(Claim.status == "pending", Claim.created_at < cutoff)).scalars().all()
    for row in rows:
        lifecycle.expire(db, CLAIM, row, reason)
    return len(rows)
