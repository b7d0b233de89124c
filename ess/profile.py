import re
from datetime import date

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import clock
from .audit import log_audit_event
from .clock import utc_now_naive
from .db import transactional
from .errors import ConflictError, ValidationError
from .models import Department, Employee, Outlet
from .scope import Principal, load_principal_employee

logger = structlog.get_logger("ess.profile")

PROFILE_REQUIRED_FIELDS = ("name", "ic_number", "date_of_birth", "phone", "address", "bank_name", "bank_account_no")
EDITABLE_BEFORE_COMPLETE = (
    "name",
    "date_of_birth",
    "address",
    "phone",
    "email",
    "username",
    "bank_name",
    "bank_account_no",
    "bank_account_holder",
    "marital_status",
    "spouse_working",
    "children_count",
)
EDITABLE_AFTER_COMPLETE = ("phone", "address", "username")
COMPLETION_DAY_OF_MONTH = 28
USERNAME_PATTERN = re.compile(r"^[a-z0-9_]+$")


def missing_fields(employee: Employee) -> list[str]:
    missing = []
    for field in PROFILE_REQUIRED_FIELDS:
        value = getattr(employee, field)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(field)
    return missing


def editable_fields(employee: Employee) -> tuple:
    return EDITABLE_AFTER_COMPLETE if employee.profile_completed else EDITABLE_BEFORE_COMPLETE


def completion_deadline(join_date: date) -> date:
    """Payroll closes on the 28th: joiners after the 28th get until the 28th of the next month."""
    if join_date.day <= COMPLETION_DAY_OF_MONTH:
        return join_date.replace(day=COMPLETION_DAY_OF_MONTH)
    if join_date.month == 12:
        return date(join_date.year + 1, 1, COMPLETION_DAY_OF_MONTH)
    return date(join_date.year, join_date.month + 1, COMPLETION_DAY_OF_MONTH)


def profile_status(employee: Employee) -> dict:
    missing = [] if employee.profile_completed else missing_fields(employee)
    deadline = completion_deadline(employee.join_date)
    return {
        "complete": bool(employee.profile_completed) or not missing,
        "profile_completed_at": employee.profile_completed_at,
        "missing_fields": missing,
        "total_required": len(PROFILE_REQUIRED_FIELDS),
        "completed_count": len(PROFILE_REQUIRED_FIELDS) - len(missing),
        "deadline": deadline,
        "days_remaining": (deadline - clock.today()).days,
        "editable_fields": list(editable_fields(employee)),
    }


def get_profile(db: Session, principal: Principal) -> dict:
    employee = load_principal_employee(db, principal)
    outlet = db.get(Outlet, employee.outlet_id) if employee.outlet_id is not None else None
    department = db.get(Department, employee.department_id) if employee.department_id is not None else None
    return {
        "employee": employee,
        "outlet_name": outlet.name if outlet is not None else None,
        "department_name": department.name if department is not None else None,
        "profile_status": profile_status(employee),
    }


def _normalize_username(db: Session, employee: Employee, raw) -> str | None:
    username = (raw or "").strip().lower()
    if not username:
        return None
    if len(username) < 4:
        raise ValidationError("Username must be at least 4 characters")
    if not USERNAME_PATTERN.match(username):
        raise ValidationError("Username can only contain letters, numbers, and underscores")
    taken = db.execute(
        select(Employee.id).where(func.lower(Employee.username) == username, Employee.id != employee.id)
    ).first()
    if taken is not None:
        raise ConflictError("Username is already taken")
    return username


def _mark_complete(employee: Employee) -> None:
    employee.profile_completed = True
    employee.profile_completed_at = utc_now_naive()


@transactional
def update_profile(db: Session, principal: Principal, changes: dict) -> dict:
    employee = load_principal_employee(db, principal)
    allowed = editable_fields(employee)
    updates = {field: value for field, value in changes.items() if field in allowed}
    if not updates:
        raise ValidationError(f"No valid fields to update. Editable fields: {', '.join(allowed)}")
    if "username" in updates:
        updates["username"] = _normalize_username(db, employee, updates["username"])
    if "name" in updates and not (updates["name"] or "").strip():
        raise ValidationError("Name cannot be empty")

    for field, value in updates.items():
        if isinstance(value, str):
            value = value.strip() or None
        setattr(employee, field, value)
    employee.updated_at = utc_now_naive()

    if not employee.profile_completed and not missing_fields(employee):
        _mark_complete(employee)
    db.flush()

    log_audit_event(
        db,
        "profile.update",
        company_id=employee.company_id,
        actor=principal.actor_ref,
        entity=f"employee:{employee.id}",
        payload={"fields": sorted(updates)},
    )
    logger.info("profile_updated", employee_id=employee.id, fields=sorted(updates), completed=employee.profile_completed)
    return get_profile(db, principal)


@transactional
def complete_profile(db: Session, principal: Principal) -> dict:
    employee = load_principal_employee(db, principal)
    if employee.profile_completed:
        raise ConflictError("Profile is already completed")
    missing = missing_fields(employee)
    if missing:
        raise ValidationError(f"Cannot complete profile - missing required fields: {', '.join(missing)}")
    _mark_complete(employee)
    log_audit_event(db, "profile.complete", company_id=employee.company_id, actor=principal.actor_ref, entity=f"employee:{employee.id}")
    return profile_status(employee)
