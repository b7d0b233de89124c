from sqlalchemy import select
from sqlalchemy.orm import Session

from .audit import log_audit_event
from .clock import utc_now_naive
from .db import transactional
from .errors import AuthorizationError, NotFoundError, ValidationError
from .models import Employee, Letter
from .notifications import notify
from .scope import Principal, load_principal_employee, resolve_scope

LETTER_TYPES = {"offer", "confirmation", "promotion", "warning", "appreciation", "transfer", "termination", "general"}


@transactional
def issue_letter(
    db: Session,
    principal: Principal,
    *,
    employee_id: int,
    letter_type: str,
    title: str,
    content: str,
    company_id: int | None = None,
) -> Letter:
    if not principal.is_admin:
        raise AuthorizationError("Only HR admins can issue letters", rule="admin")
    scope = resolve_scope(db, principal, company_id=company_id)
    employee = db.get(Employee, employee_id)
    if employee is None or employee.company_id != scope.company_id:
        raise NotFoundError("Employee not found")
    letter_type = (letter_type or "").strip().lower()
    if letter_type not in LETTER_TYPES:
        raise ValidationError(f"Invalid letter type: {letter_type or '(empty)'}")
    title = (title or "").strip()[:200]
    content = (content or "").strip()
    if not title or not content:
        raise ValidationError("Title and content are required")

    row = Letter(
        employee_id=employee.id,
        company_id=employee.company_id,
        letter_type=letter_type,
        title=title,
        content=content,
        issued_by=principal.actor_ref,
        status="unread",
        created_at=utc_now_naive(),
    )
    db.add(row)
    db.flush()
    notify(
        db,
        employee.id,
        "letter_issued",
        "New HR Letter",
        f"You have received a new letter: {title}",
        related_kind="letter",
        related_id=row.id,
    )
    log_audit_event(
        db,
        "letter.issue",
        company_id=employee.company_id,
        actor=principal.actor_ref,
        entity=f"letter:{row.id}",
        payload={"employee_id": employee.id, "letter_type": letter_type},
    )
    return row


def list_my_letters(db: Session, principal: Principal) -> list[Letter]:
    employee = load_principal_employee(db, principal)
    return db.execute(
        select(Letter).where(Letter.employee_id == employee.id).order_by(Letter.created_at.desc(), Letter.id.desc())
    ).scalars().all()


@transactional
def open_letter(db: Session, principal: Principal, letter_id: int) -> Letter:
    employee = load_principal_employee(db, principal)
    row = db.execute(
        select(Letter).where(Letter.id == letter_id, Letter.employee_id == employee.id)
    ).scalar_one_or_none()
    if row is None:
        raise NotFoundError("Letter not found")
    if row.status != "read":
        row.status = "read"
        row.read_at = utc_now_naive()
    return row
