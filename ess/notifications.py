from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .clock import utc_now_naive
from .db import transactional
from .errors import NotFoundError
from .models import Notification
from .scope import Principal, load_principal_employee


def notify(
    db: Session,
    employee_id: int,
    type_: str,
    title: str,
    message: str,
    *,
    related_kind: str | None = None,
    related_id: int | None = None,
) -> Notification:
    row = Notification(
        employee_id=employee_id,
        type=(type_ or "").strip()[:40] or "generic",
        title=(title or "").strip()[:160] or "Update",
        message=(message or "").strip()[:500] or "Update",
        related_kind=related_kind,
        related_id=related_id,
        is_read=False,
        created_at=utc_now_naive(),
    )
    db.add(row)
    db.flush()
    return row


def list_notifications(
    db: Session,
    principal: Principal,
    *,
    unread_only: bool = False,
    limit: int = 50,
) -> list[Notification]:
    employee = load_principal_employee(db, principal)
    stmt = select(Notification).where(Notification.employee_id == employee.id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(max(1, min(int(limit), 200)))
    return db.execute(stmt).scalars().all()


def unread_count(db: Session, principal: Principal) -> int:
    employee = load_principal_employee(db, principal)
    return int(
        db.execute(
            select(func.count(Notification.id)).where(
                Notification.employee_id == employee.id,
                Notification.is_read.is_(False),
            )
        ).scalar_one()
    )


@transactional
def mark_read(db: Session, principal: Principal, notification_id: int) -> Notification:
    employee = load_principal_employee(db, principal)
    row = db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.employee_id == employee.id,
        )
    ).scalar_one_or_none()
    if row is None:
        raise NotFoundError("Notification not found")
    if not row.is_read:
        row.is_read = True
        row.read_at = utc_now_naive()
    return row


@transactional
def mark_all_read(db: Session, principal: Principal) -> int:
    employee = load_principal_employee(db, principal)
    result = db.execute(
        update(Notification)
        .where(Notification.employee_id == employee.id, Notification.is_read.is_(False))
        .values(is_read=True, read_at=utc_now_naive())
    )
    return int(result.rowcount or 0)
