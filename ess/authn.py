from datetime import datetime, timedelta, timezone

import structlog
from fastapi import Cookie, Header
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .config import settings
from .errors import AuthenticationError, AuthorizationError
from .models import AdminUser, Employee
from .scope import Principal

logger = structlog.get_logger("ess.authn")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def session_seconds() -> int:
    return max(1, int(settings.SESSION_HOURS)) * 3600


def create_access_token(principal: Principal) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": principal.actor_ref,
        "role": principal.role,
        "company_id": principal.company_id,
        "employee_id": principal.employee_id,
        "admin_id": principal.admin_id,
        "employee_code": principal.employee_code,
        "employee_role": principal.employee_role,
        "outlet_id": principal.outlet_id,
        "position": principal.position,
        "features": principal.features or {},
        "iat": now,
        "exp": now + timedelta(seconds=session_seconds()),
    }
    return jwt.encode(payload, settings.AUTH_SECRET_KEY, algorithm=settings.AUTH_ALGORITHM)


def decode_access_token(token: str) -> Principal | None:
    try:
        payload = jwt.decode(token, settings.AUTH_SECRET_KEY, algorithms=[settings.AUTH_ALGORITHM])
    except JWTError:
        return None
    role = str(payload.get("role") or "").strip().lower()
    if role not in {"employee", "admin", "super_admin"}:
        return None
    if role == "employee" and not payload.get("employee_id"):
        return None
    if role != "employee" and not payload.get("admin_id"):
        return None
    return Principal(
        role=role,
        company_id=payload.get("company_id"),
        employee_id=payload.get("employee_id"),
        admin_id=payload.get("admin_id"),
        employee_code=payload.get("employee_code"),
        employee_role=payload.get("employee_role"),
        outlet_id=payload.get("outlet_id"),
        position=payload.get("position"),
        features=dict(payload.get("features") or {}),
    )


def extract_principal(authorization: str | None, cookie_token: str | None) -> Principal | None:
    """Bearer header wins over the session cookie."""
    raw = (authorization or "").strip()
    if raw.lower().startswith("bearer "):
        token = raw[7:].strip()
        if token:
            return decode_access_token(token)
    if cookie_token:
        return decode_access_token(cookie_token)
    return None


def principal_for_employee(employee: Employee) -> Principal:
    position = employee.position
    return Principal(
        role="employee",
        company_id=employee.company_id,
        employee_id=employee.id,
        employee_code=employee.employee_code,
        employee_role=employee.employee_role,
        outlet_id=employee.outlet_id,
        position=employee.position_title or (position.name if position is not None else None),
    )


def principal_for_admin(admin: AdminUser) -> Principal:
    return Principal(
        role="super_admin" if admin.role == "super_admin" else "admin",
        company_id=None if admin.role == "super_admin" else admin.company_id,
        admin_id=admin.id,
    )


def authenticate_employee(db: Session, employee_code: str, password: str) -> Employee:
    code = (employee_code or "").strip().upper()
    employee = db.execute(
        select(Employee).where(func.upper(Employee.employee_code) == code)
    ).scalar_one_or_none()
    if employee is None or not verify_password(password, employee.password_hash):
        logger.info("login_failed", kind="employee", employee_code=code)
        raise AuthenticationError("Invalid employee ID or password")
    if employee.status != "active":
        raise AuthorizationError("Your account is not active", rule="account.status")
    if not employee.ess_enabled:
        raise AuthorizationError("ESS access is not enabled for your account", rule="account.ess")
    logger.info("login_succeeded", kind="employee", employee_id=employee.id)
    return employee


def authenticate_admin(db: Session, username: str, password: str) -> AdminUser:
    name = (username or "").strip().lower()
    admin = db.execute(
        select(AdminUser).where(func.lower(AdminUser.username) == name)
    ).scalar_one_or_none()
    if admin is None or not admin.is_active or not verify_password(password, admin.password_hash):
        logger.info("login_failed", kind="admin", username=name)
        raise AuthenticationError("Invalid username or password")
    logger.info("login_succeeded", kind="admin", admin_id=admin.id)
    return admin


def set_session_cookie(response, token: str) -> None:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=session_seconds(),
        httponly=True,
        secure=bool(settings.COOKIE_SECURE),
        samesite="strict",
        path="/",
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(
        key=settings.SESSION_COOKIE_NAME,
        httponly=True,
        secure=bool(settings.COOKIE_SECURE),
        samesite="strict",
        path="/",
    )


def get_principal(
    authorization: str | None = Header(default=None),
    ess_session: str | None = Cookie(default=None, alias=settings.SESSION_COOKIE_NAME),
) -> Principal:
    principal = extract_principal(authorization, ess_session)
    if principal is None:
        raise AuthenticationError("Not authenticated")
    return principal
