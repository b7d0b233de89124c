from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from .authn import (
    authenticate_admin,
    authenticate_employee,
    clear_session_cookie,
    create_access_token,
    get_principal,
    principal_for_admin,
    principal_for_employee,
    set_session_cookie,
)
from .db import get_db
from .permissions import build_capabilities
from .schemas import AdminLogin, CapabilitiesOut, EmployeeLogin, SessionOut
from .scope import Principal, load_principal_employee, resolve_scope

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _capabilities(db: Session, principal: Principal) -> CapabilitiesOut | None:
    # super admins pick a company per request, so there is no bundle until they do
    if principal.company_id is None:
        return None
    return CapabilitiesOut(**build_capabilities(resolve_scope(db, principal)))


def _to_session_out(db: Session, principal: Principal, token: str | None = None) -> SessionOut:
    return SessionOut(
        role=principal.role,
        company_id=principal.company_id,
        employee_id=principal.employee_id,
        admin_id=principal.admin_id,
        employee_code=principal.employee_code,
        employee_role=principal.employee_role,
        outlet_id=principal.outlet_id,
        position=principal.position,
        access_token=token,
        capabilities=_capabilities(db, principal),
    )


@router.post("/login", response_model=SessionOut)
def login(payload: EmployeeLogin, response: Response, db: Session = Depends(get_db)):
    employee = authenticate_employee(db, payload.employee_id, payload.password)
    principal = principal_for_employee(employee)
    token = create_access_token(principal)
    set_session_cookie(response, token)
    return _to_session_out(db, principal, token)


@router.post("/admin/login", response_model=SessionOut)
def admin_login(payload: AdminLogin, response: Response, db: Session = Depends(get_db)):
    admin = authenticate_admin(db, payload.username, payload.password)
    principal = principal_for_admin(admin)
    token = create_access_token(principal)
    set_session_cookie(response, token)
    return _to_session_out(db, principal, token)


@router.get("/me", response_model=SessionOut)
def me(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    if not principal.is_admin:
        # a deactivated employee keeps a valid token until it expires
        load_principal_employee(db, principal)
    return _to_session_out(db, principal)


@router.post("/logout", status_code=204)
def logout(response: Response):
    clear_session_cookie(response)
    return None
