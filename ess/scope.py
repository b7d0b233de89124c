from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from .companies import CompanyProfile
from .errors import AuthenticationError, NotFoundError, ValidationError
from .models import Company, Department, Employee, EmployeeDepartment, EmployeeOutlet, Outlet
from .roles import ADMIN_ROLES, TOP_ROLES, Role, hierarchy_level, resolve_role

PRINCIPAL_ROLES = {"employee", "admin", "super_admin"}


@dataclass
class Principal:
    role: str
    company_id: int | None
    employee_id: int | None = None
    admin_id: int | None = None
    employee_code: str | None = None
    employee_role: str | None = None
    outlet_id: int | None = None
    position: str | None = None
    features: dict = field(default_factory=dict)

    @property
    def is_admin(self) -> bool:
        return self.role in {"admin", "super_admin"}

    @property
    def is_super_admin(self) -> bool:
        return self.role == "super_admin"

    @property
    def actor_ref(self) -> str:
        if self.is_admin:
            return f"{self.role}:{self.admin_id}"
        return f"employee:{self.employee_id}"


@dataclass(frozen=True)
class Scope:
    company: Company
    profile: CompanyProfile
    role: Role
    hierarchy_level: int
    managed_kind: str
    managed_ids: frozenset
    whole_company: bool = False
    employee: Employee | None = None

    @property
    def company_id(self) -> int:
        return self.company.id

    @property
    def managed_outlets(self) -> frozenset:
        return self.managed_ids if self.managed_kind == "outlet" else frozenset()

    @property
    def managed_departments(self) -> frozenset:
        return self.managed_ids if self.managed_kind == "department" else frozenset()

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def unit_of(self, employee: Employee) -> int | None:
        if self.managed_kind == "outlet":
            return employee.outlet_id
        return employee.department_id

    def covers(self, employee: Employee) -> bool:
        if employee.company_id != self.company.id:
            return False
        if self.whole_company:
            return True
        return self.unit_of(employee) in self.managed_ids


def employee_role(employee: Employee) -> Role:
    position = employee.position
    return resolve_role(
        position_role=position.role if position is not None else None,
        employee_role=employee.employee_role,
        position_title=employee.position_title or (position.name if position is not None else None),
    )


def employee_level(employee: Employee) -> int:
    return hierarchy_level(employee_role(employee))


def load_company(db: Session, company_id: int) -> Company:
    company = db.get(Company, company_id)
    if company is None:
        raise NotFoundError("Company not found")
    return company


def load_principal_employee(db: Session, principal: Principal) -> Employee:
    if principal.employee_id is None:
        raise AuthenticationError("Employee session required")
    employee = db.get(Employee, principal.employee_id)
    if employee is None or employee.status != "active":
        raise AuthenticationError("Employee account is not active")
    return employee


def _all_unit_ids(db: Session, kind: str, company_id: int) -> frozenset:
    model = Outlet if kind == "outlet" else Department
    rows = db.execute(select(model.id).where(model.company_id == company_id)).scalars().all()
    return frozenset(rows)


def _assigned_unit_ids(db: Session, kind: str, employee_id: int) -> set:
    if kind == "outlet":
        stmt = select(EmployeeOutlet.outlet_id).where(EmployeeOutlet.employee_id == employee_id)
    else:
        stmt = select(EmployeeDepartment.department_id).where(EmployeeDepartment.employee_id == employee_id)
    return set(db.execute(stmt).scalars().all())


def _managed_units(db: Session, employee: Employee, role: Role, profile: CompanyProfile) -> set:
    kind = profile.grouping
    own = employee.outlet_id if kind == "outlet" else employee.department_id
    designated = not profile.is_outlet and (
        bool(employee.is_schedule_manager) or employee.id in profile.indoor_sales_manager_ids
    )
    if role == Role.SUPERVISOR:
        if own is not None:
            return {own}
        return _assigned_unit_ids(db, kind, employee.id)
    if role == Role.MANAGER or designated:
        units = _assigned_unit_ids(db, kind, employee.id)
        if own is not None:
            units.add(own)
        return units
    return set()


def resolve_scope(db: Session, principal: Principal, *, company_id: int | None = None) -> Scope:
    """Resolve company, role, hierarchy level and managed units for a principal.

    ``company_id`` is a company-context override honored for super admins only.
    """
    if principal.role not in PRINCIPAL_ROLES:
        raise AuthenticationError("Unknown principal role")

    if principal.is_admin:
        target_company_id = principal.company_id
        if principal.is_super_admin and company_id is not None:
            target_company_id = company_id
        if target_company_id is None:
            raise ValidationError("Company context is required")
        company = load_company(db, target_company_id)
        profile = CompanyProfile.from_company(company)
        role = Role.SUPER_ADMIN if principal.is_super_admin else Role.ADMIN
        return Scope(
            company=company,
            profile=profile,
            role=role,
            hierarchy_level=hierarchy_level(role),
            managed_kind=profile.grouping,
            managed_ids=_all_unit_ids(db, profile.grouping, company.id),
            whole_company=True,
        )

    employee = load_principal_employee(db, principal)
    company = load_company(db, employee.company_id)
    profile = CompanyProfile.from_company(company)
    role = employee_role(employee)
    if role in TOP_ROLES:
        managed = _all_unit_ids(db, profile.grouping, company.id)
        whole = True
    else:
        managed = frozenset(_managed_units(db, employee, role, profile))
        whole = False
    return Scope(
        company=company,
        profile=profile,
        role=role,
        hierarchy_level=hierarchy_level(role),
        managed_kind=profile.grouping,
        managed_ids=managed,
        whole_company=whole,
        employee=employee,
    )
