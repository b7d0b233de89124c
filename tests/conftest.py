from datetime import date, datetime, time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ess import clock
from ess import models  # noqa: F401
from ess.authn import create_access_token, hash_password, principal_for_admin, principal_for_employee
from ess.db import Base, get_db, install_sqlite_pragmas
from ess.main import create_app
from ess.models import (
    AdminUser,
    ClockInRecord,
    Company,
    Department,
    Employee,
    EmployeeDepartment,
    EmployeeOutlet,
    LeaveBalance,
    LeaveType,
    Outlet,
    Position,
    PublicHoliday,
    Schedule,
    ShiftTemplate,
)


class Seeder:
    """Small factory for test rows; every helper commits."""

    def __init__(self, db):
        self.db = db
        self._seq = 0

    def _save(self, row):
        self.db.add(row)
        self.db.commit()
        return row

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    def company(self, code: str = "MIMIX", grouping: str = "outlet", **settings) -> Company:
        return self._save(Company(code=code, name=f"{code} Sdn Bhd", grouping_type=grouping, settings=settings))

    def outlet(self, company: Company, name: str = "Outlet") -> Outlet:
        return self._save(Outlet(company_id=company.id, name=name))

    def department(self, company: Company, name: str = "Department") -> Department:
        return self._save(Department(company_id=company.id, name=name))

    def position(self, name: str, role: str | None = None, company: Company | None = None) -> Position:
        return self._save(Position(name=name, role=role, company_id=company.id if company else None))

    def employee(
        self,
        company: Company,
        *,
        role: str = "staff",
        outlet: Outlet | None = None,
        department: Department | None = None,
        code: str | None = None,
        name: str | None = None,
        join_date: date = date(2020, 1, 1),
        password: str | None = None,
        **fields,
    ) -> Employee:
        number = self._next()
        return self._save(
            Employee(
                company_id=company.id,
                employee_code=code or f"E{number:04d}",
                name=name or f"Employee {number}",
                outlet_id=outlet.id if outlet else None,
                department_id=department.id if department else None,
                employee_role=role,
                join_date=join_date,
                password_hash=hash_password(password) if password else None,
                **fields,
            )
        )

    def assign_outlet(self, employee: Employee, outlet: Outlet) -> None:
        self._save(EmployeeOutlet(employee_id=employee.id, outlet_id=outlet.id))

    def assign_department(self, employee: Employee, department: Department) -> None:
        self._save(EmployeeDepartment(employee_id=employee.id, department_id=department.id))

    def admin(self, company: Company | None, *, username: str = "hr", role: str = "admin", password: str = "secret-pass") -> AdminUser:
        return self._save(
            AdminUser(
                username=username,
                name=username.title(),
                role=role,
                company_id=company.id if company else None,
                password_hash=hash_password(password),
            )
        )

    def leave_type(self, company: Company | None, code: str = "AL", name: str = "Annual Leave", **fields) -> LeaveType:
        fields.setdefault("default_days_per_year", 12)
        return self._save(LeaveType(company_id=company.id if company else None, code=code, name=name, **fields))

    def balance(self, employee: Employee, leave_type: LeaveType, year: int, entitled: float, *, used: float = 0, carried: float = 0) -> LeaveBalance:
        return self._save(
            LeaveBalance(
                employee_id=employee.id,
                leave_type_id=leave_type.id,
                year=year,
                entitled_days=entitled,
                used_days=used,
                carried_forward=carried,
            )
        )

    def holiday(self, company: Company | None, day: date, name: str = "Holiday") -> PublicHoliday:
        return self._save(PublicHoliday(company_id=company.id if company else None, holiday_date=day, name=name))

    def template(self, company: Company, code: str, start: time | None, end: time | None, *, break_duration: int = 60, is_off: bool = False) -> ShiftTemplate:
        return self._save(
            ShiftTemplate(
                company_id=company.id,
                code=code,
                name=code,
                start_time=start,
                end_time=end,
                break_duration=break_duration,
                is_off=is_off,
            )
        )

    def schedule(
        self,
        employee: Employee,
        day: date,
        *,
        start: time | None = time(9, 0),
        end: time | None = time(18, 0),
        break_duration: int = 60,
        status: str = "scheduled",
    ) -> Schedule:
        return self._save(
            Schedule(
                employee_id=employee.id,
                company_id=employee.company_id,
                outlet_id=employee.outlet_id,
                department_id=employee.department_id,
                schedule_date=day,
                shift_start=start if status == "scheduled" else None,
                shift_end=end if status == "scheduled" else None,
                break_duration=break_duration,
                status=status,
            )
        )

    def flagged_ot(self, employee: Employee, day: date, *, minutes: int = 90, approved: bool | None = None) -> ClockInRecord:
        return self._save(
            ClockInRecord(
                employee_id=employee.id,
                company_id=employee.company_id,
                outlet_id=employee.outlet_id,
                department_id=employee.department_id,
                work_date=day,
                clock_in_1=datetime.combine(day, time(9, 0)),
                clock_out_2=datetime.combine(day, time(20, 0)),
                total_work_minutes=510 + minutes,
                ot_minutes=minutes,
                ot_flagged=True,
                ot_approved=approved,
                status="completed",
            )
        )


def as_principal(row):
    if isinstance(row, AdminUser):
        return principal_for_admin(row)
    return principal_for_employee(row)


def auth_headers(row) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(as_principal(row))}"}


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test_ess.db'}", connect_args={"check_same_thread": False})
    install_sqlite_pragmas(engine)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seed(db):
    return Seeder(db)


@pytest.fixture
def freeze(monkeypatch):
    """Pin company-local wall-clock time: ``freeze(datetime(2025, 6, 1, 9, 0))``."""

    def _freeze(moment: datetime) -> datetime:
        monkeypatch.setattr(clock, "now", lambda: moment)
        return moment

    return _freeze


@pytest.fixture
def make_client(session_factory):
    def _make_client() -> TestClient:
        app = create_app()

        def override_get_db():
            session = session_factory()
            try:
                yield session
            finally:
                session.close()

        app.dependency_overrides[get_db] = override_get_db
        return TestClient(app)

    return _make_client


@pytest.fixture
def principal_of():
    return as_principal


@pytest.fixture
def headers_for():
    return auth_headers
