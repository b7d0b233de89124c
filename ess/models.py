from datetime import date, datetime, time

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, Time, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .clock import utc_now_naive
from .db import Base

REQUEST_STATUSES = ("pending", "approved", "rejected", "cancelled")


def _days_column(default: float = 0):
    return mapped_column(Numeric(6, 2, asdecimal=False), default=default)


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(160))
    grouping_type: Mapped[str] = mapped_column(String(20), default="outlet")
    settings: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class Outlet(Base):
    __tablename__ = "outlets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    name: Mapped[str] = mapped_column(String(160))


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    name: Mapped[str] = mapped_column(String(160))


class Position(Base):
    __tablename__ = "positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int | None] = mapped_column(ForeignKey("companies.id"), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(120))
    role: Mapped[str | None] = mapped_column(String(60), nullable=True)


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    employee_code: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(160))
    email: Mapped[str | None] = mapped_column(String(160), nullable=True)
    outlet_id: Mapped[int | None] = mapped_column(ForeignKey("outlets.id"), nullable=True, index=True)
    department_id: Mapped[int | None] = mapped_column(ForeignKey("departments.id"), nullable=True, index=True)
    position_id: Mapped[int | None] = mapped_column(ForeignKey("positions.id"), nullable=True)
    position_title: Mapped[str | None] = mapped_column(String(120), nullable=True)
    employee_role: Mapped[str] = mapped_column(String(40), default="staff")
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)
    join_date: Mapped[date] = mapped_column(Date)
    gender: Mapped[str | None] = mapped_column(String(10), nullable=True)
    employment_status: Mapped[str] = mapped_column(String(30), default="confirmed")
    last_working_day: Mapped[date | None] = mapped_column(Date, nullable=True)
    work_type: Mapped[str] = mapped_column(String(20), default="full_time")
    employment_type: Mapped[str] = mapped_column(String(20), default="permanent")
    ess_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    clock_in_required: Mapped[bool] = mapped_column(Boolean, default=True)
    is_schedule_manager: Mapped[bool] = mapped_column(Boolean, default=False)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    username: Mapped[str | None] = mapped_column(String(60), unique=True, nullable=True)
    ic_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    address: Mapped[str | None] = mapped_column(String(300), nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String(80), nullable=True)
    bank_account_no: Mapped[str | None] = mapped_column(String(40), nullable=True)
    bank_account_holder: Mapped[str | None] = mapped_column(String(160), nullable=True)
    marital_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    spouse_working: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    children_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    profile_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    profile_completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    company = relationship("Company")
    position = relationship("Position")


class EmployeeOutlet(Base):
    __tablename__ = "employee_outlets"
    __table_args__ = (UniqueConstraint("employee_id", "outlet_id", name="uq_employee_outlets"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    outlet_id: Mapped[int] = mapped_column(ForeignKey("outlets.id"), index=True)


class EmployeeDepartment(Base):
    __tablename__ = "employee_departments"
    __table_args__ = (UniqueConstraint("employee_id", "department_id", name="uq_employee_departments"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id"), index=True)


class AdminUser(Base):
    __tablename__ = "admin_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(80), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(160))
    role: Mapped[str] = mapped_column(String(20), default="admin")
    company_id: Mapped[int | None] = mapped_column(ForeignKey("companies.id"), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class LeaveType(Base):
    __tablename__ = "leave_types"
    __table_args__ = (UniqueConstraint("company_id", "code", name="uq_leave_types_company_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int | None] = mapped_column(ForeignKey("companies.id"), nullable=True, index=True)
    code: Mapped[str] = mapped_column(String(10))
    name: Mapped[str] = mapped_column(String(120))
    is_paid: Mapped[bool] = mapped_column(Boolean, default=True)
    requires_attachment: Mapped[bool] = mapped_column(Boolean, default=False)
    is_consecutive: Mapped[bool] = mapped_column(Boolean, default=False)
    max_occurrences: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_service_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    gender_restriction: Mapped[str | None] = mapped_column(String(10), nullable=True)
    # [{"min_years": 0, "days": 8}, {"min_years": 2, "days": 12}, ...]
    entitlement_rules: Mapped[list] = mapped_column(JSON, default=list)
    default_days_per_year: Mapped[float] = _days_column()
    carries_forward: Mapped[bool] = mapped_column(Boolean, default=False)
    max_carry_forward: Mapped[float | None] = mapped_column(Numeric(6, 2, asdecimal=False), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class LeaveBalance(Base):
    __tablename__ = "leave_balances"
    __table_args__ = (UniqueConstraint("employee_id", "leave_type_id", "year", name="uq_leave_balances_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    leave_type_id: Mapped[int] = mapped_column(ForeignKey("leave_types.id"), index=True)
    year: Mapped[int] = mapped_column(Integer, index=True)
    entitled_days: Mapped[float] = _days_column()
    carried_forward: Mapped[float] = _days_column()
    used_days: Mapped[float] = _days_column()
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class ApprovalFields:
    """Columns shared by every request that walks the three approval levels."""

    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    approval_level: Mapped[int] = mapped_column(Integer, default=1)
    supervisor_approver_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    supervisor_approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    manager_approver_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    manager_approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    admin_approver_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    admin_approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(40), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class LeaveRequest(ApprovalFields, Base):
    __tablename__ = "leave_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    leave_type_id: Mapped[int] = mapped_column(ForeignKey("leave_types.id"), index=True)
    start_date: Mapped[date] = mapped_column(Date, index=True)
    end_date: Mapped[date] = mapped_column(Date, index=True)
    total_days: Mapped[float] = _days_column()
    half_day: Mapped[str | None] = mapped_column(String(10), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    mc_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    auto_approved: Mapped[bool] = mapped_column(Boolean, default=False)

    employee = relationship("Employee")
    leave_type = relationship("LeaveType")


class Claim(ApprovalFields, Base):
    __tablename__ = "claims"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    claim_date: Mapped[date] = mapped_column(Date)
    category: Mapped[str] = mapped_column(String(60))
    amount: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False))
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    receipt_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    employee = relationship("Employee")


class ExtraShiftRequest(ApprovalFields, Base):
    __tablename__ = "extra_shift_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    request_date: Mapped[date] = mapped_column(Date, index=True)
    shift_template_id: Mapped[int | None] = mapped_column(ForeignKey("shift_templates.id"), nullable=True)
    shift_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    shift_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    schedule_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    employee = relationship("Employee")


class ShiftTemplate(Base):
    __tablename__ = "shift_templates"
    __table_args__ = (UniqueConstraint("company_id", "code", name="uq_shift_templates_company_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    code: Mapped[str] = mapped_column(String(20))
    name: Mapped[str] = mapped_column(String(120))
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    break_duration: Mapped[int] = mapped_column(Integer, default=60)
    is_off: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class Schedule(Base):
    __tablename__ = "schedules"
    __table_args__ = (UniqueConstraint("employee_id", "schedule_date", name="uq_schedules_employee_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    outlet_id: Mapped[int | None] = mapped_column(ForeignKey("outlets.id"), nullable=True, index=True)
    department_id: Mapped[int | None] = mapped_column(ForeignKey("departments.id"), nullable=True, index=True)
    schedule_date: Mapped[date] = mapped_column(Date, index=True)
    shift_template_id: Mapped[int | None] = mapped_column(ForeignKey("shift_templates.id"), nullable=True)
    shift_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    shift_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    break_duration: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(20), default="scheduled")
    is_public_holiday: Mapped[bool] = mapped_column(Boolean, default=False)
    created_by: Mapped[str | None] = mapped_column(String(40), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)

    shift_template = relationship("ShiftTemplate")


class ShiftSwapRequest(Base):
    __tablename__ = "shift_swap_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    outlet_id: Mapped[int | None] = mapped_column(ForeignKey("outlets.id"), nullable=True, index=True)
    requester_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    target_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    requester_schedule_id: Mapped[int] = mapped_column(ForeignKey("schedules.id"))
    target_schedule_id: Mapped[int] = mapped_column(ForeignKey("schedules.id"))
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    status: Mapped[str] = mapped_column(String(30), default="pending_target", index=True)
    target_responded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    supervisor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    supervisor_decided_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class ClockInRecord(Base):
    __tablename__ = "clock_in_records"
    __table_args__ = (UniqueConstraint("employee_id", "work_date", name="uq_clock_in_records_employee_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    outlet_id: Mapped[int | None] = mapped_column(ForeignKey("outlets.id"), nullable=True, index=True)
    department_id: Mapped[int | None] = mapped_column(ForeignKey("departments.id"), nullable=True)
    work_date: Mapped[date] = mapped_column(Date, index=True)
    clock_in_1: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    clock_out_1: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    clock_in_2: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    clock_out_2: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    photo_in_1: Mapped[str | None] = mapped_column(String(500), nullable=True)
    photo_out_1: Mapped[str | None] = mapped_column(String(500), nullable=True)
    photo_in_2: Mapped[str | None] = mapped_column(String(500), nullable=True)
    photo_out_2: Mapped[str | None] = mapped_column(String(500), nullable=True)
    location_in_1: Mapped[str | None] = mapped_column(String(60), nullable=True)
    location_out_1: Mapped[str | None] = mapped_column(String(60), nullable=True)
    location_in_2: Mapped[str | None] = mapped_column(String(60), nullable=True)
    location_out_2: Mapped[str | None] = mapped_column(String(60), nullable=True)
    address_in_1: Mapped[str | None] = mapped_column(String(300), nullable=True)
    address_out_2: Mapped[str | None] = mapped_column(String(300), nullable=True)
    schedule_id: Mapped[int | None] = mapped_column(ForeignKey("schedules.id"), nullable=True)
    within_schedule: Mapped[bool] = mapped_column(Boolean, default=False)
    total_work_minutes: Mapped[int] = mapped_column(Integer, default=0)
    break_minutes: Mapped[int] = mapped_column(Integer, default=0)
    ot_minutes: Mapped[int] = mapped_column(Integer, default=0)
    ot_flagged: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    ot_approved: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    ot_approved_by: Mapped[str | None] = mapped_column(String(40), nullable=True)
    ot_approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    ot_rejection_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="in_progress")
    is_auto_clock_out: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_clock_out_reason: Mapped[str | None] = mapped_column(String(40), nullable=True)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(40), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)

    employee = relationship("Employee")


class PublicHoliday(Base):
    __tablename__ = "public_holidays"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int | None] = mapped_column(ForeignKey("companies.id"), nullable=True, index=True)
    holiday_date: Mapped[date] = mapped_column(Date, index=True)
    name: Mapped[str] = mapped_column(String(160))


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    type: Mapped[str] = mapped_column(String(40))
    title: Mapped[str] = mapped_column(String(160))
    message: Mapped[str] = mapped_column(String(500))
    related_kind: Mapped[str | None] = mapped_column(String(30), nullable=True)
    related_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)


class Letter(Base):
    __tablename__ = "letters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    letter_type: Mapped[str] = mapped_column(String(40))
    title: Mapped[str] = mapped_column(String(200))
    content: Mapped[str] = mapped_column(Text)
    issued_by: Mapped[str | None] = mapped_column(String(40), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="unread")
    read_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    actor: Mapped[str | None] = mapped_column(String(40), nullable=True)
    action: Mapped[str] = mapped_column(String(80), index=True)
    entity: Mapped[str | None] = mapped_column(String(120), nullable=True)
    payload_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)
