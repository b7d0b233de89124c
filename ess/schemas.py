from datetime import date, datetime, time

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class EmployeeLogin(BaseModel):
    employee_id: str = Field(min_length=1, max_length=40)
    password: str = Field(min_length=1, max_length=200)


class AdminLogin(BaseModel):
    username: str = Field(min_length=1, max_length=80)
    password: str = Field(min_length=1, max_length=200)


class CapabilitiesOut(BaseModel):
    employee_role: str | None = None
    can_approve_leave: bool
    can_approve_ot: bool
    can_approve_claims: bool
    can_manage_schedule: bool
    can_approve_swaps: bool
    can_view_team: bool
    managed_outlets: list[int]
    managed_departments: list[int]
    is_mimix: bool
    is_boss_or_director: bool
    is_indoor_sales_manager: bool
    hierarchy_level: int


class SessionOut(BaseModel):
    role: str
    company_id: int | None = None
    employee_id: int | None = None
    admin_id: int | None = None
    employee_code: str | None = None
    employee_role: str | None = None
    outlet_id: int | None = None
    position: str | None = None
    access_token: str | None = None
    capabilities: CapabilitiesOut | None = None


class ApprovalTrailOut(OrmModel):
    status: str
    approval_level: int
    supervisor_approver_id: int | None = None
    supervisor_approved_at: datetime | None = None
    manager_approver_id: int | None = None
    manager_approved_at: datetime | None = None
    admin_approver_id: int | None = None
    admin_approved_at: datetime | None = None
    rejection_reason: str | None = None
    rejected_by: str | None = None
    rejected_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class LeaveApply(BaseModel):
    leave_type_id: int
    start_date: date
    end_date: date
    reason: str | None = Field(default=None, max_length=1000)
    half_day: str | None = None
    mc_url: str | None = Field(default=None, max_length=500)

    @field_validator("half_day")
    @classmethod
    def validate_half_day(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        normalized = value.strip().lower()
        if normalized not in {"am", "pm"}:
            raise ValueError("half_day must be 'am' or 'pm'")
        return normalized


class LeaveOut(ApprovalTrailOut):
    id: int
    employee_id: int
    leave_type_id: int
    start_date: date
    end_date: date
    total_days: float
    half_day: str | None = None
    reason: str | None = None
    mc_url: str | None = None
    auto_approved: bool = False


class LeaveTypeOut(OrmModel):
    id: int
    code: str
    name: str
    is_paid: bool
    requires_attachment: bool
    is_consecutive: bool
    max_occurrences: int | None = None
    gender_restriction: str | None = None


class BalanceOut(BaseModel):
    leave_type_id: int
    code: str
    name: str
    is_paid: bool
    year: int
    entitled_days: float
    carried_forward: float
    used_days: float
    pending_days: float
    available_days: float
    completed_months: int
    ytd_earned: float
    advance_leave: float
    earned_balance: float


class RejectBody(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class ClaimCreate(BaseModel):
    claim_date: date
    category: str = Field(min_length=1, max_length=40)
    amount: float = Field(gt=0)
    description: str | None = Field(default=None, max_length=1000)
    receipt_url: str | None = Field(default=None, max_length=500)


class ClaimOut(ApprovalTrailOut):
    id: int
    employee_id: int
    claim_date: date
    category: str
    amount: float
    description: str | None = None
    receipt_url: str | None = None


class ExtraShiftCreate(BaseModel):
    request_date: date
    shift_template_id: int | None = None
    shift_start: time | None = None
    shift_end: time | None = None
    reason: str | None = Field(default=None, max_length=1000)


class ExtraShiftOut(ApprovalTrailOut):
    id: int
    employee_id: int
    request_date: date
    shift_template_id: int | None = None
    shift_start: time | None = None
    shift_end: time | None = None
    reason: str | None = None
    schedule_id: int | None = None


class SwapCreate(BaseModel):
    requester_schedule_id: int
    target_schedule_id: int
    reason: str | None = Field(default=None, max_length=500)


class SwapResponse(BaseModel):
    accept: bool


class SwapDecision(BaseModel):
    approve: bool
    reason: str | None = Field(default=None, max_length=500)


class SwapOut(OrmModel):
    id: int
    company_id: int
    outlet_id: int | None = None
    requester_id: int
    target_id: int
    requester_schedule_id: int
    target_schedule_id: int
    reason: str | None = None
    status: str
    target_responded_at: datetime | None = None
    supervisor_id: int | None = None
    supervisor_decided_at: datetime | None = None
    rejection_reason: str | None = None
    created_at: datetime


class PunchCreate(BaseModel):
    action: str
    photo_url: str | None = Field(default=None, max_length=500)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class ClockRecordOut(OrmModel):
    id: int
    employee_id: int
    work_date: date
    clock_in_1: datetime | None = None
    clock_out_1: datetime | None = None
    clock_in_2: datetime | None = None
    clock_out_2: datetime | None = None
    address_in_1: str | None = None
    address_out_2: str | None = None
    schedule_id: int | None = None
    within_schedule: bool = False
    total_work_minutes: int = 0
    break_minutes: int = 0
    ot_minutes: int = 0
    ot_flagged: bool = False
    ot_approved: bool | None = None
    ot_approved_by: str | None = None
    ot_approved_at: datetime | None = None
    ot_rejection_reason: str | None = None
    status: str
    is_auto_clock_out: bool = False
    auto_clock_out_reason: str | None = None
    needs_review: bool = False
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None


class AutoClockOutReview(BaseModel):
    adjusted_minutes: int | None = Field(default=None, ge=0, le=1440)


class ScheduleOut(OrmModel):
    id: int
    employee_id: int
    outlet_id: int | None = None
    department_id: int | None = None
    schedule_date: date
    shift_template_id: int | None = None
    shift_start: time | None = None
    shift_end: time | None = None
    break_duration: int
    status: str
    is_public_holiday: bool = False


class TodayStatusOut(BaseModel):
    work_date: date
    status: str
    next_action: str | None = None
    clock_in_required: bool
    record: ClockRecordOut | None = None
    schedule: ScheduleOut | None = None
    shift_code: str | None = None


class AttendanceSummaryOut(BaseModel):
    total_days: int
    completed_days: int
    pending_completion: int
    total_work_minutes: int
    total_ot_minutes: int


class AttendanceHistoryOut(BaseModel):
    records: list[ClockRecordOut]
    summary: AttendanceSummaryOut


class OvertimeDecision(BaseModel):
    approve: bool
    reason: str | None = Field(default=None, max_length=500)


class OvertimeBatch(BaseModel):
    record_ids: list[int] = Field(min_length=1)
    action: str
    reason: str | None = Field(default=None, max_length=500)


class OvertimeSkipOut(BaseModel):
    id: int
    reason: str


class OvertimeBatchOut(BaseModel):
    approved: list[int]
    rejected: list[int]
    skipped: list[OvertimeSkipOut]


class ScheduleCreate(BaseModel):
    employee_id: int
    schedule_date: date
    shift_template_id: int | None = None
    shift_start: time | None = None
    shift_end: time | None = None
    break_duration: int | None = Field(default=None, ge=0, le=240)
    status: str | None = None

    @model_validator(mode="after")
    def validate_shift_source(self):
        if (self.shift_start is None) != (self.shift_end is None):
            raise ValueError("shift_start and shift_end must be given together")
        return self


class ScheduleUpdate(BaseModel):
    shift_template_id: int | None = None
    shift_start: time | None = None
    shift_end: time | None = None
    break_duration: int | None = Field(default=None, ge=0, le=240)
    status: str | None = None


class ScheduleBulkCreate(BaseModel):
    entries: list[ScheduleCreate] = Field(min_length=1, max_length=500)


class ScheduleRowError(BaseModel):
    index: int
    employee_id: int | None = None
    schedule_date: date | None = None
    error: str


class ScheduleBulkOut(BaseModel):
    created: list[ScheduleOut]
    errors: list[ScheduleRowError]


class WeeklyRowOut(BaseModel):
    employee_id: int
    employee_name: str
    work_days: int
    off_days: int
    unscheduled_days: int
    max_consecutive_work: int
    warning: str | None = None


class NotificationOut(OrmModel):
    id: int
    type: str
    title: str
    message: str
    related_kind: str | None = None
    related_id: int | None = None
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime


class UnreadCountOut(BaseModel):
    unread: int


class LetterCreate(BaseModel):
    employee_id: int
    letter_type: str = Field(min_length=1, max_length=40)
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)


class LetterOut(OrmModel):
    id: int
    employee_id: int
    letter_type: str
    title: str
    content: str
    issued_by: str | None = None
    status: str
    read_at: datetime | None = None
    created_at: datetime


class ProfileUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=160)
    date_of_birth: date | None = None
    address: str | None = Field(default=None, max_length=300)
    phone: str | None = Field(default=None, max_length=30)
    email: str | None = Field(default=None, max_length=160)
    username: str | None = Field(default=None, max_length=60)
    bank_name: str | None = Field(default=None, max_length=80)
    bank_account_no: str | None = Field(default=None, max_length=40)
    bank_account_holder: str | None = Field(default=None, max_length=160)
    marital_status: str | None = Field(default=None, max_length=20)
    spouse_working: bool | None = None
    children_count: int | None = Field(default=None, ge=0, le=30)


class ProfileStatusOut(BaseModel):
    complete: bool
    profile_completed_at: datetime | None = None
    missing_fields: list[str]
    total_required: int
    completed_count: int
    deadline: date
    days_remaining: int
    editable_fields: list[str]


class ProfileEmployeeOut(OrmModel):
    id: int
    employee_code: str
    name: str
    email: str | None = None
    username: str | None = None
    employee_role: str
    position_title: str | None = None
    join_date: date
    gender: str | None = None
    ic_number: str | None = None
    date_of_birth: date | None = None
    phone: str | None = None
    address: str | None = None
    bank_name: str | None = None
    bank_account_no: str | None = None
    bank_account_holder: str | None = None
    marital_status: str | None = None
    spouse_working: bool | None = None
    children_count: int | None = None
    profile_completed: bool = False


class ProfileOut(BaseModel):
    employee: ProfileEmployeeOut
    outlet_name: str | None = None
    department_name: str | None = None
    profile_status: ProfileStatusOut


class TeamMemberOut(OrmModel):
    id: int
    employee_code: str
    name: str
    employee_role: str
    position_title: str | None = None
    phone: str | None = None
    email: str | None = None


class TeamAttendanceRowOut(BaseModel):
    employee_id: int
    employee_code: str
    name: str
    schedule_status: str | None = None
    shift_start: time | None = None
    shift_end: time | None = None
    clock_in: datetime | None = None
    clock_out: datetime | None = None
    attendance_status: str | None = None


class TeamUnitOut(BaseModel):
    id: int
    name: str
    staff_count: int
    staff: list[TeamMemberOut]
    attendance_today: list[TeamAttendanceRowOut]
    clocked_in_count: int
    not_clocked_in: list[TeamAttendanceRowOut]
    pending_leave_count: int
    pending_claims_count: int


class TeamSummaryOut(BaseModel):
    total_units: int
    total_staff: int
    pending_leave: int
    pending_claims: int
    clocked_in_today: int


class TeamOverviewOut(BaseModel):
    kind: str
    work_date: date
    units: list[TeamUnitOut]
    summary: TeamSummaryOut
