from datetime import date, datetime

import pytest
from sqlalchemy import select

from ess.errors import AuthorizationError, ConflictError, ValidationError
from ess.leave_requests import (
    apply_leave,
    approve_leave,
    cancel_leave,
    list_team_pending_leave,
    reject_leave,
    revert_leave,
)
from ess.lifecycle import ALLOWED_STATUS_TRANSITIONS, select_approval_step
from ess.models import AuditEvent, LeaveBalance, Notification
from ess.roles import Role


def _balance(db, employee, leave_type, year=2025) -> LeaveBalance:
    db.expire_all()
    return db.execute(
        select(LeaveBalance).where(
            LeaveBalance.employee_id == employee.id,
            LeaveBalance.leave_type_id == leave_type.id,
            LeaveBalance.year == year,
        )
    ).scalar_one()


def _notifications(db, employee) -> list[Notification]:
    return db.execute(
        select(Notification).where(Notification.employee_id == employee.id).order_by(Notification.id.asc())
    ).scalars().all()


@pytest.fixture
def outlet_team(seed, freeze):
    freeze(datetime(2025, 6, 1, 9, 0))
    company = seed.company()
    outlet = seed.outlet(company, "Outlet 7")
    team = {
        "company": company,
        "outlet": outlet,
        "supervisor": seed.employee(company, role="supervisor", outlet=outlet, name="Sam"),
        "manager": seed.employee(company, role="manager", outlet=outlet, name="Mira"),
        "staff": seed.employee(company, role="staff", outlet=outlet, name="Eli"),
        "admin": seed.admin(company),
        "al": seed.leave_type(company),
    }
    seed.balance(team["staff"], team["al"], 2025, 12)
    return team


def test_supervisor_manager_admin_chain(db, outlet_team, principal_of):
    t = outlet_team
    row = apply_leave(
        db,
        principal_of(t["staff"]),
        leave_type_id=t["al"].id,
        start_date=date(2025, 6, 10),
        end_date=date(2025, 6, 12),
    )
    assert (row.status, row.approval_level, row.total_days) == ("pending", 1, 3)
    assert [n.type for n in _notifications(db, t["supervisor"])] == ["leave_submitted"]

    row = approve_leave(db, principal_of(t["supervisor"]), row.id)
    assert (row.status, row.approval_level) == ("pending", 2)
    assert row.supervisor_approver_id == t["supervisor"].id
    assert row.supervisor_approved_at is not None

    row = approve_leave(db, principal_of(t["manager"]), row.id)
    assert (row.status, row.approval_level) == ("pending", 3)
    assert row.manager_approver_id == t["manager"].id
    assert _balance(db, t["staff"], t["al"]).used_days == 0

    row = approve_leave(db, principal_of(t["admin"]), row.id)
    assert row.status == "approved"
    assert row.admin_approver_id == t["admin"].id
    assert _balance(db, t["staff"], t["al"]).used_days == 3

    types = [n.type for n in _notifications(db, t["staff"])]
    assert types == ["leave_advanced", "leave_advanced", "leave_approved"]
    actions = db.execute(select(AuditEvent.action).order_by(AuditEvent.id.asc())).scalars().all()
    assert actions == ["leave.pending", "leave.pending", "leave.pending", "leave.approved"]


def test_manager_at_level_one_fills_both_slots(db, outlet_team, principal_of):
    t = outlet_team
    row = apply_leave(db, principal_of(t["staff"]), leave_type_id=t["al"].id, start_date=date(2025, 6, 10), end_date=date(2025, 6, 10))
    row = approve_leave(db, principal_of(t["manager"]), row.id)
    assert row.approval_level == 3
    assert row.supervisor_approver_id == t["manager"].id
    assert row.manager_approver_id == t["manager"].id


def test_boss_moves_request_to_admin(db, seed, outlet_team, principal_of):
    t = outlet_team
    boss = seed.employee(t["company"], role="boss")
    row = apply_leave(db, principal_of(t["staff"]), leave_type_id=t["al"].id, start_date=date(2025, 6, 10), end_date=date(2025, 6, 10))
    row = approve_leave(db, principal_of(boss), row.id)
    assert (row.status, row.approval_level) == ("pending", 3)


def test_level_mismatch_messages(db, outlet_team, principal_of):
    t = outlet_team
    row = apply_leave(db, principal_of(t["staff"]), leave_type_id=t["al"].id, start_date=date(2025, 6, 10), end_date=date(2025, 6, 10))
    with pytest.raises(ConflictError, match="requires supervisor approval first"):
        approve_leave(db, principal_of(t["admin"]), row.id)
    approve_leave(db, principal_of(t["supervisor"]), row.id)
    with pytest.raises(ConflictError, match="requires manager approval"):
        approve_leave(db, principal_of(t["supervisor"]), row.id)
    with pytest.raises(ConflictError, match="requires manager approval"):
        approve_leave(db, principal_of(t["admin"]), row.id)


def test_approval_step_table():
    assert select_approval_step(Role.SUPERVISOR, 1).next_level == 2
    assert select_approval_step(Role.MANAGER, 2).slots == ("manager",)
    assert select_approval_step(Role.DIRECTOR, 2).next_level == 3
    assert select_approval_step(Role.ADMIN, 3).final is True
    with pytest.raises(ConflictError, match="awaiting admin approval"):
        select_approval_step(Role.MANAGER, 3)
    with pytest.raises(AuthorizationError):
        select_approval_step(Role.CREW, 1)


def test_supervisor_cannot_approve_manager_leave(db, seed, outlet_team, principal_of):
    t = outlet_team
    seed.balance(t["manager"], t["al"], 2025, 12)
    row = apply_leave(db, principal_of(t["manager"]), leave_type_id=t["al"].id, start_date=date(2025, 6, 10), end_date=date(2025, 6, 10))
    assert row.approval_level == 3

    with pytest.raises(AuthorizationError, match="approver level 60 must be greater than employee level 80") as exc:
        approve_leave(db, principal_of(t["supervisor"]), row.id)
    assert exc.value.rule == "hierarchy"
    db.expire_all()
    assert row.status == "pending"
    assert row.approval_level == 3


def test_supervisor_request_starts_at_level_two(db, seed, outlet_team, principal_of):
    t = outlet_team
    seed.balance(t["supervisor"], t["al"], 2025, 12)
    row = apply_leave(db, principal_of(t["supervisor"]), leave_type_id=t["al"].id, start_date=date(2025, 6, 10), end_date=date(2025, 6, 10))
    assert row.approval_level == 2
    assert [n.type for n in _notifications(db, t["manager"])] == ["leave_submitted"]


def test_staff_cannot_approve(db, seed, outlet_team, principal_of):
    t = outlet_team
    colleague = seed.employee(t["company"], role="staff", outlet=t["outlet"])
    row = apply_leave(db, principal_of(t["staff"]), leave_type_id=t["al"].id, start_date=date(2025, 6, 10), end_date=date(2025, 6, 10))
    with pytest.raises(AuthorizationError):
        approve_leave(db, principal_of(colleague), row.id)


def test_reject_requires_reason_and_is_terminal(db, outlet_team, principal_of):
    t = outlet_team
    row = apply_leave(db, principal_of(t["staff"]), leave_type_id=t["al"].id, start_date=date(2025, 6, 10), end_date=date(2025, 6, 10))
    with pytest.raises(ValidationError, match="Rejection reason is required"):
        reject_leave(db, principal_of(t["supervisor"]), row.id, reason="  ")
    row = reject_leave(db, principal_of(t["supervisor"]), row.id, reason="Short staffed")
    assert row.status == "rejected"
    assert row.rejection_reason == "Short staffed"
    assert row.rejected_by == f"employee:{t['supervisor'].id}"
    with pytest.raises(ConflictError, match="not pending"):
        approve_leave(db, principal_of(t["manager"]), row.id)
    assert ALLOWED_STATUS_TRANSITIONS["rejected"] == set()


def test_apply_then_cancel_is_net_zero(db, outlet_team, principal_of):
    t = outlet_team
    before = _balance(db, t["staff"], t["al"])
    before_used = before.used_days
    row = apply_leave(db, principal_of(t["staff"]), leave_type_id=t["al"].id, start_date=date(2025, 6, 10), end_date=date(2025, 6, 12))
    row = cancel_leave(db, principal_of(t["staff"]), row.id)
    assert row.status == "cancelled"
    assert row.cancelled_at is not None
    assert _balance(db, t["staff"], t["al"]).used_days == before_used
    # the dates are free again
    again = apply_leave(db, principal_of(t["staff"]), leave_type_id=t["al"].id, start_date=date(2025, 6, 10), end_date=date(2025, 6, 12))
    assert again.status == "pending"


def test_only_owner_cancels_and_only_while_pending(db, outlet_team, principal_of):
    t = outlet_team
    row = apply_leave(db, principal_of(t["staff"]), leave_type_id=t["al"].id, start_date=date(2025, 6, 10), end_date=date(2025, 6, 10))
    with pytest.raises(AuthorizationError, match="only cancel your own"):
        cancel_leave(db, principal_of(t["supervisor"]), row.id)
    for approver in ("supervisor", "manager", "admin"):
        approve_leave(db, principal_of(t[approver]), row.id)
    with pytest.raises(ConflictError, match="Can only cancel pending requests"):
        cancel_leave(db, principal_of(t["staff"]), row.id)


def test_admin_cancel_of_approved_leave_restores_balance(db, outlet_team, principal_of):
    t = outlet_team
    row = apply_leave(db, principal_of(t["staff"]), leave_type_id=t["al"].id, start_date=date(2025, 6, 10), end_date=date(2025, 6, 11))
    for approver in ("supervisor", "manager", "admin"):
        approve_leave(db, principal_of(t[approver]), row.id)
    assert _balance(db, t["staff"], t["al"]).used_days == 2
    row = cancel_leave(db, principal_of(t["admin"]), row.id)
    assert row.status == "cancelled"
    assert _balance(db, t["staff"], t["al"]).used_days == 0


def test_pending_queue_only_lists_actionable_requests(db, outlet_team, principal_of):
    t = outlet_team
    row = apply_leave(db, principal_of(t["staff"]), leave_type_id=t["al"].id, start_date=date(2025, 6, 10), end_date=date(2025, 6, 10))
    assert [r.id for r in list_team_pending_leave(db, principal_of(t["supervisor"]))] == [row.id]
    assert [r.id for r in list_team_pending_leave(db, principal_of(t["manager"]))] == [row.id]
    assert list_team_pending_leave(db, principal_of(t["admin"])) == []
    assert list_team_pending_leave(db, principal_of(t["staff"])) == []

    approve_leave(db, principal_of(t["supervisor"]), row.id)
    assert list_team_pending_leave(db, principal_of(t["supervisor"])) == []
    assert [r.id for r in list_team_pending_leave(db, principal_of(t["manager"]))] == [row.id]


@pytest.fixture
def office_team(seed, freeze):
    freeze(datetime(2025, 8, 25, 9, 0))
    company = seed.company("OFFICE", grouping="department")
    dept = seed.department(company, "Finance")
    team = {
        "company": company,
        "staff": seed.employee(company, department=dept, name="Ezra"),
        "admin": seed.admin(company, username="office-hr"),
        "al": seed.leave_type(company),
        "mc": seed.leave_type(company, code="MC", name="Medical Leave", requires_attachment=True, default_days_per_year=14),
    }
    seed.balance(team["staff"], team["al"], 2025, 14)
    return team


def test_office_annual_leave_auto_approves(db, office_team, principal_of):
    t = office_team
    row = apply_leave(db, principal_of(t["staff"]), leave_type_id=t["al"].id, start_date=date(2025, 9, 1), end_date=date(2025, 9, 2))
    assert row.status == "approved"
    assert row.auto_approved is True
    assert row.total_days == 2
    assert _balance(db, t["staff"], t["al"]).used_days == 2
    assert [n.type for n in _notifications(db, t["staff"])] == ["leave_auto_approved"]


def test_office_other_types_go_to_admin(db, office_team, principal_of):
    t = office_team
    row = apply_leave(
        db,
        principal_of(t["staff"]),
        leave_type_id=t["mc"].id,
        start_date=date(2025, 8, 25),
        end_date=date(2025, 8, 25),
        mc_url="https://files.example/mc.pdf",
    )
    assert (row.status, row.approval_level, row.auto_approved) == ("pending", 3, False)
    row = approve_leave(db, principal_of(t["admin"]), row.id)
    assert row.status == "approved"


def test_revert_restores_balance_exactly(db, office_team, principal_of):
    t = office_team
    row = apply_leave(db, principal_of(t["staff"]), leave_type_id=t["al"].id, start_date=date(2025, 9, 1), end_date=date(2025, 9, 2))
    row = revert_leave(db, principal_of(t["staff"]), row.id)
    assert (row.status, row.approval_level, row.auto_approved) == ("pending", 3, False)
    assert _balance(db, t["staff"], t["al"]).used_days == 0
    assert _notifications(db, t["staff"])[-1].title == "Leave Reverted"

    with pytest.raises(ConflictError, match="This leave was not auto-approved"):
        revert_leave(db, principal_of(t["staff"]), row.id)

    row = approve_leave(db, principal_of(t["admin"]), row.id)
    assert row.status == "approved"
    assert _balance(db, t["staff"], t["al"]).used_days == 2


def test_revert_is_owner_only(db, seed, office_team, principal_of):
    t = office_team
    colleague = seed.employee(t["company"], name="Other")
    row = apply_leave(db, principal_of(t["staff"]), leave_type_id=t["al"].id, start_date=date(2025, 9, 1), end_date=date(2025, 9, 1))
    with pytest.raises(AuthorizationError, match="only revert your own"):
        revert_leave(db, principal_of(colleague), row.id)


def test_admin_cannot_approve_boss_owned_request(db, seed, office_team, principal_of):
    t = office_team
    boss = seed.employee(t["company"], role="boss")
    seed.balance(boss, t["mc"], 2025, 14)
    row = apply_leave(
        db,
        principal_of(boss),
        leave_type_id=t["mc"].id,
        start_date=date(2025, 8, 25),
        end_date=date(2025, 8, 25),
        mc_url="https://files.example/mc.pdf",
    )
    with pytest.raises(AuthorizationError) as exc:
        approve_leave(db, principal_of(t["admin"]), row.id)
    assert exc.value.rule == "hierarchy"


def test_leave_across_new_year_is_charged_to_start_year(db, outlet_team, principal_of):
    t = outlet_team
    row = apply_leave(db, principal_of(t["staff"]), leave_type_id=t["al"].id, start_date=date(2025, 12, 30), end_date=date(2026, 1, 2))
    assert row.total_days == 4
    for approver in ("supervisor", "manager", "admin"):
        approve_leave(db, principal_of(t[approver]), row.id)

    assert _balance(db, t["staff"], t["al"]).used_days == 4
    assert db.query(LeaveBalance).filter(LeaveBalance.year == 2026).count() == 0

    cancel_leave(db, principal_of(t["admin"]), row.id)
    assert _balance(db, t["staff"], t["al"]).used_days == 0
