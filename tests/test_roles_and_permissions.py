import pytest

from ess.errors import AuthorizationError
from ess.permissions import build_capabilities, capability_flags, check_target, require
from ess.roles import Role, hierarchy_level, resolve_role, role_from_text
from ess.scope import resolve_scope


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Supervisor", Role.SUPERVISOR),
        ("  MANAGER ", Role.MANAGER),
        ("asst. supervisor", Role.ASSISTANT_SUPERVISOR),
        ("Assistant-Supervisor", Role.ASSISTANT_SUPERVISOR),
        ("Outlet Supervisor", Role.SUPERVISOR),
        ("Senior Service Crew", Role.CREW),
        ("staff", Role.CREW),
        ("super_admin", Role.SUPER_ADMIN),
    ],
)
def test_role_text_normalization(text, expected):
    assert role_from_text(text) == expected


def test_unmatched_role_text_is_none():
    assert role_from_text("") is None
    assert role_from_text("chef de partie") is None
    assert role_from_text("Area Manager", allow_substring=False) is None


def test_resolve_role_prefers_position_role_then_employee_role_then_title():
    assert resolve_role(position_role="manager", employee_role="staff", position_title="Crew") == Role.MANAGER
    assert resolve_role(position_role=None, employee_role="supervisor", position_title="Area Manager") == Role.SUPERVISOR
    # employee_role is matched exactly, the free-text title by substring
    assert resolve_role(employee_role="head supervisor", position_title="Area Manager") == Role.MANAGER
    assert resolve_role(employee_role=None, position_title=None) == Role.UNKNOWN


def test_hierarchy_levels_are_ordered():
    levels = [hierarchy_level(r) for r in (Role.CREW, Role.ASSISTANT_SUPERVISOR, Role.SUPERVISOR, Role.MANAGER, Role.DIRECTOR, Role.BOSS)]
    assert levels == sorted(levels)
    assert hierarchy_level(Role.ADMIN) == hierarchy_level(Role.BOSS) == 100
    assert hierarchy_level(Role.UNKNOWN) == 10


def test_position_role_drives_employee_role(db, seed, principal_of):
    company = seed.company()
    outlet = seed.outlet(company)
    position = seed.position("Outlet Lead", role="supervisor")
    employee = seed.employee(company, role="staff", outlet=outlet, position_id=position.id)
    scope = resolve_scope(db, principal_of(employee))
    assert scope.role == Role.SUPERVISOR
    assert scope.hierarchy_level == 60
    assert scope.managed_outlets == frozenset({outlet.id})


def test_supervisor_capabilities_at_outlet_company(db, seed, principal_of):
    company = seed.company()
    outlet = seed.outlet(company)
    supervisor = seed.employee(company, role="supervisor", outlet=outlet)
    bundle = build_capabilities(resolve_scope(db, principal_of(supervisor)))
    assert bundle["can_approve_leave"] is True
    assert bundle["can_approve_ot"] is True
    assert bundle["can_approve_swaps"] is True
    assert bundle["can_manage_schedule"] is True
    assert bundle["can_approve_claims"] is False
    assert bundle["managed_outlets"] == [outlet.id]
    assert bundle["is_mimix"] is True
    assert bundle["is_boss_or_director"] is False


def test_office_company_capabilities(db, seed, principal_of):
    company = seed.company("OFFICE", grouping="department")
    dept = seed.department(company, "Sales")
    staff = seed.employee(company, department=dept)
    manager = seed.employee(company, role="manager", department=dept)
    scheduler = seed.employee(company, department=dept, is_schedule_manager=True)

    staff_flags = capability_flags(resolve_scope(db, principal_of(staff)))
    assert not any(staff_flags.values())

    manager_flags = capability_flags(resolve_scope(db, principal_of(manager)))
    assert manager_flags["can_approve_claims"] is True
    assert manager_flags["can_approve_leave"] is False
    assert manager_flags["can_approve_swaps"] is False

    scheduler_scope = resolve_scope(db, principal_of(scheduler))
    scheduler_flags = capability_flags(scheduler_scope)
    assert scheduler_flags["can_manage_schedule"] is True
    assert scheduler_flags["can_approve_leave"] is True
    assert scheduler_scope.managed_departments == frozenset({dept.id})


def test_boss_sees_whole_company_and_claims(db, seed, principal_of):
    company = seed.company()
    first = seed.outlet(company, "A")
    second = seed.outlet(company, "B")
    boss = seed.employee(company, role="boss")
    scope = resolve_scope(db, principal_of(boss))
    assert scope.whole_company is True
    assert scope.managed_outlets == frozenset({first.id, second.id})
    bundle = build_capabilities(scope)
    assert bundle["can_approve_claims"] is True
    assert bundle["is_boss_or_director"] is True


def test_admin_gets_every_capability(db, seed, principal_of):
    company = seed.company()
    admin = seed.admin(company)
    flags = capability_flags(resolve_scope(db, principal_of(admin)))
    assert all(flags.values())


def test_super_admin_company_override(db, seed, principal_of):
    first = seed.company("ONE")
    second = seed.company("TWO", grouping="department")
    root = seed.admin(None, username="root", role="super_admin")
    scope = resolve_scope(db, principal_of(root), company_id=second.id)
    assert scope.company_id == second.id
    assert scope.managed_kind == "department"

    admin = seed.admin(first, username="hr-one")
    assert resolve_scope(db, principal_of(admin), company_id=second.id).company_id == first.id


def test_hierarchy_denial_names_the_inequality(db, seed, principal_of):
    company = seed.company()
    outlet = seed.outlet(company)
    supervisor = seed.employee(company, role="supervisor", outlet=outlet)
    manager = seed.employee(company, role="manager", outlet=outlet)
    decision = check_target(resolve_scope(db, principal_of(supervisor)), manager)
    assert not decision
    assert decision.rule == "hierarchy"
    assert decision.reason == "Hierarchy restriction: approver level 60 must be greater than employee level 80"
    with pytest.raises(AuthorizationError) as exc:
        require(decision, action="leave.approve")
    assert exc.value.rule == "hierarchy"
    assert exc.value.status == 403


def test_scope_denial_for_other_outlet(db, seed, principal_of):
    company = seed.company()
    mine = seed.outlet(company, "Mine")
    other = seed.outlet(company, "Other")
    supervisor = seed.employee(company, role="supervisor", outlet=mine)
    stranger = seed.employee(company, outlet=other)
    decision = check_target(resolve_scope(db, principal_of(supervisor)), stranger)
    assert decision.reason == "No permission for this outlet"
    assert decision.rule == "scope.outlet"


def test_equal_levels_are_denied(db, seed, principal_of):
    company = seed.company()
    outlet = seed.outlet(company)
    first = seed.employee(company, role="supervisor", outlet=outlet)
    second = seed.employee(company, role="supervisor", outlet=outlet)
    assert check_target(resolve_scope(db, principal_of(first)), second).rule == "hierarchy"
    assert check_target(resolve_scope(db, principal_of(first)), first).rule == "self"


def test_manager_covers_assigned_outlets(db, seed, principal_of):
    company = seed.company()
    home = seed.outlet(company, "Home")
    extra = seed.outlet(company, "Extra")
    seed.outlet(company, "Elsewhere")
    manager = seed.employee(company, role="manager", outlet=home)
    seed.assign_outlet(manager, extra)
    scope = resolve_scope(db, principal_of(manager))
    assert scope.managed_outlets == frozenset({home.id, extra.id})
