from dataclasses import dataclass

import structlog

from .errors import AuthorizationError
from .models import Employee
from .roles import APPROVER_ROLES, TOP_ROLES, Role
from .scope import Scope, employee_level

logger = structlog.get_logger("ess.permissions")


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str | None = None
    rule: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def check_scope(scope: Scope, target: Employee) -> Decision:
    if target.company_id != scope.company_id:
        return Decision(False, "Employee belongs to a different company", "scope.company")
    if scope.covers(target):
        return ALLOW
    if scope.managed_kind == "outlet":
        return Decision(False, "No permission for this outlet", "scope.outlet")
    return Decision(False, "No permission for this department", "scope.department")


def check_hierarchy(scope: Scope, target_level: int) -> Decision:
    if scope.hierarchy_level > target_level:
        return ALLOW
    return Decision(
        False,
        f"Hierarchy restriction: approver level {scope.hierarchy_level} "
        f"must be greater than employee level {target_level}",
        "hierarchy",
    )


def check_target(scope: Scope, target: Employee) -> Decision:
    """Scope first, then the strict hierarchy inequality."""
    if scope.employee is not None and scope.employee.id == target.id:
        return Decision(False, "You cannot act on your own request", "self")
    decision = check_scope(scope, target)
    if not decision:
        return decision
    return check_hierarchy(scope, employee_level(target))


def require(decision: Decision, *, action: str, **context) -> None:
    if decision:
        return
    logger.info("authorization_denied", action=action, rule=decision.rule, reason=decision.reason, **context)
    raise AuthorizationError(decision.reason or "Access denied", rule=decision.rule)


def _designated_schedule_manager(scope: Scope) -> bool:
    employee = scope.employee
    if employee is None or scope.profile.is_outlet:
        return False
    return bool(employee.is_schedule_manager) or employee.id in scope.profile.indoor_sales_manager_ids


def capability_flags(scope: Scope) -> dict:
    if scope.is_admin:
        return {
            "can_approve_leave": True,
            "can_approve_ot": True,
            "can_approve_swaps": True,
            "can_approve_claims": True,
            "can_view_team": True,
            "can_manage_schedule": True,
        }
    is_outlet = scope.profile.is_outlet
    approver = scope.role in APPROVER_ROLES
    designated = _designated_schedule_manager(scope)
    can_approve_leave = (approver and is_outlet) or designated
    if is_outlet:
        can_approve_claims = scope.role in TOP_ROLES
    else:
        can_approve_claims = scope.role in {Role.SUPERVISOR, Role.MANAGER}
    return {
        "can_approve_leave": can_approve_leave,
        "can_approve_ot": can_approve_leave,
        "can_approve_swaps": approver and is_outlet,
        "can_approve_claims": can_approve_claims,
        "can_view_team": can_approve_leave,
        "can_manage_schedule": (can_approve_leave and is_outlet) or designated,
    }


def has_capability(scope: Scope, flag: str) -> bool:
    return bool(capability_flags(scope).get(flag))


def require_capability(scope: Scope, flag: str, *, action: str) -> None:
    if has_capability(scope, flag):
        return
    require(Decision(False, "You do not have permission to perform this action", f"capability.{flag}"), action=action)


def build_capabilities(scope: Scope) -> dict:
    employee = scope.employee
    bundle = {
        "employee_role": employee.employee_role if employee is not None else scope.role.value,
        **capability_flags(scope),
        "managed_outlets": sorted(scope.managed_outlets),
        "managed_departments": sorted(scope.managed_departments),
        "is_mimix": scope.profile.is_outlet,
        "is_boss_or_director": scope.role in TOP_ROLES,
        "is_indoor_sales_manager": employee is not None and employee.id in scope.profile.indoor_sales_manager_ids,
        "hierarchy_level": scope.hierarchy_level,
    }
    return bundle
