import re
from enum import Enum


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    BOSS = "boss"
    DIRECTOR = "director"
    MANAGER = "manager"
    SUPERVISOR = "supervisor"
    ASSISTANT_SUPERVISOR = "assistant_supervisor"
    CREW = "crew"
    UNKNOWN = "unknown"


ROLE_LEVELS = {
    Role.SUPER_ADMIN: 100,
    Role.ADMIN: 100,
    Role.BOSS: 100,
    Role.DIRECTOR: 90,
    Role.MANAGER: 80,
    Role.SUPERVISOR: 60,
    Role.ASSISTANT_SUPERVISOR: 40,
    Role.CREW: 20,
    Role.UNKNOWN: 10,
}

APPROVER_ROLES = frozenset({Role.SUPERVISOR, Role.MANAGER, Role.BOSS, Role.DIRECTOR})
TOP_ROLES = frozenset({Role.BOSS, Role.DIRECTOR})
ADMIN_ROLES = frozenset({Role.ADMIN, Role.SUPER_ADMIN})

_ROLE_ALIASES = {
    "super admin": Role.SUPER_ADMIN,
    "superadmin": Role.SUPER_ADMIN,
    "admin": Role.ADMIN,
    "boss": Role.BOSS,
    "director": Role.DIRECTOR,
    "manager": Role.MANAGER,
    "supervisor": Role.SUPERVISOR,
    "assistant supervisor": Role.ASSISTANT_SUPERVISOR,
    "asst supervisor": Role.ASSISTANT_SUPERVISOR,
    "ast supervisor": Role.ASSISTANT_SUPERVISOR,
    "assistant supervisior": Role.ASSISTANT_SUPERVISOR,
    "asst spv": Role.ASSISTANT_SUPERVISOR,
    "assistant spv": Role.ASSISTANT_SUPERVISOR,
    "service crew": Role.CREW,
    "crew": Role.CREW,
    "part timer": Role.CREW,
    "part time": Role.CREW,
    "cashier": Role.CREW,
    "barista": Role.CREW,
    "staff": Role.CREW,
}
# substring matching must try "assistant supervisor" before "supervisor"
_ALIASES_LONGEST_FIRST = sorted(_ROLE_ALIASES, key=len, reverse=True)


def normalize_role_text(value: str | None) -> str:
    text = (value or "").strip().lower().replace(".", "")
    text = re.sub(r"[_\-]+", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def role_from_text(value: str | None, *, allow_substring: bool = True) -> Role | None:
    text = normalize_role_text(value)
    if not text:
        return None
    if text in _ROLE_ALIASES:
        return _ROLE_ALIASES[text]
    if not allow_substring:
        return None
    for alias in _ALIASES_LONGEST_FIRST:
        if re.search(rf"\b{re.escape(alias)}\b", text):
            return _ROLE_ALIASES[alias]
    return None


def resolve_role(
    *,
    position_role: str | None = None,
    employee_role: str | None = None,
    position_title: str | None = None,
) -> Role:
    """First match wins: position.role, then employee_role, then free-text position."""
    for candidate, allow_substring in (
        (position_role, True),
        (employee_role, False),
        (position_title, True),
    ):
        role = role_from_text(candidate, allow_substring=allow_substring)
        if role is not None:
            return role
    return Role.UNKNOWN


def hierarchy_level(role: Role) -> int:
    return ROLE_LEVELS.get(role, ROLE_LEVELS[Role.UNKNOWN])
