"""
auth/roles.py -- The fixed 12-entry role catalog and the RoleResolver.

The catalog is a closed enumeration (RoleName) plus a priority table. Role
names are never compared as free-form strings outside this module: callers
normalise through RoleName.parse() or validate_requested_role().

Priority: 1..999, lower value = higher precedence. An identity's "primary
role" is the one with the smallest priority among the roles it holds.

Self-assignable roles are those an unauthenticated registrant may pick for
themselves. Everything else needs an administrative grant
(AuthSessionService.grant_role), which bypasses is_self_assignable().

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
from enum import Enum

from auth.models import Identity, Role
from auth.results import NoRoleError

logger = logging.getLogger("kmportal.auth.roles")

ROLE_PREFIX = "ROLE_"
_ROLE_NAME_RE = re.compile(r"^ROLE_[A-Z0-9]+(?:_[A-Z0-9]+)*$")
MIN_PRIORITY = 1
MAX_PRIORITY = 999


class RoleName(str, Enum):
    ADMIN = "ROLE_ADMIN"
    BUSINESS_SUPPORT = "ROLE_BUSINESS_SUPPORT"
    EXECUTIVE_ALL = "ROLE_EXECUTIVE_ALL"
    EXECUTIVE_TYPE1 = "ROLE_EXECUTIVE_TYPE1"
    EXECUTIVE_TYPE4 = "ROLE_EXECUTIVE_TYPE4"
    TEAM_LEADER_ALL = "ROLE_TEAM_LEADER_ALL"
    TEAM_LEADER_TYPE1 = "ROLE_TEAM_LEADER_TYPE1"
    TEAM_LEADER_TYPE4 = "ROLE_TEAM_LEADER_TYPE4"
    INVESTIGATOR_ALL = "ROLE_INVESTIGATOR_ALL"
    INVESTIGATOR_TYPE1 = "ROLE_INVESTIGATOR_TYPE1"
    INVESTIGATOR_TYPE4 = "ROLE_INVESTIGATOR_TYPE4"
    EMPLOYEE = "ROLE_EMPLOYEE"

    @classmethod
    def parse(cls, raw: str | None) -> RoleName | None:
        """Map user input onto a catalog member. Case and surrounding whitespace are ignored."""
        if raw is None:
            return None
        try:
            return cls(raw.strip().upper())
        except ValueError:
            return None

    @property
    def simple_name(self) -> str:
        """The name without the ROLE_ prefix, e.g. "ADMIN"."""
        return self.value[len(ROLE_PREFIX) :]


# (display name, priority, description)
_CATALOG_TABLE: dict[RoleName, tuple[str, int, str]] = {
    RoleName.ADMIN: ("Administrator", 1, "Full access to every portal function"),
    RoleName.BUSINESS_SUPPORT: ("Business Support", 5, "Account administration and portal-wide statistics"),
    RoleName.EXECUTIVE_ALL: ("Executive (all divisions)", 10, "Executive view across every division"),
    RoleName.EXECUTIVE_TYPE1: ("Executive (type 1)", 11, "Executive view of type-1 divisions"),
    RoleName.EXECUTIVE_TYPE4: ("Executive (type 4)", 12, "Executive view of type-4 divisions"),
    RoleName.TEAM_LEADER_ALL: ("Team Leader (all divisions)", 20, "Team management across every division"),
    RoleName.TEAM_LEADER_TYPE1: ("Team Leader (type 1)", 21, "Team management in type-1 divisions"),
    RoleName.TEAM_LEADER_TYPE4: ("Team Leader (type 4)", 22, "Team management in type-4 divisions"),
    RoleName.INVESTIGATOR_ALL: ("Investigator (all divisions)", 30, "Case work across every division"),
    RoleName.INVESTIGATOR_TYPE1: ("Investigator (type 1)", 31, "Case work in type-1 divisions"),
    RoleName.INVESTIGATOR_TYPE4: ("Investigator (type 4)", 32, "Case work in type-4 divisions"),
    RoleName.EMPLOYEE: ("Employee", 100, "Basic portal use: posts, comments, file uploads"),
}

ROLE_CATALOG: dict[RoleName, Role] = {
    name: Role(name=name.value, display_name=display, priority=priority, description=desc)
    for name, (display, priority, desc) in _CATALOG_TABLE.items()
}

SELF_ASSIGNABLE_ROLES: frozenset[RoleName] = frozenset(
    {
        RoleName.INVESTIGATOR_ALL,
        RoleName.INVESTIGATOR_TYPE1,
        RoleName.INVESTIGATOR_TYPE4,
        RoleName.EMPLOYEE,
    }
)

ADMINISTRATIVE_ROLES: frozenset[RoleName] = frozenset({RoleName.ADMIN, RoleName.BUSINESS_SUPPORT})

# Lowest privilege = largest priority value.
DEFAULT_ROLE: RoleName = max(ROLE_CATALOG, key=lambda n: ROLE_CATALOG[n].priority)


def validate_role_definition(role: Role) -> list[str]:
    """Return the problems with a role definition; an empty list means valid."""
    problems: list[str] = []
    if not role.name.startswith(ROLE_PREFIX):
        problems.append(f"Role name must start with {ROLE_PREFIX!r}: {role.name!r}")
    elif not _ROLE_NAME_RE.match(role.name):
        problems.append(f"Role name must be uppercase letters, digits and underscores: {role.name!r}")
    if not MIN_PRIORITY <= role.priority <= MAX_PRIORITY:
        problems.append(f"Role priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}: {role.priority}")
    if not role.display_name.strip():
        problems.append(f"Role {role.name!r} needs a display name")
    return problems


def sort_by_priority(roles) -> list[Role]:
    """Ascending priority; name breaks ties so the order is fully deterministic."""
    return sorted(roles, key=lambda r: (r.priority, r.name))


class RoleResolver:
    """Resolves an identity's roles and vets role requests against the catalog.

    Role rows (including the is_active toggle) come from the store, so a
    catalog role an administrator has deactivated stops being requestable
    without a redeploy.
    """

    def __init__(self, store) -> None:
        self._store = store

    def resolve(self, identity: Identity) -> list[Role]:
        """Return the identity's roles sorted by ascending priority.

        Recomputed from the store on every call -- not a cursor.
        """
        if identity.id is None:
            return []
        return sort_by_priority(self._store.get_roles_for(identity.id))

    def primary_role(self, identity: Identity) -> Role:
        roles = self.resolve(identity)
        if not roles:
            raise NoRoleError(identity.username)
        return roles[0]

    def validate_requested_role(self, name: str | None) -> Role | None:
        """Return the catalog role for a requested name, or None if it is not grantable.

        A missing or blank name selects DEFAULT_ROLE. Anything outside the
        fixed catalog -- or a catalog role that has been deactivated -- is
        rejected.
        """
        if name is None or not name.strip():
            role_name = DEFAULT_ROLE
        else:
            role_name = RoleName.parse(name)
            if role_name is None:
                logger.info("Rejected unknown role request %r", name)
                return None
        role = self._store.get_role(role_name.value)
        if role is None or not role.is_active:
            logger.info("Rejected inactive or unseeded role %s", role_name.value)
            return None
        return role

    @staticmethod
    def is_self_assignable(name: str | None) -> bool:
        role_name = RoleName.parse(name)
        return role_name is not None and role_name in SELF_ASSIGNABLE_ROLES

    @staticmethod
    def is_administrative(roles: list[Role]) -> bool:
        return any(RoleName.parse(r.name) in ADMINISTRATIVE_ROLES for r in roles)


def _check_catalog() -> None:
    for role in ROLE_CATALOG.values():
        problems = validate_role_definition(role)
        if problems:
            raise ValueError("; ".join(problems))
    priorities = [r.priority for r in ROLE_CATALOG.values()]
    if len(set(priorities)) != len(priorities):
        raise ValueError("Role catalog priorities must be unique")


_check_catalog()
