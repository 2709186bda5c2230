"""
Request context and role-based permission checks.

Responsibility:
    Carries who is acting, for which ledger owner, under which role, into
    every mutating kernel call.  Maps the closed set of roles to the fixed
    set of ledger permissions.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Services call
    ``require_permission(ctx, ...)`` at their entry points and write
    ``ctx.effective_role`` onto every audit record.

Invariants enforced:
    - No ambient "current user": the context is an explicit argument.
    - Roles and permissions are closed enums; the grant table is a fixed
      mapping, not a mutable lookup.

Failure modes:
    - PermissionDeniedError when the effective role lacks the permission.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from ledger_kernel.exceptions import PermissionDeniedError


class Role(str, Enum):
    """Effective role of the acting user."""

    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MODERATOR = "moderator"
    AUTHOR = "author"
    READER = "reader"


class Permission(str, Enum):
    """Ledger verbs gated by role."""

    READ_LEDGER = "ledger.read"
    WRITE_ENTRIES = "ledger.entry.write"
    POST_ENTRIES = "ledger.entry.post"
    REVERSE_ENTRIES = "ledger.entry.reverse"
    MANAGE_ACCOUNTS = "ledger.account.manage"
    MANAGE_PERIODS = "ledger.period.manage"
    REOPEN_PERIOD = "ledger.period.reopen"
    MANAGE_DOCUMENTS = "ledger.document.manage"


_READER = frozenset({Permission.READ_LEDGER})
_AUTHOR = _READER | {Permission.WRITE_ENTRIES, Permission.MANAGE_DOCUMENTS}
_MODERATOR = _AUTHOR | {Permission.POST_ENTRIES, Permission.REVERSE_ENTRIES}
_ADMIN = _MODERATOR | {
    Permission.MANAGE_ACCOUNTS,
    Permission.MANAGE_PERIODS,
    Permission.REOPEN_PERIOD,
}

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.READER: _READER,
    Role.AUTHOR: _AUTHOR,
    Role.MODERATOR: _MODERATOR,
    Role.ADMIN: _ADMIN,
    Role.SUPER_ADMIN: frozenset(Permission),
}


def has_permission(role: Role, permission: Permission) -> bool:
    """Return True iff ``role`` is granted ``permission``."""
    return permission in ROLE_PERMISSIONS[Role(role)]


@dataclass(frozen=True)
class RequestContext:
    """
    Who is acting, for which ledger, and as what.

    Contract:
        Passed explicitly into every mutating call.  ``owner_id`` scopes
        entries and periods; ``actor_id`` and ``effective_role`` are written
        to the audit log.
    """

    owner_id: UUID
    actor_id: UUID
    effective_role: Role

    def __post_init__(self) -> None:
        # Normalize plain strings ("admin") to the enum
        object.__setattr__(self, "effective_role", Role(self.effective_role))

    @property
    def role_name(self) -> str:
        return self.effective_role.value

    def can(self, permission: Permission) -> bool:
        return has_permission(self.effective_role, permission)


def require_permission(ctx: RequestContext, permission: Permission) -> None:
    """
    Raise PermissionDeniedError unless the context's role grants ``permission``.
    """
    if not ctx.can(permission):
        raise PermissionDeniedError(role=ctx.role_name, permission=permission.value)
