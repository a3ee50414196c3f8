"""Caller identity passed into privileged operations."""

from dataclasses import dataclass, field
from typing import FrozenSet

from .config import admin_user_ids
from .errors import AuthorizationError

ADMIN = "admin"


@dataclass(frozen=True)
class Caller:
    """A verified identity and the roles it holds."""
    user_id: str
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return ADMIN in self.roles


def caller_for(user_id: str) -> Caller:
    """Build a Caller for a Discord user, granting admin to configured ids."""
    roles = frozenset({ADMIN}) if str(user_id) in admin_user_ids() else frozenset()
    return Caller(str(user_id), roles)


def require_admin(caller: Caller):
    if caller is None or not caller.is_admin:
        raise AuthorizationError()
