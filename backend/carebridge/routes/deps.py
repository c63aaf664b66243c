"""
CareBridge Backend — Caller Identity Dependencies
===================================================

What:  Resolves who is calling from the identity headers set by the upstream
       gateway and gates routes by role.
How:   X-Account-ID and X-Account-Role identify the account; elderly and
       nurse callers are resolved to their profile through ProfileResolver.
       Administrators have no profile.

Usage:
    @router.post("/things")
    async def create(actor: Actor = Depends(require_roles("elderly"))): ...
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from carebridge.database import get_db_session
from carebridge.exceptions import AuthenticationError, AuthorizationError
from carebridge.models.profile import PARTY_ROLES, ROLE_ADMIN, ROLE_ELDERLY, ROLE_NURSE, Profile
from carebridge.services.profile_service import profile_resolver

KNOWN_ROLES = (ROLE_ELDERLY, ROLE_NURSE, ROLE_ADMIN)


@dataclass
class Actor:
    account_id: str
    role: str
    profile: Optional[Profile] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def profile_id(self):
        return self.profile.id if self.profile is not None else None


async def get_actor(
    x_account_id: Optional[str] = Header(default=None),
    x_account_role: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db_session),
) -> Actor:
    if not x_account_id or not x_account_role:
        raise AuthenticationError(message="Missing caller identity")
    role = x_account_role.strip().lower()
    if role not in KNOWN_ROLES:
        raise AuthenticationError(message=f"Unknown caller role '{x_account_role}'")

    profile = None
    if role in PARTY_ROLES:
        profile = await profile_resolver.get_by_account(db, x_account_id, role)
    return Actor(account_id=x_account_id, role=role, profile=profile)


def require_roles(*roles: str):
    """Dependency factory admitting only callers whose role is in `roles`."""

    async def dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            raise AuthorizationError(
                message=f"This action requires one of the roles: {', '.join(roles)}",
                context={"role": actor.role},
            )
        return actor

    return dependency
