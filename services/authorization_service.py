# services/authorization_service.py
from __future__ import annotations

import logging
from typing import Optional, Protocol

from domain.enums import AdminRole
from domain.errors import Unauthorized, ValidationFailed
from domain.models import SYSTEM_ACTOR

logger = logging.getLogger(__name__)

# Actions a scorekeeper may perform. Owners and admins may perform everything.
SCOREKEEPER_ACTIONS = frozenset({"StartMatch", "EnterScore", "RecordForfeit"})


class AdminDirectory(Protocol):
    async def get_role(self, *, tournament_id: str, user_id: str) -> Optional[AdminRole]: ...

    async def set_role(self, *, tournament_id: str, user_id: str, role: AdminRole) -> None: ...

    async def remove(self, *, tournament_id: str, user_id: str) -> int: ...


class AuthorizationService:
    def __init__(self, admin_repo: AdminDirectory) -> None:
        self._repo = admin_repo

    async def is_tournament_admin(self, user_id: str, tournament_id: str) -> Optional[AdminRole]:
        return await self._repo.get_role(tournament_id=tournament_id, user_id=str(user_id))

    async def require(self, *, tournament_id: str, actor: str, action: str) -> Optional[AdminRole]:
        if actor == SYSTEM_ACTOR:
            return None

        role = await self.is_tournament_admin(actor, tournament_id)
        if role in (AdminRole.OWNER, AdminRole.ADMIN):
            return role
        if role == AdminRole.SCOREKEEPER and action in SCOREKEEPER_ACTIONS:
            return role

        raise Unauthorized(f"You are not allowed to perform {action} on this tournament.")

    async def grant(self, *, actor: str, tournament_id: str, user_id: str, role: AdminRole | str) -> AdminRole:
        """Give a user the Admin or Scorekeeper role. Ownership is fixed at creation."""
        try:
            role = AdminRole(role)
        except ValueError as e:
            raise ValidationFailed(str(e)) from e
        if role == AdminRole.OWNER:
            raise ValidationFailed("The owner role cannot be granted.")

        await self.require(tournament_id=tournament_id, actor=actor, action="ManageAdmins")
        current = await self.is_tournament_admin(user_id, tournament_id)
        if current == AdminRole.OWNER:
            raise ValidationFailed("The tournament owner's role cannot be changed.")

        await self._repo.set_role(tournament_id=tournament_id, user_id=str(user_id), role=role)
        logger.info("User %s granted %s on tournament %s by %s", user_id, role.value, tournament_id, actor)
        return role

    async def revoke(self, *, actor: str, tournament_id: str, user_id: str) -> bool:
        await self.require(tournament_id=tournament_id, actor=actor, action="ManageAdmins")
        removed = await self._repo.remove(tournament_id=tournament_id, user_id=str(user_id)) > 0
        if removed:
            logger.info("User %s lost their role on tournament %s (by %s)", user_id, tournament_id, actor)
        return removed
