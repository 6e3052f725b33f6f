# repositories/admin_repo.py
from __future__ import annotations

from typing import Optional

from domain.enums import AdminRole
from repositories.base_repo import BaseRepo


class AdminRepo(BaseRepo):
    async def get_role(self, *, tournament_id: str, user_id: str) -> Optional[AdminRole]:
        row = await self.fetch_one(
            "SELECT role FROM tournament_admin WHERE tournament_id=%s AND user_id=%s;",
            (tournament_id, user_id),
        )
        return AdminRole(row["role"]) if row else None

    async def set_role(self, *, tournament_id: str, user_id: str, role: AdminRole) -> None:
        await self.execute(
            """
            INSERT INTO tournament_admin (tournament_id, user_id, role)
            VALUES (%s, %s, %s)
            ON DUPLICATE KEY UPDATE role = VALUES(role);
            """,
            (tournament_id, user_id, role.value),
        )

    async def remove(self, *, tournament_id: str, user_id: str) -> int:
        return await self.execute(
            "DELETE FROM tournament_admin WHERE tournament_id=%s AND user_id=%s AND role<>%s;",
            (tournament_id, user_id, AdminRole.OWNER.value),
        )
