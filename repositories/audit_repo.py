# repositories/audit_repo.py
from __future__ import annotations

from typing import Sequence

from domain.models import AuditLogEntry
from repositories.base_repo import BaseRepo, to_db_time, to_json


class AuditRepo(BaseRepo):
    """Append-only sink for tournament_audit_log. Nothing here reads it back."""

    async def append(self, entries: Sequence[AuditLogEntry]) -> int:
        return await self.execute_many(
            """
            INSERT INTO tournament_audit_log
              (tournament_id, actor, action, entity_type, entity_id,
               before_json, after_json, from_status, to_status, details, created_at)
            VALUES
              (%s, %s, %s, %s, %s,
               %s, %s, %s, %s, %s, %s);
            """,
            [
                (
                    e.tournament_id,
                    e.actor,
                    e.action,
                    e.entity_type,
                    e.entity_id,
                    to_json(e.before),
                    to_json(e.after),
                    e.from_status,
                    e.to_status,
                    to_json(e.details),
                    to_db_time(e.timestamp),
                )
                for e in entries
            ],
        )
