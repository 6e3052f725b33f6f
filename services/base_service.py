# services/base_service.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Optional, Protocol, Sequence

from domain.enums import TournamentStatus
from domain.lifecycle import apply_transition
from domain.models import SYSTEM_ACTOR, AuditLogEntry, Tournament, snapshot, utcnow
from services.authorization_service import AuthorizationService
from services.notifier import Notifier, NullNotifier, TournamentEvent, dispatch

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    async def append(self, entries: Sequence[AuditLogEntry]) -> int: ...


@dataclass
class Changes:
    """Side effects collected inside a unit of work, released after commit."""

    tournament: Tournament
    actor: str
    now: datetime
    audit: list[AuditLogEntry] = field(default_factory=list)
    events: list[TournamentEvent] = field(default_factory=list)

    def record(
        self,
        action: str,
        *,
        entity_type: str,
        entity_id: Optional[str] = None,
        before: Any = None,
        after: Any = None,
        from_status: Any = None,
        to_status: Any = None,
        details: Optional[dict[str, Any]] = None,
        actor: Optional[str] = None,
    ) -> None:
        self.audit.append(
            AuditLogEntry(
                tournament_id=self.tournament.tournament_id,
                actor=actor or self.actor,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                before=snapshot(before) if before is not None and not isinstance(before, dict) else before,
                after=snapshot(after) if after is not None and not isinstance(after, dict) else after,
                from_status=getattr(from_status, "value", from_status),
                to_status=getattr(to_status, "value", to_status),
                details=details,
                timestamp=self.now,
            )
        )

    def announce(self, kind: str, title: str, description: str = "", **data: Any) -> None:
        self.events.append(
            TournamentEvent(
                tournament_id=self.tournament.tournament_id,
                kind=kind,
                title=title,
                description=description,
                data=data,
            )
        )


class TournamentServiceBase:
    """
    Shared plumbing for services that mutate one tournament:
      authorize -> lock + load -> domain logic -> write -> commit -> audit -> notify
    """

    def __init__(
        self,
        *,
        store: Any,
        authz: AuthorizationService,
        audit: AuditSink,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._authz = authz
        self._audit = audit
        self._notifier = notifier or NullNotifier()
        self._clock = clock

    @asynccontextmanager
    async def _mutation(
        self,
        tournament_id: str,
        *,
        actor: str,
        action: str,
        authorize: bool = True,
    ) -> AsyncIterator[tuple[Any, Changes]]:
        if authorize:
            await self._authz.require(tournament_id=tournament_id, actor=actor, action=action)

        async with self._store.unit_of_work(tournament_id) as uow:
            changes = Changes(tournament=uow.tournament, actor=actor, now=self._clock())
            yield uow, changes

        await self._release(changes)

    async def _release(self, changes: Changes) -> None:
        if changes.audit:
            try:
                await self._audit.append(changes.audit)
            except Exception:
                # the unit of work already committed; losing the audit row must not undo it
                logger.exception(
                    "Audit write failed for tournament %s (%d entries)",
                    changes.tournament.tournament_id,
                    len(changes.audit),
                )
        for event in changes.events:
            dispatch(self._notifier, event)

    def _transition(
        self,
        changes: Changes,
        t: Tournament,
        to: TournamentStatus,
        *,
        actor: Optional[str] = None,
        **kwargs: Any,
    ) -> str:
        before = t.status
        action = apply_transition(t, to, now=changes.now, **kwargs)
        changes.record(
            action,
            entity_type="Tournament",
            entity_id=t.tournament_id,
            from_status=before,
            to_status=t.status,
            details={k: str(v) for k, v in kwargs.items() if v is not None} or None,
            actor=actor,
        )
        changes.announce(
            "status_changed",
            f"{t.name}: {t.status.value.replace('_', ' ')}",
            f"{before.value} -> {t.status.value}",
            action=action,
        )
        logger.info("Tournament %s: %s (%s -> %s)", t.tournament_id, action, before.value, t.status.value)
        return action

    def _close_if_expired(self, changes: Changes, t: Tournament) -> bool:
        """Deadline-implied CloseRegistration, attributed to the system actor."""
        if t.status == TournamentStatus.OPEN and t.deadline_elapsed(changes.now):
            self._transition(changes, t, TournamentStatus.CLOSED, actor=SYSTEM_ACTOR)
            return True
        return False
