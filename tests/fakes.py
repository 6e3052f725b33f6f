"""In-memory stand-ins for the MySQL repositories, used by the service tests."""
from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from copy import deepcopy
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Optional, Sequence

from domain.enums import AdminRole, TournamentStatus
from domain.errors import ConcurrencyConflict, NotFound
from domain.models import AuditLogEntry, Match, Registration, Team, Tournament
from services.notifier import TournamentEvent


class FakeAdminRepo:
    def __init__(self) -> None:
        self.roles: dict[tuple[str, str], AdminRole] = {}

    async def get_role(self, *, tournament_id: str, user_id: str) -> Optional[AdminRole]:
        return self.roles.get((tournament_id, user_id))

    async def set_role(self, *, tournament_id: str, user_id: str, role: AdminRole) -> None:
        self.roles[(tournament_id, user_id)] = role

    async def remove(self, *, tournament_id: str, user_id: str) -> int:
        if self.roles.get((tournament_id, user_id)) in (None, AdminRole.OWNER):
            return 0
        del self.roles[(tournament_id, user_id)]
        return 1


class _State:
    def __init__(self, t: Tournament) -> None:
        self.tournament = t
        self.teams: dict[str, Team] = {}
        self.registrations: dict[str, Registration] = {}
        self.matches: dict[str, Match] = {}


class FakeUnitOfWork:
    """Hands out copies, like rows read from the database; only explicit writes persist."""

    def __init__(self, store: "InMemoryStore", state: _State) -> None:
        self._store = store
        self._state = state
        self.tournament = deepcopy(state.tournament)

    async def update_tournament(self, t: Tournament) -> None:
        self._state.tournament = deepcopy(t)

    async def list_teams(self) -> list[Team]:
        return sorted(deepcopy(list(self._state.teams.values())), key=lambda t: t.created_seq)

    async def insert_team(self, team: Team) -> None:
        self._state.teams[team.team_id] = deepcopy(team)

    async def update_team(self, team: Team) -> None:
        self._state.teams[team.team_id] = deepcopy(team)

    async def list_registrations(self) -> list[Registration]:
        return sorted(deepcopy(list(self._state.registrations.values())), key=lambda r: r.registered_seq)

    async def insert_registration(self, reg: Registration) -> None:
        self._state.registrations[reg.registration_id] = deepcopy(reg)

    async def update_registration(self, reg: Registration) -> None:
        self._state.registrations[reg.registration_id] = deepcopy(reg)

    async def list_matches(self) -> list[Match]:
        return sorted(deepcopy(list(self._state.matches.values())), key=lambda m: m.order_key)

    async def insert_matches(self, matches: Sequence[Match]) -> None:
        if self._store.conflict_on_insert:
            self._store.conflict_on_insert -= 1
            raise ConcurrencyConflict("Bracket was generated concurrently.")
        taken = {(m.bracket, m.round_no, m.match_no) for m in self._state.matches.values()}
        for m in matches:
            key = (m.bracket, m.round_no, m.match_no)
            if m.match_id in self._state.matches or key in taken:
                raise ConcurrencyConflict("Bracket was generated concurrently.")
            taken.add(key)
            self._state.matches[m.match_id] = deepcopy(m)

    async def update_match(self, m: Match) -> None:
        self._state.matches[m.match_id] = deepcopy(m)

    async def delete_match(self, match_id: str) -> None:
        self._state.matches.pop(match_id, None)


class InMemoryStore:
    """
    Same contract as TournamentRepo. A per-tournament asyncio.Lock plays the
    part of SELECT ... FOR UPDATE; a failing unit of work restores the state
    it started from.
    """

    def __init__(self, admins: FakeAdminRepo) -> None:
        self._admins = admins
        self._states: dict[str, _State] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        # number of upcoming insert_matches calls that lose a race
        self.conflict_on_insert = 0
        self.commits = 0
        self.rollbacks = 0

    def _state(self, tournament_id: str) -> _State:
        try:
            return self._states[tournament_id]
        except KeyError:
            raise NotFound(f"Tournament not found: {tournament_id}") from None

    async def create_tournament(self, t: Tournament, *, owner_id: str) -> None:
        self._states[t.tournament_id] = _State(deepcopy(t))
        await self._admins.set_role(tournament_id=t.tournament_id, user_id=owner_id, role=AdminRole.OWNER)

    @asynccontextmanager
    async def unit_of_work(self, tournament_id: str) -> AsyncIterator[FakeUnitOfWork]:
        async with self._locks[tournament_id]:
            state = self._state(tournament_id)
            saved = deepcopy(state.__dict__)
            try:
                yield FakeUnitOfWork(self, state)
            except BaseException:
                state.__dict__.update(saved)
                self.rollbacks += 1
                raise
            self.commits += 1

    async def get_tournament(self, tournament_id: str) -> Tournament:
        return deepcopy(self._state(tournament_id).tournament)

    async def find_by_name(self, name: str) -> list[Tournament]:
        found = [deepcopy(s.tournament) for s in self._states.values() if s.tournament.name == name]
        return sorted(found, key=lambda t: t.created_at, reverse=True)

    async def list_teams(self, tournament_id: str) -> list[Team]:
        return sorted(deepcopy(list(self._state(tournament_id).teams.values())), key=lambda t: t.created_seq)

    async def list_registrations(self, tournament_id: str) -> list[Registration]:
        regs = self._state(tournament_id).registrations.values()
        return sorted(deepcopy(list(regs)), key=lambda r: r.registered_seq)

    async def list_matches(self, tournament_id: str) -> list[Match]:
        return sorted(deepcopy(list(self._state(tournament_id).matches.values())), key=lambda m: m.order_key)

    async def list_due_for_close(self, now: datetime) -> list[str]:
        return [
            tid
            for tid, s in self._states.items()
            if s.tournament.status == TournamentStatus.OPEN
            and s.tournament.registration_deadline is not None
            and s.tournament.registration_deadline <= now
        ]


class RecordingAudit:
    def __init__(self) -> None:
        self.entries: list[AuditLogEntry] = []
        self.fail = False

    async def append(self, entries: Sequence[AuditLogEntry]) -> int:
        if self.fail:
            raise RuntimeError("audit table unavailable")
        self.entries.extend(entries)
        return len(entries)

    def actions(self, tournament_id: Optional[str] = None) -> list[str]:
        return [e.action for e in self.entries if tournament_id is None or e.tournament_id == tournament_id]


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[TournamentEvent] = []

    async def notify(self, event: TournamentEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[str]:
        return [e.kind for e in self.events]


class FixedClock:
    def __init__(self, now: Optional[datetime] = None) -> None:
        self.now = now or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)
