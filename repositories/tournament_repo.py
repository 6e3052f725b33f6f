# repositories/tournament_repo.py
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import fields
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Callable, Mapping, Sequence, TypeVar

import aiomysql

from db.tx import transaction
from domain.enums import (
    AdminRole,
    BracketKey,
    EntryStatus,
    FeeType,
    MatchStatus,
    SkillTier,
    Slot,
    TeamFormation,
    Tiebreaker,
    TournamentFormat,
    TournamentStatus,
)
from domain.errors import ConcurrencyConflict, NotFound
from domain.models import Match, Registration, Team, Tournament
from repositories.base_repo import BaseRepo, from_db_time, from_json, to_db_time, to_json

T = TypeVar("T")


# -------------------------
# Row mapping
# -------------------------

def _encode(v: Any) -> Any:
    if isinstance(v, Enum):
        return v.value
    if isinstance(v, datetime):
        return to_db_time(v)
    if isinstance(v, bool):
        return int(v)
    if isinstance(v, tuple):
        return to_json([_encode(x) for x in v])
    return v


def _tiebreak_order(v: Any) -> tuple[Tiebreaker, ...]:
    return tuple(Tiebreaker(x) for x in (from_json(v) or []))


_DECODERS: dict[type, dict[str, Callable[[Any], Any]]] = {
    Tournament: {
        "format": TournamentFormat,
        "team_formation": TeamFormation,
        "status": TournamentStatus,
        "fee_type": FeeType,
        "postponed_from_status": TournamentStatus,
        "allow_substitutions": bool,
        "bracket_reset": bool,
        "tiebreak_order": _tiebreak_order,
        "entry_fee": Decimal,
    },
    Team: {
        "status": EntryStatus,
        "placement_locked": bool,
    },
    Registration: {
        "status": EntryStatus,
        "skill_tier": SkillTier,
    },
    Match: {
        "bracket": BracketKey,
        "status": MatchStatus,
        "next_slot": Slot,
        "loser_next_slot": Slot,
    },
}

_TABLES: dict[type, tuple[str, str]] = {
    Tournament: ("tournament", "tournament_id"),
    Team: ("tournament_team", "team_id"),
    Registration: ("tournament_registration", "registration_id"),
    Match: ("tournament_match", "match_id"),
}


def _columns(cls: type) -> list[str]:
    return [f.name for f in fields(cls)]


def from_row(cls: type[T], row: Mapping[str, Any]) -> T:
    decoders = _DECODERS[cls]
    kwargs: dict[str, Any] = {}
    for name in _columns(cls):
        if name not in row or row[name] is None:
            continue
        v = row[name]
        if isinstance(v, datetime):
            v = from_db_time(v)
        elif name in decoders:
            v = decoders[name](v)
        kwargs[name] = v
    return cls(**kwargs)


def to_params(obj: Any) -> list[Any]:
    return [_encode(getattr(obj, name)) for name in _columns(type(obj))]


def _insert_sql(cls: type) -> str:
    table, _ = _TABLES[cls]
    cols = _columns(cls)
    return f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({', '.join(['%s'] * len(cols))});"


def _update_sql(cls: type) -> str:
    table, pk = _TABLES[cls]
    sets = ", ".join(f"{c}=%s" for c in _columns(cls) if c != pk)
    return f"UPDATE {table} SET {sets} WHERE {pk}=%s;"


def _update_params(obj: Any) -> list[Any]:
    _, pk = _TABLES[type(obj)]
    params = [_encode(getattr(obj, c)) for c in _columns(type(obj)) if c != pk]
    params.append(getattr(obj, pk))
    return params


# -------------------------
# Unit of work
# -------------------------

class TournamentUnitOfWork:
    """
    One transaction scoped to one tournament. The tournament row is held with
    SELECT ... FOR UPDATE for the lifetime of the unit, so every writer on the
    same tournament is serialized.
    """

    def __init__(self, cur: aiomysql.Cursor, tournament: Tournament) -> None:
        self._cur = cur
        self.tournament = tournament

    async def _fetch_all(self, cls: type[T], sql: str, params: Sequence[Any]) -> list[T]:
        await self._cur.execute(sql, params)
        rows = await self._cur.fetchall()
        return [from_row(cls, r) for r in rows or []]

    async def _insert(self, obj: Any) -> None:
        await self._cur.execute(_insert_sql(type(obj)), to_params(obj))

    async def _update(self, obj: Any) -> None:
        await self._cur.execute(_update_sql(type(obj)), _update_params(obj))

    async def update_tournament(self, t: Tournament) -> None:
        await self._update(t)

    # teams
    async def list_teams(self) -> list[Team]:
        return await self._fetch_all(
            Team,
            "SELECT * FROM tournament_team WHERE tournament_id=%s ORDER BY created_seq;",
            (self.tournament.tournament_id,),
        )

    async def insert_team(self, team: Team) -> None:
        await self._insert(team)

    async def update_team(self, team: Team) -> None:
        await self._update(team)

    # registrations
    async def list_registrations(self) -> list[Registration]:
        return await self._fetch_all(
            Registration,
            "SELECT * FROM tournament_registration WHERE tournament_id=%s ORDER BY registered_seq;",
            (self.tournament.tournament_id,),
        )

    async def insert_registration(self, reg: Registration) -> None:
        await self._insert(reg)

    async def update_registration(self, reg: Registration) -> None:
        await self._update(reg)

    # matches
    async def list_matches(self) -> list[Match]:
        return await self._fetch_all(
            Match,
            """
            SELECT * FROM tournament_match
            WHERE tournament_id=%s
            ORDER BY FIELD(bracket, 'RR', 'W', 'L', 'GF'), round_no, match_no;
            """,
            (self.tournament.tournament_id,),
        )

    async def insert_matches(self, matches: Sequence[Match]) -> None:
        if not matches:
            return
        try:
            await self._cur.executemany(_insert_sql(Match), [to_params(m) for m in matches])
        except aiomysql.IntegrityError as e:
            # uq_match_position: another writer already generated this bracket
            raise ConcurrencyConflict("Bracket was generated concurrently.") from e

    async def update_match(self, m: Match) -> None:
        await self._update(m)

    async def delete_match(self, match_id: str) -> None:
        await self._cur.execute(
            "DELETE FROM tournament_match WHERE match_id=%s AND tournament_id=%s;",
            (match_id, self.tournament.tournament_id),
        )


# -------------------------
# Repository
# -------------------------

class TournamentRepo(BaseRepo):
    async def create_tournament(self, t: Tournament, *, owner_id: str) -> None:
        async with transaction(self.pool, dict_rows=False) as (_conn, cur):
            await cur.execute(_insert_sql(Tournament), to_params(t))
            await cur.execute(
                "INSERT INTO tournament_admin (tournament_id, user_id, role) VALUES (%s, %s, %s);",
                (t.tournament_id, owner_id, AdminRole.OWNER.value),
            )

    @asynccontextmanager
    async def unit_of_work(self, tournament_id: str) -> AsyncIterator[TournamentUnitOfWork]:
        async with transaction(self.pool, dict_rows=True) as (_conn, cur):
            await cur.execute("SELECT * FROM tournament WHERE tournament_id=%s FOR UPDATE;", (tournament_id,))
            row = await cur.fetchone()
            if not row:
                raise NotFound(f"Tournament not found: {tournament_id}")
            yield TournamentUnitOfWork(cur, from_row(Tournament, row))

    async def get_tournament(self, tournament_id: str) -> Tournament:
        row = await self.fetch_one("SELECT * FROM tournament WHERE tournament_id=%s;", (tournament_id,))
        if not row:
            raise NotFound(f"Tournament not found: {tournament_id}")
        return from_row(Tournament, row)

    async def find_by_name(self, name: str) -> list[Tournament]:
        rows = await self.fetch_all(
            "SELECT * FROM tournament WHERE name=%s ORDER BY created_at DESC;",
            (name,),
        )
        return [from_row(Tournament, r) for r in rows]

    async def list_teams(self, tournament_id: str) -> list[Team]:
        rows = await self.fetch_all(
            "SELECT * FROM tournament_team WHERE tournament_id=%s ORDER BY created_seq;",
            (tournament_id,),
        )
        return [from_row(Team, r) for r in rows]

    async def list_registrations(self, tournament_id: str) -> list[Registration]:
        rows = await self.fetch_all(
            "SELECT * FROM tournament_registration WHERE tournament_id=%s ORDER BY registered_seq;",
            (tournament_id,),
        )
        return [from_row(Registration, r) for r in rows]

    async def list_matches(self, tournament_id: str) -> list[Match]:
        rows = await self.fetch_all(
            """
            SELECT * FROM tournament_match
            WHERE tournament_id=%s
            ORDER BY FIELD(bracket, 'RR', 'W', 'L', 'GF'), round_no, match_no;
            """,
            (tournament_id,),
        )
        return [from_row(Match, r) for r in rows]

    async def list_due_for_close(self, now: datetime) -> list[str]:
        rows = await self.fetch_all(
            """
            SELECT tournament_id FROM tournament
            WHERE status=%s AND registration_deadline IS NOT NULL AND registration_deadline <= %s;
            """,
            (TournamentStatus.OPEN.value, to_db_time(now)),
        )
        return [str(r["tournament_id"]) for r in rows]
