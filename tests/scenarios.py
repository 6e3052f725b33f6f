"""Shortcuts for driving a tournament through the services in tests."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from config import EngineConfig
from domain.brackets import MatchSet
from domain.models import Match, Team, Tournament
from fakes import FakeAdminRepo, FixedClock, InMemoryStore, RecordingAudit, RecordingNotifier
from services.authorization_service import AuthorizationService
from services.bracket_service import BracketService
from services.lifecycle_service import LifecycleService
from services.match_service import MatchService
from services.notifier import Notifier
from services.roster_service import RosterService
from services.standings_service import StandingsService

OWNER = "1001"
ADMIN = "1002"
SCOREKEEPER = "1003"
STRANGER = "1999"


@dataclass
class Engine:
    store: InMemoryStore
    admins: FakeAdminRepo
    audit: RecordingAudit
    notifier: Any
    clock: FixedClock
    authz: AuthorizationService
    brackets: BracketService
    lifecycle: LifecycleService
    roster: RosterService
    matches: MatchService
    standings: StandingsService


def build_engine(*, config: Optional[EngineConfig] = None, notifier: Optional[Notifier] = None) -> Engine:
    admins = FakeAdminRepo()
    store = InMemoryStore(admins)
    audit = RecordingAudit()
    notifier = notifier or RecordingNotifier()
    clock = FixedClock()
    authz = AuthorizationService(admins)

    shared = dict(store=store, authz=authz, audit=audit, notifier=notifier, clock=clock)
    brackets = BracketService(**shared)
    return Engine(
        store=store,
        admins=admins,
        audit=audit,
        notifier=notifier,
        clock=clock,
        authz=authz,
        brackets=brackets,
        lifecycle=LifecycleService(bracket_service=brackets, engine=config, **shared),
        roster=RosterService(**shared),
        matches=MatchService(**shared),
        standings=StandingsService(**shared),
    )


async def draft(engine: Any, *, format: str = "single_elim", team_formation: str = "organizer_assigned", **settings: Any) -> Tournament:
    now = engine.clock()
    name = settings.pop("name", "Spring League")
    settings.setdefault("start_date", now + timedelta(days=7))
    settings.setdefault("end_date", now + timedelta(days=8))
    return await engine.lifecycle.create_tournament(
        actor=OWNER,
        name=name,
        format=format,
        team_formation=team_formation,
        **settings,
    )


async def open_with_teams(engine: Any, count: int, **kwargs: Any) -> Tournament:
    t = await draft(engine, **kwargs)
    if count:
        await engine.roster.bulk_create_teams(actor=OWNER, tournament_id=t.tournament_id, count=count)
    return await engine.lifecycle.publish(actor=OWNER, tournament_id=t.tournament_id)


async def started(engine: Any, count: int, **kwargs: Any) -> tuple[Tournament, MatchSet]:
    t = await open_with_teams(engine, count, **kwargs)
    match_set = await engine.lifecycle.start(actor=OWNER, tournament_id=t.tournament_id)
    return t, match_set


async def teams_by_name(engine: Any, tournament_id: str) -> dict[str, Team]:
    return {t.name: t for t in await engine.roster.get_teams(tournament_id=tournament_id)}


async def match(engine: Any, tournament_id: str, label: str) -> Match:
    for m in await engine.brackets.get_matches(tournament_id=tournament_id):
        if m.label == label:
            return m
    raise AssertionError(f"no match labelled {label}")


async def play(
    engine: Any,
    tournament_id: str,
    label: str,
    home_score: int,
    away_score: int,
    *,
    overtime_winner_id: Optional[str] = None,
    actor: str = OWNER,
) -> Match:
    m = await match(engine, tournament_id, label)
    return await engine.matches.enter_score(
        actor=actor,
        tournament_id=tournament_id,
        match_id=m.match_id,
        home_score=home_score,
        away_score=away_score,
        overtime_winner_id=overtime_winner_id,
    )
