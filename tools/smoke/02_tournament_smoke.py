from __future__ import annotations

import os, sys
from datetime import timedelta
from uuid import uuid4

HERE = os.path.dirname(__file__)
ROOT = os.path.abspath(os.path.join(HERE, "..", ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import asyncio
from config import load_engine_config, load_mysql_config
from db.pool import DbPool
from domain.models import utcnow
from repositories.admin_repo import AdminRepo
from repositories.audit_repo import AuditRepo
from repositories.tournament_repo import TournamentRepo
from services.authorization_service import AuthorizationService
from services.bracket_service import BracketService
from services.lifecycle_service import LifecycleService
from services.match_service import MatchService
from services.roster_service import RosterService

async def main() -> None:
    run_id = os.getenv("SMOKE_RUN_ID") or f"smk_{uuid4().hex[:10]}"
    owner = os.getenv("SMOKE_USER_ID") or "999000111222333666"

    db = DbPool()
    await db.start(load_mysql_config())
    await db.apply_schema()

    shared = dict(
        store=TournamentRepo(db),
        authz=AuthorizationService(AdminRepo(db)),
        audit=AuditRepo(db),
    )
    brackets = BracketService(**shared)
    lifecycle = LifecycleService(bracket_service=brackets, engine=load_engine_config(), **shared)
    roster = RosterService(**shared)
    matches = MatchService(**shared)

    now = utcnow()
    t = await lifecycle.create_tournament(
        actor=owner,
        name=f"SMOKE_{run_id}",
        format="single_elim",
        team_formation="organizer_assigned",
        start_date=now + timedelta(days=1),
        end_date=now + timedelta(days=2),
    )
    await roster.bulk_create_teams(actor=owner, tournament_id=t.tournament_id, count=5, name_prefix="Smoke")
    await lifecycle.publish(actor=owner, tournament_id=t.tournament_id)

    match_set = await lifecycle.start(actor=owner, tournament_id=t.tournament_id)
    assert len(match_set.matches) == 4, match_set.matches

    again = await brackets.generate_bracket(actor=owner, tournament_id=t.tournament_id)
    assert [m.match_id for m in again.matches] == [m.match_id for m in match_set.matches]

    # play every match in bracket order, home side wins
    while True:
        pending = [m for m in await brackets.get_matches(tournament_id=t.tournament_id) if not m.status.is_terminal]
        if not pending:
            break
        m = pending[0]
        await matches.enter_score(actor=owner, tournament_id=t.tournament_id, match_id=m.match_id, home_score=3, away_score=1)

    standings = await lifecycle.complete(actor=owner, tournament_id=t.tournament_id)
    assert standings.is_resolved

    await db.close()
    print(f"OK: tournament smoke passed. run_id={run_id} tournament_id={t.tournament_id} matches={len(match_set.matches)}")

if __name__ == "__main__":
    asyncio.run(main())
