from __future__ import annotations

from datetime import timedelta

import pytest

from domain.enums import TournamentStatus as S
from domain.errors import (
    InsufficientTeams,
    InvalidStateTransition,
    NotFound,
    ValidationFailed,
)
from domain.lifecycle import can_transition, has_started
from domain.models import SYSTEM_ACTOR, Tournament
from scenarios import OWNER, draft, open_with_teams, play, started
from services.notifier import drain


@pytest.mark.parametrize(
    "current,target,ok",
    [
        (S.DRAFT, S.OPEN, True),
        (S.DRAFT, S.IN_PROGRESS, False),
        (S.OPEN, S.CLOSED, True),
        (S.CLOSED, S.IN_PROGRESS, True),
        (S.CLOSED, S.OPEN, False),
        (S.IN_PROGRESS, S.COMPLETED, True),
        (S.COMPLETED, S.CANCELLED, False),
        (S.CANCELLED, S.OPEN, False),
        (S.IN_PROGRESS, S.POSTPONED, True),
    ],
)
def test_transition_table(current, target, ok):
    assert can_transition(Tournament(tournament_id="t", name="x", status=current), target) is ok


def test_postponed_returns_only_where_it_came_from():
    t = Tournament(tournament_id="t", name="x", status=S.POSTPONED, postponed_from_status=S.OPEN)
    assert can_transition(t, S.OPEN)
    assert not can_transition(t, S.CLOSED)
    assert can_transition(t, S.CANCELLED)
    assert not has_started(t)


async def test_create_records_owner_and_audit(engine):
    t = await draft(engine, max_teams=8, venue="Rink 2")

    assert t.status == S.DRAFT
    assert t.venue == "Rink 2"
    assert await engine.authz.is_tournament_admin(OWNER, t.tournament_id) is not None
    assert engine.audit.actions(t.tournament_id) == ["CreateTournament"]
    assert (await engine.lifecycle.find_tournament(name_or_id="Spring League")).tournament_id == t.tournament_id


async def test_create_rejects_unknown_and_bad_settings(engine):
    with pytest.raises(ValidationFailed):
        await draft(engine, colour="blue")
    with pytest.raises(ValidationFailed):
        await draft(engine, min_players_per_team=6, max_players_per_team=4)
    with pytest.raises(ValidationFailed):
        await draft(engine, format="swiss")


async def test_publish_requires_a_sane_date_range(engine):
    now = engine.clock()
    t = await draft(engine, start_date=now + timedelta(days=3), end_date=now + timedelta(days=1))
    with pytest.raises(ValidationFailed):
        await engine.lifecycle.publish(actor=OWNER, tournament_id=t.tournament_id)
    assert (await engine.lifecycle.get_tournament(tournament_id=t.tournament_id)).status == S.DRAFT


async def test_publish_requires_fee_type_with_a_fee(engine):
    t = await draft(engine, entry_fee="25.00")
    with pytest.raises(ValidationFailed):
        await engine.lifecycle.publish(actor=OWNER, tournament_id=t.tournament_id)


async def test_full_lifecycle_audits_every_transition(engine):
    t, _ms = await started(engine, 2)
    await play(engine, t.tournament_id, "Final", 2, 1)
    standings = await engine.lifecycle.complete(actor=OWNER, tournament_id=t.tournament_id)

    assert standings.is_resolved
    assert (await engine.lifecycle.get_tournament(tournament_id=t.tournament_id)).status == S.COMPLETED
    assert engine.audit.actions(t.tournament_id) == [
        "CreateTournament",
        "BulkCreateTeams",
        "Publish",
        "CloseRegistration",
        "GenerateBracket",
        "Start",
        "EnterScore",
        "Complete",
    ]
    teams = {x.name: x for x in await engine.roster.get_teams(tournament_id=t.tournament_id)}
    assert teams["Team 1"].final_placement == 1
    assert teams["Team 2"].final_placement == 2

    await drain()
    assert "bracket_generated" in engine.notifier.kinds()
    assert engine.notifier.kinds().count("status_changed") == 4


async def test_start_needs_two_registered_teams(engine):
    t = await open_with_teams(engine, 1)
    with pytest.raises(InsufficientTeams):
        await engine.lifecycle.start(actor=OWNER, tournament_id=t.tournament_id)

    after = await engine.lifecycle.get_tournament(tournament_id=t.tournament_id)
    assert after.status == S.OPEN
    assert await engine.brackets.get_matches(tournament_id=t.tournament_id) == []


async def test_start_from_draft_is_rejected(engine):
    t = await draft(engine)
    with pytest.raises(InvalidStateTransition):
        await engine.lifecycle.start(actor=OWNER, tournament_id=t.tournament_id)


async def test_complete_with_pending_matches_fails(engine):
    t, _ms = await started(engine, 4)
    with pytest.raises(InvalidStateTransition) as exc:
        await engine.lifecycle.complete(actor=OWNER, tournament_id=t.tournament_id)
    assert "pending" in exc.value.reason


async def test_postpone_and_resume_round_trip(engine):
    t = await open_with_teams(engine, 2)
    new_date = engine.clock() + timedelta(days=30)

    p = await engine.lifecycle.postpone(actor=OWNER, tournament_id=t.tournament_id, new_date=new_date)
    assert p.status == S.POSTPONED
    assert p.postponed_from_status == S.OPEN
    assert p.start_date == new_date and p.end_date >= new_date

    with pytest.raises(InvalidStateTransition):
        await engine.lifecycle.close_registration(actor=OWNER, tournament_id=t.tournament_id)

    r = await engine.lifecycle.resume(actor=OWNER, tournament_id=t.tournament_id)
    assert r.status == S.OPEN
    assert r.postponed_from_status is None
    assert engine.audit.actions(t.tournament_id)[-2:] == ["Postpone", "Resume"]


async def test_resume_requires_postponed(engine):
    t = await draft(engine)
    with pytest.raises(InvalidStateTransition):
        await engine.lifecycle.resume(actor=OWNER, tournament_id=t.tournament_id)


async def test_cancel_is_terminal(engine):
    t = await open_with_teams(engine, 2)
    await engine.lifecycle.cancel(actor=OWNER, tournament_id=t.tournament_id, reason="rink flooded")
    entry = engine.audit.entries[-1]
    assert entry.action == "Cancel" and entry.details == {"reason": "rink flooded"}

    with pytest.raises(InvalidStateTransition):
        await engine.lifecycle.publish(actor=OWNER, tournament_id=t.tournament_id)


async def test_deadline_sweep_closes_registration_as_system(engine):
    now = engine.clock()
    t = await open_with_teams(engine, 2, registration_deadline=now + timedelta(hours=1))

    assert await engine.lifecycle.close_expired_registrations() == []

    engine.clock.advance(hours=2)
    assert await engine.lifecycle.close_expired_registrations() == [t.tournament_id]

    after = await engine.lifecycle.get_tournament(tournament_id=t.tournament_id)
    assert after.status == S.CLOSED
    last = engine.audit.entries[-1]
    assert (last.action, last.actor) == ("CloseRegistration", SYSTEM_ACTOR)


async def test_start_after_deadline_attributes_the_close_to_system(engine):
    now = engine.clock()
    t = await open_with_teams(engine, 2, registration_deadline=now + timedelta(hours=1))
    engine.clock.advance(hours=2)

    await engine.lifecycle.start(actor=OWNER, tournament_id=t.tournament_id)

    closes = [e for e in engine.audit.entries if e.action == "CloseRegistration"]
    assert [e.actor for e in closes] == [SYSTEM_ACTOR]


async def test_unknown_tournament(engine):
    with pytest.raises(NotFound):
        await engine.lifecycle.find_tournament(name_or_id="nope")
    with pytest.raises(NotFound):
        await engine.lifecycle.get_tournament(tournament_id="missing")
