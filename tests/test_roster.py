from __future__ import annotations

import random
from collections import Counter

import pytest

from domain.enums import EntryStatus, SkillTier, TournamentStatus
from domain.errors import RosterLocked
from domain.models import Registration, Team, Tournament
from domain.roster import (
    auto_assign,
    bulk_team_names,
    check_roster_editable,
    renumber_waitlist,
    team_sizes,
    waitlist_head,
)


def reg(i: int, **kwargs) -> Registration:
    return Registration(registration_id=f"r{i}", tournament_id="t1", user_id=f"u{i}", registered_seq=i, **kwargs)


def teams(n: int) -> list[Team]:
    return [Team(team_id=f"team{i}", tournament_id="t1", name=f"Team {i}", created_seq=i) for i in range(1, n + 1)]


def positions(entries) -> list[int]:
    return sorted(e.waitlist_position for e in entries if e.status == EntryStatus.WAITLISTED)


def test_renumber_closes_gaps_in_order():
    entries = [
        reg(1),
        reg(2, status=EntryStatus.WAITLISTED, waitlist_position=2),
        reg(3, status=EntryStatus.WAITLISTED, waitlist_position=5),
        reg(4, status=EntryStatus.WITHDRAWN, waitlist_position=3),
    ]
    changed = renumber_waitlist(entries)

    assert positions(entries) == [1, 2]
    assert entries[1].waitlist_position == 1 and entries[2].waitlist_position == 2
    assert entries[3].waitlist_position is None
    assert {e.registration_id for e in changed} == {"r2", "r3", "r4"}


def test_waitlist_stays_dense_under_random_churn():
    rng = random.Random(7)
    entries = [reg(i, status=EntryStatus.WAITLISTED, waitlist_position=i) for i in range(1, 21)]

    for _ in range(60):
        waiting = [e for e in entries if e.status == EntryStatus.WAITLISTED]
        if not waiting:
            break
        victim = rng.choice(waiting)
        if rng.random() < 0.5:
            victim.status = EntryStatus.WITHDRAWN
        else:
            head = waitlist_head(entries)
            head.status = EntryStatus.REGISTERED
        renumber_waitlist(entries)

        assert positions(entries) == list(range(1, len(positions(entries)) + 1))
        assert all(e.waitlist_position is None for e in entries if e.status != EntryStatus.WAITLISTED)


def test_waitlist_head_is_lowest_position():
    entries = [
        reg(1, status=EntryStatus.WAITLISTED, waitlist_position=2),
        reg(2, status=EntryStatus.WAITLISTED, waitlist_position=1),
    ]
    assert waitlist_head(entries).registration_id == "r2"


@pytest.mark.parametrize("balance", [False, True])
@pytest.mark.parametrize("players,team_count", [(10, 3), (7, 4), (12, 4), (5, 5)])
def test_auto_assign_keeps_team_sizes_within_one(balance, players, team_count):
    t = Tournament(tournament_id="t1", name="League")
    tiers = list(SkillTier)
    regs = [reg(i, skill_tier=tiers[i % len(tiers)]) for i in range(1, players + 1)]

    assignments, left_over = auto_assign(t, regs, teams(team_count), balance_by_skill=balance)

    assert left_over == []
    assert len(assignments) == players
    sizes = team_sizes(regs)
    assert max(sizes.values()) - min(sizes.values()) <= 1
    assert len(sizes) == min(players, team_count)


def test_auto_assign_spreads_each_tier():
    t = Tournament(tournament_id="t1", name="League")
    regs = [reg(i, skill_tier=SkillTier.GOLD if i <= 4 else SkillTier.BRONZE) for i in range(1, 9)]
    auto_assign(t, regs, teams(4), balance_by_skill=True)
    gold = Counter(r.team_id for r in regs if r.skill_tier == SkillTier.GOLD)
    assert set(gold.values()) == {1}


def test_auto_assign_respects_existing_members_and_capacity():
    t = Tournament(tournament_id="t1", name="League", max_players_per_team=2)
    regs = [reg(1, team_id="team1"), reg(2, team_id="team1"), reg(3), reg(4), reg(5)]

    assignments, left_over = auto_assign(t, regs, teams(2), balance_by_skill=False)

    assert [(r.registration_id, team.team_id) for r, team in assignments] == [("r3", "team2"), ("r4", "team2")]
    assert [r.registration_id for r in left_over] == ["r5"]


def test_auto_assign_skips_waitlisted_and_withdrawn_players():
    t = Tournament(tournament_id="t1", name="League")
    regs = [reg(1), reg(2, status=EntryStatus.WAITLISTED, waitlist_position=1), reg(3, status=EntryStatus.WITHDRAWN)]
    assignments, _ = auto_assign(t, regs, teams(2), balance_by_skill=False)
    assert [r.registration_id for r, _team in assignments] == ["r1"]


def test_bulk_names_skip_taken_names():
    assert bulk_team_names("Team", 3, ["team 2", "Other"]) == ["Team 1", "Team 3", "Team 4"]


@pytest.mark.parametrize("status", [TournamentStatus.CANCELLED, TournamentStatus.COMPLETED])
def test_finished_tournaments_lock_rosters(status):
    with pytest.raises(RosterLocked):
        check_roster_editable(Tournament(tournament_id="t1", name="League", status=status))


def test_substitutions_decide_whether_a_started_roster_can_change():
    running = Tournament(tournament_id="t1", name="League", status=TournamentStatus.IN_PROGRESS)
    check_roster_editable(running)

    running.allow_substitutions = False
    with pytest.raises(RosterLocked):
        check_roster_editable(running)

    check_roster_editable(Tournament(tournament_id="t1", name="League", allow_substitutions=False))
