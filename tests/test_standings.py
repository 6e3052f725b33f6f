from __future__ import annotations

import pytest

from domain import progression
from domain.brackets import generate_matches
from domain.enums import BracketKey, EntryStatus, MatchStatus, Tiebreaker, TournamentFormat
from domain.errors import UnresolvableTieRequiresManualInput, ValidationFailed
from domain.models import Match, Team, Tournament
from domain.standings import compute_standings, validate_resolution


def rr_config(**kwargs) -> Tournament:
    return Tournament(tournament_id="t1", name="League", format=TournamentFormat.ROUND_ROBIN, **kwargs)


def team(name: str, seq: int, **counters) -> Team:
    return Team(team_id=name, tournament_id="t1", name=name.title(), created_seq=seq, **counters)


def played(no: int, home: str, away: str, home_score: int, away_score: int) -> Match:
    return Match(
        match_id=f"m{no}",
        tournament_id="t1",
        bracket=BracketKey.RR,
        round_no=no,
        match_no=1,
        home_team_id=home,
        away_team_id=away,
        status=MatchStatus.COMPLETED,
        home_score=home_score,
        away_score=away_score,
        winner_team_id=home if home_score > away_score else away if away_score > home_score else None,
    )


def play_round_robin(config: Tournament, teams: list[Team], winners: dict[frozenset, str]) -> list[Match]:
    """Plays every generated fixture 2-1 for the named winner."""
    by_id = {t.team_id: t for t in teams}
    matches = {m.match_id: m for m in generate_matches(config, teams).matches}
    for m in list(matches.values()):
        w = winners[frozenset((m.home_team_id, m.away_team_id))]
        home, away = (2, 1) if w == m.home_team_id else (1, 2)
        progression.enter_score(config, m, matches, by_id, home_score=home, away_score=away)
    return list(matches.values())


def test_three_way_cycle_is_reported_as_one_tied_group():
    config = rr_config()
    teams = [team("a", 1), team("b", 2), team("c", 3)]
    matches = play_round_robin(
        config,
        teams,
        {
            frozenset(("a", "b")): "a",
            frozenset(("b", "c")): "b",
            frozenset(("c", "a")): "c",
        },
    )

    st = compute_standings(config, teams, matches)

    assert [(r.points, r.goal_differential, r.goals_for) for r in st.rows] == [(3, 0, 3)] * 3
    assert len(st.tied_groups) == 1
    group = st.tied_groups[0]
    assert group.rank == 1
    assert set(group.team_ids) == {"a", "b", "c"}
    assert [r.rank for r in st.rows] == [1, 1, 1]
    assert not st.is_resolved
    with pytest.raises(UnresolvableTieRequiresManualInput):
        st.final_placements()


def test_head_to_head_beats_goal_differential_by_default():
    config = rr_config()
    teams = [
        team("a", 1, wins=1, losses=1, points=3, goals_for=2, goals_against=3),
        team("b", 2, wins=1, losses=1, points=3, goals_for=5, goals_against=1),
    ]
    matches = [played(1, "a", "b", 1, 0)]

    st = compute_standings(config, teams, matches)
    assert [r.team_id for r in st.rows] == ["a", "b"]
    assert st.is_resolved

    st = compute_standings(rr_config(tiebreak_order=(Tiebreaker.GOAL_DIFFERENTIAL,)), teams, matches)
    assert [r.team_id for r in st.rows] == ["b", "a"]


def test_split_group_restarts_at_head_to_head():
    config = rr_config()
    teams = [
        team("a", 1, points=3, goals_for=5, goals_against=2),
        team("b", 2, points=3, goals_for=2, goals_against=2),
        team("c", 3, points=3, goals_for=2, goals_against=2),
    ]
    # head-to-head among all three is a cycle, so goal differential splits off A;
    # B and C are then separated by their own meeting
    matches = [played(1, "a", "b", 1, 0), played(2, "b", "c", 1, 0), played(3, "c", "a", 1, 0)]

    st = compute_standings(config, teams, matches)

    assert [(r.rank, r.team_id) for r in st.rows] == [(1, "a"), (2, "b"), (3, "c")]
    assert st.is_resolved
    assert st.final_placements() == {"a": 1, "b": 2, "c": 3}


def test_points_order_and_playoff_flags():
    config = rr_config(playoff_teams_count=2)
    teams = [team("a", 1, points=1), team("b", 2, points=6), team("c", 3, points=3)]
    st = compute_standings(config, teams, [])
    assert [r.team_id for r in st.rows] == ["b", "c", "a"]
    assert [r.is_playoff_bound for r in st.rows] == [True, True, False]


def test_withdrawn_teams_are_not_ranked():
    teams = [team("a", 1, points=3), team("b", 2, status=EntryStatus.WITHDRAWN), team("c", 3)]
    st = compute_standings(rr_config(), teams, [])
    assert [r.team_id for r in st.rows] == ["a", "c"]


def test_games_played_counts_every_result():
    teams = [team("a", 1, wins=2, losses=1, ties=1, points=7, goals_for=6, goals_against=4)]
    row = compute_standings(rr_config(), teams, []).row_for("a")
    assert row.games_played == 4
    assert row.goal_differential == 2


def test_elimination_ranks_by_stage_reached():
    config = Tournament(tournament_id="t1", name="Cup", format=TournamentFormat.SINGLE)
    teams = {f"team{i}": team(f"team{i}", i) for i in range(1, 5)}
    matches = {m.match_id: m for m in generate_matches(config, list(teams.values())).matches}

    def score(label: str, home: int, away: int) -> None:
        m = next(x for x in matches.values() if x.label == label)
        progression.enter_score(config, m, matches, teams, home_score=home, away_score=away)

    score("SF1", 3, 0)  # team1 beats team4
    score("SF2", 0, 3)  # team3 beats team2

    st = compute_standings(config, list(teams.values()), list(matches.values()))
    # finalists still alive, semi-final losers tied on stage and points
    assert {r.team_id for r in st.rows[:2]} == {"team1", "team3"}
    assert len(st.tied_groups) == 2

    score("Final", 0, 2)
    st = compute_standings(config, list(teams.values()), list(matches.values()))
    assert [r.team_id for r in st.rows[:2]] == ["team3", "team1"]
    assert [g.rank for g in st.tied_groups] == [3]
    assert set(st.tied_groups[0].team_ids) == {"team2", "team4"}


# -------------------------
# Manual resolution
# -------------------------

def cycle_standings():
    config = rr_config()
    teams = [team("a", 1), team("b", 2), team("c", 3)]
    matches = play_round_robin(
        config,
        teams,
        {
            frozenset(("a", "b")): "a",
            frozenset(("b", "c")): "b",
            frozenset(("c", "a")): "c",
        },
    )
    return config, teams, matches, compute_standings(config, teams, matches)


def test_resolution_must_cover_the_whole_group_with_its_ranks():
    _config, _teams, _matches, st = cycle_standings()

    groups = validate_resolution(st, {"a": 2, "b": 1, "c": 3})
    assert groups == [st.tied_groups[0]]

    with pytest.raises(ValidationFailed):
        validate_resolution(st, {"a": 1, "b": 2})
    with pytest.raises(ValidationFailed):
        validate_resolution(st, {"a": 1, "b": 2, "c": 4})
    with pytest.raises(ValidationFailed):
        validate_resolution(st, {"a": 1, "b": 1, "c": 3})
    with pytest.raises(ValidationFailed):
        validate_resolution(st, {"zz": 1})
    with pytest.raises(ValidationFailed):
        validate_resolution(st, {})


def test_locked_placements_order_the_group():
    config, teams, matches, _st = cycle_standings()
    for t, place in zip(teams, (3, 1, 2)):
        t.final_placement = place
        t.placement_locked = True

    st = compute_standings(config, teams, matches)

    assert st.is_resolved
    assert [(r.rank, r.team_id) for r in st.rows] == [(1, "b"), (2, "c"), (3, "a")]
    assert len(st.manual_groups) == 1
    # an already ordered group may be ordered again
    assert validate_resolution(st, {"a": 1, "b": 2, "c": 3}) == [st.manual_groups[0]]


def test_seeds_settle_what_the_knockout_chain_cannot():
    config = Tournament(tournament_id="t1", name="Cup", format=TournamentFormat.SINGLE)
    teams = {f"team{i}": team(f"team{i}", i) for i in range(1, 5)}
    ms = generate_matches(config, list(teams.values()))
    for team_id, seed in ms.seeds.items():
        teams[team_id].seed = seed
    matches = {m.match_id: m for m in ms.matches}

    def score(label: str, home: int, away: int) -> None:
        m = next(x for x in matches.values() if x.label == label)
        progression.enter_score(config, m, matches, teams, home_score=home, away_score=away)

    score("SF1", 0, 3)  # team4 beats team1
    score("SF2", 0, 3)  # team3 beats team2
    score("Final", 1, 2)

    st = compute_standings(config, list(teams.values()), list(matches.values()))

    assert st.is_resolved
    assert [r.team_id for r in st.rows] == ["team3", "team4", "team1", "team2"]
    assert st.final_placements()["team1"] == 3


def test_round_robin_never_falls_back_to_seed():
    config, teams, matches, _st = cycle_standings()
    for i, t in enumerate(teams, start=1):
        t.seed = i
    assert len(compute_standings(config, teams, matches).tied_groups) == 1
