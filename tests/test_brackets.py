from __future__ import annotations

from collections import Counter
from itertools import combinations

import pytest

from domain.brackets import generate_matches, order_teams
from domain.enums import BracketKey, Slot, TournamentFormat
from domain.errors import InsufficientTeams, InvalidFormatConfiguration
from domain.models import Team, Tournament


def make_teams(n: int) -> list[Team]:
    return [Team(team_id=f"team{i}", tournament_id="t1", name=f"Team {i}", created_seq=i) for i in range(1, n + 1)]


def config(fmt: TournamentFormat, **kwargs) -> Tournament:
    return Tournament(tournament_id="t1", name="Cup", format=fmt, **kwargs)


@pytest.mark.parametrize("n", range(2, 18))
def test_single_elimination_has_one_match_per_eliminated_team(n):
    ms = generate_matches(config(TournamentFormat.SINGLE), make_teams(n))
    assert len(ms.matches) == n - 1
    assert all(m.bracket == BracketKey.W for m in ms.matches)


@pytest.mark.parametrize("n", [3, 5, 6, 8, 11, 16])
def test_single_elimination_every_match_leads_to_the_final(n):
    ms = generate_matches(config(TournamentFormat.SINGLE), make_teams(n))
    by_id = ms.by_id()
    roots = [m for m in ms.matches if m.next_match_id is None]
    assert len(roots) == 1
    final = roots[0]
    assert final.label == "Final"

    for m in ms.matches:
        hops = 0
        while m.next_match_id is not None:
            m = by_id[m.next_match_id]
            hops += 1
            assert hops <= n
        assert m is final

    # each slot is fed at most once
    feeds = Counter((m.next_match_id, m.next_slot) for m in ms.matches if m.next_match_id)
    assert max(feeds.values()) == 1


@pytest.mark.parametrize("n", range(2, 18))
def test_every_team_enters_exactly_once(n):
    ms = generate_matches(config(TournamentFormat.SINGLE), make_teams(n))
    placed = Counter(tid for m in ms.matches for tid in (m.home_team_id, m.away_team_id) if tid)
    assert set(placed) == {f"team{i}" for i in range(1, n + 1)}
    assert set(placed.values()) == {1}


def test_five_team_single_elimination_layout():
    ms = generate_matches(config(TournamentFormat.SINGLE), make_teams(5))
    by_label = {m.label: m for m in ms.matches}

    assert sorted(by_label) == ["Final", "R1-M1", "SF1", "SF2"]
    assert ms.rounds(BracketKey.W) == [1, 2, 3]

    opener = by_label["R1-M1"]
    assert (opener.home_team_id, opener.away_team_id) == ("team4", "team5")
    assert opener.next_match_id == by_label["SF1"].match_id
    assert opener.next_slot == Slot.AWAY

    # top seeds get the byes
    assert by_label["SF1"].home_team_id == "team1"
    assert by_label["SF1"].away_team_id is None
    assert (by_label["SF2"].home_team_id, by_label["SF2"].away_team_id) == ("team2", "team3")
    assert by_label["Final"].home_team_id is None and by_label["Final"].away_team_id is None


@pytest.mark.parametrize("n", range(2, 14))
def test_double_elimination_match_count(n):
    ms = generate_matches(config(TournamentFormat.DOUBLE), make_teams(n))
    counts = Counter(m.bracket for m in ms.matches)
    assert counts[BracketKey.W] == n - 1
    assert counts[BracketKey.L] == n - 2
    assert counts[BracketKey.GF] == 1
    assert len(ms.matches) == 2 * n - 2


@pytest.mark.parametrize("n", [2, 4, 5, 7, 8])
def test_double_elimination_every_winners_loser_drops(n):
    ms = generate_matches(config(TournamentFormat.DOUBLE), make_teams(n))
    by_id = ms.by_id()
    for m in ms.matches:
        if m.bracket == BracketKey.W:
            assert m.loser_next_match_id in by_id
            assert by_id[m.loser_next_match_id].bracket in (BracketKey.L, BracketKey.GF)
        else:
            assert m.loser_next_match_id is None


def test_double_elimination_two_teams_meet_again_in_grand_final():
    ms = generate_matches(config(TournamentFormat.DOUBLE), make_teams(2))
    w1, gf1 = ms.matches
    assert w1.label == "W1-M1" and gf1.label == "GF1"
    assert w1.next_match_id == gf1.match_id and w1.next_slot == Slot.HOME
    assert w1.loser_next_match_id == gf1.match_id and w1.loser_next_slot == Slot.AWAY


@pytest.mark.parametrize("n", [2, 3, 4, 5, 6, 9])
def test_round_robin_pairs_everyone_once(n):
    ms = generate_matches(config(TournamentFormat.ROUND_ROBIN), make_teams(n))
    pairs = Counter(frozenset((m.home_team_id, m.away_team_id)) for m in ms.matches)
    expected = {frozenset(p) for p in combinations([f"team{i}" for i in range(1, n + 1)], 2)}
    assert set(pairs) == expected
    assert set(pairs.values()) == {1}

    rounds = n if n % 2 else n - 1
    assert {m.round_no for m in ms.matches} == set(range(1, rounds + 1))
    for r in range(1, rounds + 1):
        playing = [tid for m in ms.matches if m.round_no == r for tid in (m.home_team_id, m.away_team_id)]
        assert len(playing) == len(set(playing))


def test_round_robin_second_cycle_flips_home_and_away():
    ms = generate_matches(config(TournamentFormat.ROUND_ROBIN, round_robin_cycles=2), make_teams(4))
    assert len(ms.matches) == 12
    meetings: dict[frozenset, list[str]] = {}
    for m in ms.matches:
        meetings.setdefault(frozenset((m.home_team_id, m.away_team_id)), []).append(m.home_team_id)
    assert all(len(homes) == 2 and homes[0] != homes[1] for homes in meetings.values())


def test_odd_round_robin_sits_each_team_out_once():
    ms = generate_matches(config(TournamentFormat.ROUND_ROBIN), make_teams(5))
    appearances = Counter(tid for m in ms.matches for tid in (m.home_team_id, m.away_team_id))
    assert set(appearances.values()) == {4}
    assert len({m.round_no for m in ms.matches}) == 5


def test_explicit_seeds_come_before_registration_order():
    teams = make_teams(5)
    teams[4].seed = 1
    teams[0].seed = 2
    assert [t.team_id for t in order_teams(teams)] == ["team5", "team1", "team2", "team3", "team4"]

    ms = generate_matches(config(TournamentFormat.SINGLE), teams)
    assert ms.seeds["team5"] == 1
    by_label = {m.label: m for m in ms.matches}
    assert by_label["SF1"].home_team_id == "team5"


def test_match_ids_are_deterministic():
    first = generate_matches(config(TournamentFormat.DOUBLE), make_teams(6))
    second = generate_matches(config(TournamentFormat.DOUBLE), make_teams(6))
    assert [m.match_id for m in first.matches] == [m.match_id for m in second.matches]
    assert len({m.match_id for m in first.matches}) == len(first.matches)


def test_needs_two_teams():
    with pytest.raises(InsufficientTeams):
        generate_matches(config(TournamentFormat.SINGLE), make_teams(1))


@pytest.mark.parametrize("fmt", list(TournamentFormat))
def test_playoff_cutoff_must_fit_the_field(fmt):
    with pytest.raises(InvalidFormatConfiguration):
        generate_matches(config(fmt, playoff_teams_count=5), make_teams(4))


def test_round_robin_needs_a_cycle():
    with pytest.raises(InvalidFormatConfiguration):
        generate_matches(config(TournamentFormat.ROUND_ROBIN, round_robin_cycles=0), make_teams(4))
