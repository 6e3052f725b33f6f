# domain/brackets.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from domain.enums import BracketKey, Slot, TournamentFormat
from domain.errors import InsufficientTeams, InvalidFormatConfiguration
from domain.models import (
    Match,
    Team,
    Tournament,
    match_id_for,
    next_power_of_two,
    seeded_positions,
)


@dataclass
class MatchSet:
    matches: list[Match]
    seeds: dict[str, int] = field(default_factory=dict)  # team_id -> seed

    def by_id(self) -> dict[str, Match]:
        return {m.match_id: m for m in self.matches}

    def rounds(self, bracket: BracketKey) -> list[int]:
        return sorted({m.round_no for m in self.matches if m.bracket == bracket})


Generator = Callable[[str, Sequence[Team], Tournament], MatchSet]


def order_teams(teams: Sequence[Team]) -> list[Team]:
    """Seeded teams first (by seed), then the rest in registration order."""
    return sorted(
        teams,
        key=lambda t: (
            t.seed is None,
            int(t.seed or 0),
            int(t.created_seq),
        ),
    )


# -------------------------
# Elimination plan
# -------------------------
#
# Elimination brackets are first laid out structurally for a full power-of-two
# field. Each node's two slots are fed by a team, by the winner/loser of another
# node, or by nothing (padding). A collapse pass then drops every node that has
# fewer than two live inputs: a node with one live input is a bye and passes
# that input straight through to its parent. Only nodes with two live inputs
# become matches, so byes never appear as match rows.

_Key = tuple[BracketKey, int, int]  # bracket, structural round, 1-based index


@dataclass(frozen=True)
class _Source:
    kind: str  # team | winner | loser | empty
    ref: Optional[object] = None  # team_id for "team", node key otherwise


_EMPTY = _Source("empty")


def _team(team_id: Optional[str]) -> _Source:
    return _Source("team", team_id) if team_id is not None else _EMPTY


def _winner(key: _Key) -> _Source:
    return _Source("winner", key)


def _loser(key: _Key) -> _Source:
    return _Source("loser", key)


@dataclass
class _Node:
    key: _Key
    home: _Source
    away: _Source


class _Plan:
    def __init__(self) -> None:
        self.nodes: list[_Node] = []

    def add(self, bracket: BracketKey, round_no: int, idx: int, home: _Source, away: _Source) -> _Key:
        key = (bracket, round_no, idx)
        self.nodes.append(_Node(key=key, home=home, away=away))
        return key


def _build_winners(plan: _Plan, team_ids: list[str]) -> list[list[_Key]]:
    """Adds the winners bracket; returns node keys per structural round."""
    size = next_power_of_two(len(team_ids))
    positions = seeded_positions(size)
    by_seed = {seed: tid for seed, tid in enumerate(team_ids, start=1)}

    rounds: list[list[_Key]] = []
    first: list[_Key] = []
    for i in range(size // 2):
        home = _team(by_seed.get(positions[2 * i]))
        away = _team(by_seed.get(positions[2 * i + 1]))
        first.append(plan.add(BracketKey.W, 1, i + 1, home, away))
    rounds.append(first)

    r = 1
    while len(rounds[-1]) > 1:
        r += 1
        prev = rounds[-1]
        cur: list[_Key] = []
        for i in range(len(prev) // 2):
            cur.append(plan.add(BracketKey.W, r, i + 1, _winner(prev[2 * i]), _winner(prev[2 * i + 1])))
        rounds.append(cur)
    return rounds


def _build_losers(plan: _Plan, winners: list[list[_Key]]) -> Optional[_Key]:
    """
    Adds the losers bracket fed from `winners`; returns the node whose winner
    is the losers' champion (None when the field is a single W1 match).

    L1 pairs W1 losers. L(2j) = winners of L(2j-1) vs W(j+1) losers, dropped in
    reversed order on odd j so teams do not immediately meet again.
    L(2j+1) pairs winners of L(2j).
    """
    k = len(winners)
    if k < 2:
        return None

    w1 = winners[0]
    prev = [
        plan.add(BracketKey.L, 1, i + 1, _loser(w1[2 * i]), _loser(w1[2 * i + 1]))
        for i in range(len(w1) // 2)
    ]
    lr = 1

    for j in range(1, k):
        drop = list(winners[j])
        if j % 2 == 1:
            drop.reverse()
        lr += 1
        prev = [
            plan.add(BracketKey.L, lr, i + 1, _winner(prev[i]), _loser(drop[i]))
            for i in range(len(prev))
        ]
        if len(prev) > 1:
            lr += 1
            prev = [
                plan.add(BracketKey.L, lr, i + 1, _winner(prev[2 * i]), _winner(prev[2 * i + 1]))
                for i in range(len(prev) // 2)
            ]
    return prev[0]


def _collapse(plan: _Plan) -> tuple[list[_Node], dict[_Key, tuple[Optional[_Source], Optional[_Source]]]]:
    """
    Returns the real nodes (two live inputs) in plan order, with each node's
    effective home/away sources after byes have been passed through.
    """
    real: dict[_Key, tuple[Optional[_Source], Optional[_Source]]] = {}
    passthrough: dict[_Key, _Source] = {}

    def effective(src: _Source) -> Optional[_Source]:
        if src.kind == "team":
            return src
        if src.kind == "winner":
            if src.ref in real:
                return src
            return passthrough.get(src.ref)  # type: ignore[arg-type]
        if src.kind == "loser":
            # a bye has no loser
            return src if src.ref in real else None
        return None

    kept: list[_Node] = []
    for node in plan.nodes:
        h = effective(node.home)
        a = effective(node.away)
        if h is not None and a is not None:
            real[node.key] = (h, a)
            kept.append(node)
        elif h is not None or a is not None:
            passthrough[node.key] = h if h is not None else a  # type: ignore[assignment]
    return kept, real


def _materialize(tournament_id: str, plan: _Plan, *, labeler: Callable[[BracketKey, int, int, int], str]) -> list[Match]:
    kept, sources = _collapse(plan)

    # compact round numbers per bracket (a round may vanish entirely to byes)
    round_map: dict[tuple[BracketKey, int], int] = {}
    for bracket in (BracketKey.W, BracketKey.L, BracketKey.GF):
        structural = sorted({n.key[1] for n in kept if n.key[0] == bracket})
        for new_r, old_r in enumerate(structural, start=1):
            round_map[(bracket, old_r)] = new_r
    total_rounds = {b: sum(1 for (bb, _r) in round_map if bb == b) for b in (BracketKey.W, BracketKey.L, BracketKey.GF)}

    counters: dict[tuple[BracketKey, int], int] = {}
    by_key: dict[_Key, Match] = {}
    out: list[Match] = []
    for node in kept:
        bracket, structural_round, _idx = node.key
        round_no = round_map[(bracket, structural_round)]
        counters[(bracket, round_no)] = counters.get((bracket, round_no), 0) + 1
        match_no = counters[(bracket, round_no)]
        m = Match(
            match_id=match_id_for(tournament_id, bracket, round_no, match_no),
            tournament_id=tournament_id,
            bracket=bracket,
            round_no=round_no,
            match_no=match_no,
        )
        by_key[node.key] = m
        out.append(m)

    for m in out:
        m.label = labeler(m.bracket, m.round_no, m.match_no, total_rounds[m.bracket])

    for node in kept:
        m = by_key[node.key]
        for slot, src in zip((Slot.HOME, Slot.AWAY), sources[node.key]):
            if src.kind == "team":
                m.set_team(slot, src.ref)  # type: ignore[arg-type]
                continue
            feeder = by_key[src.ref]  # type: ignore[index]
            if src.kind == "winner":
                feeder.next_match_id = m.match_id
                feeder.next_slot = slot
            else:
                feeder.loser_next_match_id = m.match_id
                feeder.loser_next_slot = slot
    return out


def _single_label(team_count: int) -> Callable[[BracketKey, int, int, int], str]:
    def label(bracket: BracketKey, round_no: int, match_no: int, total: int) -> str:
        from_end = total - round_no
        if from_end == 0:
            return "Final"
        if from_end == 1 and team_count >= 4:
            return f"SF{match_no}"
        if from_end == 2 and team_count >= 8:
            return f"QF{match_no}"
        return f"R{round_no}-M{match_no}"

    return label


def _double_label(bracket: BracketKey, round_no: int, match_no: int, total: int) -> str:
    if bracket == BracketKey.GF:
        return f"GF{round_no}"
    return f"{bracket.value}{round_no}-M{match_no}"


def _assign_seeds(teams: Sequence[Team]) -> dict[str, int]:
    return {t.team_id: i for i, t in enumerate(teams, start=1)}


# -------------------------
# Generators
# -------------------------

def generate_single_elimination(tournament_id: str, teams: Sequence[Team], config: Tournament) -> MatchSet:
    team_ids = [t.team_id for t in teams]
    plan = _Plan()
    _build_winners(plan, team_ids)
    matches = _materialize(tournament_id, plan, labeler=_single_label(len(team_ids)))
    return MatchSet(matches=matches, seeds=_assign_seeds(teams))


def generate_double_elimination(tournament_id: str, teams: Sequence[Team], config: Tournament) -> MatchSet:
    team_ids = [t.team_id for t in teams]
    plan = _Plan()
    winners = _build_winners(plan, team_ids)
    lb_final = _build_losers(plan, winners)
    wb_final = winners[-1][0]

    # two-team field: the W1 loser goes straight to the grand final
    away = _winner(lb_final) if lb_final is not None else _loser(wb_final)
    plan.add(BracketKey.GF, 1, 1, _winner(wb_final), away)

    matches = _materialize(tournament_id, plan, labeler=_double_label)
    return MatchSet(matches=matches, seeds=_assign_seeds(teams))


def generate_round_robin(tournament_id: str, teams: Sequence[Team], config: Tournament) -> MatchSet:
    """
    Circle method: position 0 stays fixed, the rest rotate one step per round.
    Odd fields get a phantom entry; whoever meets it sits out that round.
    Repeated cycles keep rotating and flip home/away.
    """
    cycles = int(config.round_robin_cycles or 1)
    seeds = _assign_seeds(teams)

    lst: list[Optional[Team]] = list(teams)
    if len(lst) % 2 == 1:
        lst.append(None)
    n = len(lst)
    rounds_per_cycle = n - 1

    matches: list[Match] = []
    for cycle in range(cycles):
        for r in range(1, rounds_per_cycle + 1):
            round_no = cycle * rounds_per_cycle + r
            match_no = 0
            for i in range(n // 2):
                t1 = lst[i]
                t2 = lst[n - 1 - i]
                if t1 is None or t2 is None:
                    continue
                match_no += 1

                lower, higher = (t1, t2) if seeds[t1.team_id] < seeds[t2.team_id] else (t2, t1)
                home, away = (lower, higher) if r % 2 == 0 else (higher, lower)
                if cycle % 2 == 1:
                    home, away = away, home

                matches.append(
                    Match(
                        match_id=match_id_for(tournament_id, BracketKey.RR, round_no, match_no),
                        tournament_id=tournament_id,
                        bracket=BracketKey.RR,
                        round_no=round_no,
                        match_no=match_no,
                        label=f"RR-R{round_no}-M{match_no}",
                        home_team_id=home.team_id,
                        away_team_id=away.team_id,
                    )
                )

            last = lst.pop()
            lst.insert(1, last)

    return MatchSet(matches=matches, seeds=seeds)


GENERATORS: dict[TournamentFormat, Generator] = {
    TournamentFormat.SINGLE: generate_single_elimination,
    TournamentFormat.DOUBLE: generate_double_elimination,
    TournamentFormat.ROUND_ROBIN: generate_round_robin,
}


def validate_format_config(config: Tournament, team_count: int) -> None:
    if config.format == TournamentFormat.ROUND_ROBIN and int(config.round_robin_cycles or 0) < 1:
        raise InvalidFormatConfiguration("round_robin_cycles must be >= 1.")
    cutoff = config.playoff_teams_count
    if cutoff is not None and (cutoff < 2 or cutoff > team_count):
        raise InvalidFormatConfiguration(
            f"playoff_teams_count ({cutoff}) must be between 2 and the team count ({team_count})."
        )
    if config.max_teams is not None and team_count > config.max_teams:
        raise InvalidFormatConfiguration(
            f"{team_count} registered teams exceed max_teams ({config.max_teams})."
        )


def generate_matches(config: Tournament, teams: Sequence[Team]) -> MatchSet:
    """Entry point: order teams, validate the format, dispatch to the generator."""
    ordered = order_teams(teams)
    if len(ordered) < 2:
        raise InsufficientTeams(len(ordered))
    validate_format_config(config, len(ordered))

    try:
        gen = GENERATORS[TournamentFormat(config.format)]
    except (KeyError, ValueError) as e:
        raise InvalidFormatConfiguration(f"Unsupported tournament format: {config.format!r}") from e
    return gen(config.tournament_id, ordered, config)
