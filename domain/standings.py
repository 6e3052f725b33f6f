# domain/standings.py
from __future__ import annotations

from dataclasses import dataclass
from itertools import groupby
from typing import Callable, Iterable, Mapping, Optional, Sequence

from domain.enums import BracketKey, EntryStatus, Tiebreaker, TournamentFormat
from domain.errors import UnresolvableTieRequiresManualInput, ValidationFailed
from domain.models import Match, Team, Tournament


@dataclass(frozen=True)
class StandingRow:
    rank: int
    team_id: str
    team_name: str
    games_played: int
    wins: int
    losses: int
    ties: int
    points: int
    goals_for: int
    goals_against: int
    goal_differential: int
    is_playoff_bound: bool = False
    final_placement: Optional[int] = None
    placement_locked: bool = False


@dataclass(frozen=True)
class TiedGroup:
    """Teams no configured criterion could separate. They share `rank`."""

    rank: int
    team_ids: tuple[str, ...]

    @property
    def ranks(self) -> range:
        return range(self.rank, self.rank + len(self.team_ids))


@dataclass(frozen=True)
class Standings:
    tournament_id: str
    rows: tuple[StandingRow, ...]
    tied_groups: tuple[TiedGroup, ...]
    # groups an admin already ordered; they can be re-ordered with ResolveTies
    manual_groups: tuple[TiedGroup, ...] = ()

    @property
    def is_resolved(self) -> bool:
        return not self.tied_groups

    def row_for(self, team_id: str) -> Optional[StandingRow]:
        for r in self.rows:
            if r.team_id == team_id:
                return r
        return None

    def final_placements(self) -> dict[str, int]:
        if self.tied_groups:
            raise UnresolvableTieRequiresManualInput(self.tied_groups)
        return {r.team_id: r.rank for r in self.rows}


# -------------------------
# Criteria
# -------------------------

CriterionKey = Callable[[Team], tuple]


def _terminal(matches: Iterable[Match]) -> list[Match]:
    return [m for m in matches if m.status.is_terminal and m.has_both_teams]


def _head_to_head(config: Tournament, group: Sequence[Team], matches: Sequence[Match]) -> CriterionKey:
    """Mini-table: points earned only in games between members of `group`."""
    ids = {t.team_id for t in group}
    pts = {tid: 0 for tid in ids}
    for m in matches:
        if m.home_team_id not in ids or m.away_team_id not in ids:
            continue
        if m.winner_team_id is None:
            pts[m.home_team_id] += config.points_tie
            pts[m.away_team_id] += config.points_tie
        else:
            pts[m.winner_team_id] += config.points_win
            pts[m.loser_team_id] += config.points_loss
    return lambda t: (pts[t.team_id],)


def _criterion(
    name: Tiebreaker,
    config: Tournament,
    group: Sequence[Team],
    matches: Sequence[Match],
) -> CriterionKey:
    # every key is "bigger is better"
    if name == Tiebreaker.HEAD_TO_HEAD:
        return _head_to_head(config, group, matches)
    if name == Tiebreaker.GOAL_DIFFERENTIAL:
        return lambda t: (t.goal_differential,)
    if name == Tiebreaker.GOALS_SCORED:
        return lambda t: (t.goals_for,)
    if name == Tiebreaker.GOALS_AGAINST:
        return lambda t: (-t.goals_against,)
    if name == Tiebreaker.WINS:
        return lambda t: (t.wins,)
    raise ValidationFailed(f"Unknown tie-break criterion: {name!r}")


def _split(group: list[Team], key: CriterionKey) -> list[list[Team]]:
    ordered = sorted(group, key=key, reverse=True)
    return [list(g) for _, g in groupby(ordered, key=key)]


def _resolve_group(
    config: Tournament,
    group: list[Team],
    matches: Sequence[Match],
) -> list[list[Team]]:
    """
    Ordered partition of `group`. Single-member parts are resolved; a
    multi-member part is a tie no criterion separates.

    Whenever a criterion splits the group, each part starts over from the
    first criterion, so head-to-head is recomputed among the smaller set.
    """
    if len(group) < 2:
        return [group]

    for name in config.tiebreak_order:
        parts = _split(group, _criterion(Tiebreaker(name), config, group, matches))
        if len(parts) > 1:
            out: list[list[Team]] = []
            for p in parts:
                out.extend(_resolve_group(config, p, matches))
            return out

    if config.format.is_elimination and all(t.seed is not None for t in group):
        # knockout formats fall back to seed
        return [[t] for t in sorted(group, key=lambda t: t.seed)]

    return [sorted(group, key=lambda t: t.created_seq)]


# -------------------------
# Tiering
# -------------------------

def _deciding_final(config: Tournament, matches: Sequence[Match]) -> Optional[Match]:
    if config.format == TournamentFormat.DOUBLE:
        finals = sorted((m for m in matches if m.bracket == BracketKey.GF), key=lambda m: m.round_no)
        if not finals:
            return None
        gf1 = finals[0]
        if len(finals) > 1:
            return finals[-1]
        # GF1 decides unless the losers' champion took it and a reset is owed
        if gf1.status.is_terminal and (not config.bracket_reset or gf1.winner_team_id == gf1.home_team_id):
            return gf1
        return None if gf1.status.is_terminal else gf1

    roots = [m for m in matches if m.bracket == BracketKey.W and m.next_match_id is None]
    return roots[0] if len(roots) == 1 else None


def _elimination_stage(config: Tournament, matches: Sequence[Match]) -> dict[str, tuple[int, int]]:
    """
    team_id -> (stage, depth), bigger is better.
    stage: 3 champion, 2 runner-up, 1 still alive, 0 eliminated.
    depth: round in which an eliminated team went out.
    """
    stages: dict[str, tuple[int, int]] = {}

    final = _deciding_final(config, matches)
    if final is not None and final.status.is_terminal and final.winner_team_id:
        stages[final.winner_team_id] = (3, 0)
        if final.loser_team_id:
            stages[final.loser_team_id] = (2, 0)

    # the bracket a loss knocks you out of
    knockout = BracketKey.L if config.format == TournamentFormat.DOUBLE else BracketKey.W
    for m in _terminal(matches):
        if m.bracket != knockout:
            continue
        loser = m.loser_team_id
        if loser and loser not in stages:
            stages[loser] = (0, m.round_no)

    return stages


def _tiers(config: Tournament, teams: Sequence[Team], matches: Sequence[Match]) -> list[list[Team]]:
    if config.format.is_elimination:
        stage = _elimination_stage(config, matches)

        def tier_key(t: Team) -> tuple:
            return stage.get(t.team_id, (1, 0)) + (t.points,)
    else:
        def tier_key(t: Team) -> tuple:
            return (t.points,)

    ordered = sorted(teams, key=lambda t: (tier_key(t), -t.created_seq), reverse=True)
    return [list(g) for _, g in groupby(ordered, key=tier_key)]


# -------------------------
# Entry point
# -------------------------

def _row(t: Team, rank: int, playoff_cut: Optional[int]) -> StandingRow:
    return StandingRow(
        rank=rank,
        team_id=t.team_id,
        team_name=t.name,
        games_played=t.wins + t.losses + t.ties,
        wins=t.wins,
        losses=t.losses,
        ties=t.ties,
        points=t.points,
        goals_for=t.goals_for,
        goals_against=t.goals_against,
        goal_differential=t.goal_differential,
        is_playoff_bound=playoff_cut is not None and rank <= playoff_cut,
        final_placement=t.final_placement,
        placement_locked=t.placement_locked,
    )


def compute_standings(config: Tournament, teams: Sequence[Team], matches: Sequence[Match]) -> Standings:
    """
    Ranks the Registered teams from their counters and the played matches.
    Reads only; counters are owned by match progression.
    """
    entrants = [t for t in teams if t.status == EntryStatus.REGISTERED]
    played = _terminal(matches)
    playoff_cut = config.playoff_teams_count

    rows: list[StandingRow] = []
    tied: list[TiedGroup] = []
    manual: list[TiedGroup] = []
    position = 1

    for tier in _tiers(config, entrants, matches):
        for part in _resolve_group(config, tier, played):
            if len(part) == 1:
                rows.append(_row(part[0], position, playoff_cut))
            else:
                group = TiedGroup(rank=position, team_ids=tuple(t.team_id for t in part))
                locked = all(t.placement_locked and t.final_placement in group.ranks for t in part)
                if locked:
                    manual.append(group)
                    for t in sorted(part, key=lambda t: t.final_placement):
                        rows.append(_row(t, t.final_placement, playoff_cut))
                else:
                    tied.append(group)
                    for t in part:
                        rows.append(_row(t, position, playoff_cut))
            position += len(part)

    return Standings(
        tournament_id=config.tournament_id,
        rows=tuple(rows),
        tied_groups=tuple(tied),
        manual_groups=tuple(manual),
    )


def validate_resolution(standings: Standings, placements: Mapping[str, int]) -> list[TiedGroup]:
    """
    An admin order must cover whole groups, using exactly the ranks each
    group occupies. Returns the groups being resolved.
    """
    if not placements:
        raise ValidationFailed("No placements supplied.")

    groups = list(standings.tied_groups) + list(standings.manual_groups)
    owner: dict[str, TiedGroup] = {tid: g for g in groups for tid in g.team_ids}

    unknown = [tid for tid in placements if tid not in owner]
    if unknown:
        raise ValidationFailed(f"Team(s) not part of any tied group: {', '.join(sorted(unknown))}.")

    touched: list[TiedGroup] = []
    for g in groups:
        given = {tid: placements[tid] for tid in g.team_ids if tid in placements}
        if not given:
            continue
        if len(given) != len(g.team_ids):
            raise ValidationFailed(f"Placements must cover every team of the group starting at rank {g.rank}.")
        if sorted(given.values()) != list(g.ranks):
            raise ValidationFailed(
                f"Group at rank {g.rank} must use placements {g.ranks.start}..{g.ranks.stop - 1} exactly once."
            )
        touched.append(g)
    return touched
