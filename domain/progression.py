# domain/progression.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, MutableMapping, Optional

from domain.enums import BracketKey, MatchStatus, Slot
from domain.errors import (
    DownstreamMatchAlreadyCompleted,
    MatchAlreadyTerminal,
    MatchNotReady,
    ValidationFailed,
)
from domain.models import Match, Team, Tournament, match_id_for


@dataclass
class Outcome:
    """What a progression step touched, so the caller can persist exactly that."""

    match: Match
    changed_matches: dict[str, Match] = field(default_factory=dict)
    changed_teams: dict[str, Team] = field(default_factory=dict)
    created_matches: list[Match] = field(default_factory=list)
    deleted_match_ids: list[str] = field(default_factory=list)

    def touch_match(self, m: Match) -> None:
        if m.match_id != self.match.match_id:
            self.changed_matches[m.match_id] = m

    def touch_team(self, t: Team) -> None:
        self.changed_teams[t.team_id] = t


# -------------------------
# Counters
# -------------------------

def _result_effect(config: Tournament, m: Match) -> dict[str, dict[str, int]]:
    """Counter deltas a terminal match contributes to its two teams."""
    if m.home_team_id is None or m.away_team_id is None or not m.status.is_terminal:
        return {}

    home = {"wins": 0, "losses": 0, "ties": 0, "points": 0, "goals_for": 0, "goals_against": 0}
    away = dict(home)

    if m.status == MatchStatus.COMPLETED and m.home_score is not None and m.away_score is not None:
        home["goals_for"] = m.home_score
        home["goals_against"] = m.away_score
        away["goals_for"] = m.away_score
        away["goals_against"] = m.home_score

    if m.winner_team_id is None:
        home["ties"] = away["ties"] = 1
        home["points"] = away["points"] = config.points_tie
    else:
        win, lose = (home, away) if m.winner_team_id == m.home_team_id else (away, home)
        win["wins"] = 1
        win["points"] = config.points_win
        lose["losses"] = 1
        lose["points"] = config.points_loss

    return {m.home_team_id: home, m.away_team_id: away}


def _apply_effect(
    effect: Mapping[str, Mapping[str, int]],
    teams: Mapping[str, Team],
    outcome: Outcome,
    *,
    sign: int,
) -> None:
    for team_id, deltas in effect.items():
        team = teams[team_id]
        for k, v in deltas.items():
            setattr(team, k, getattr(team, k) + sign * v)
        outcome.touch_team(team)


# -------------------------
# Validation helpers
# -------------------------

def _require_playable(m: Match) -> None:
    if m.status.is_terminal:
        raise MatchAlreadyTerminal(m.match_id, m.status)
    if not m.has_both_teams:
        raise MatchNotReady(f"Match {m.label or m.code} still has a TBD team.")


def _decide_winner(
    config: Tournament,
    m: Match,
    home_score: int,
    away_score: int,
    overtime_winner_id: Optional[str],
) -> Optional[str]:
    for v in (home_score, away_score):
        if not isinstance(v, int) or isinstance(v, bool) or v < 0:
            raise ValidationFailed("Scores must be non-negative integers.")

    if overtime_winner_id is not None and overtime_winner_id not in (m.home_team_id, m.away_team_id):
        raise ValidationFailed("overtime_winner_id must be the home or away team of this match.")

    if home_score > away_score:
        return m.home_team_id
    if away_score > home_score:
        return m.away_team_id
    if overtime_winner_id is not None:
        return overtime_winner_id
    if not config.allows_ties:
        raise ValidationFailed("Scores are tied in an elimination format; an overtime winner is required.")
    return None


# -------------------------
# Propagation
# -------------------------

def reset_match_id(m: Match) -> str:
    return match_id_for(m.tournament_id, BracketKey.GF, 2, 1)


def downstream_matches(m: Match, matches: Mapping[str, Match]) -> list[Match]:
    out: list[Match] = []
    for mid in (m.next_match_id, m.loser_next_match_id):
        if mid and mid in matches:
            out.append(matches[mid])
    if m.bracket == BracketKey.GF and m.round_no == 1:
        reset = matches.get(reset_match_id(m))
        if reset is not None:
            out.append(reset)
    return out


def _write_slot(target: Match, slot: Slot, team_id: Optional[str], outcome: Outcome) -> None:
    if target.team_in(slot) == team_id:
        return
    target.set_team(slot, team_id)
    # a slot swap under a running match sends it back to the schedule
    if target.status == MatchStatus.IN_PROGRESS:
        target.status = MatchStatus.SCHEDULED
    outcome.touch_match(target)


def _propagate(m: Match, matches: MutableMapping[str, Match], outcome: Outcome) -> None:
    if m.next_match_id and m.next_slot is not None:
        _write_slot(matches[m.next_match_id], m.next_slot, m.winner_team_id, outcome)
    if m.loser_next_match_id and m.loser_next_slot is not None:
        _write_slot(matches[m.loser_next_match_id], m.loser_next_slot, m.loser_team_id, outcome)


def _grand_final_reset(config: Tournament, m: Match, matches: MutableMapping[str, Match], outcome: Outcome) -> None:
    """
    GF1 is played between the winners' champion (home) and the losers'
    champion (away). If the losers' champion wins and resets are enabled, a
    deciding GF2 is created; if a correction flips GF1 back, an unplayed GF2
    is removed.
    """
    if m.bracket != BracketKey.GF or m.round_no != 1:
        return

    reset_id = reset_match_id(m)
    existing = matches.get(reset_id)
    needs_reset = config.bracket_reset and m.winner_team_id is not None and m.winner_team_id == m.away_team_id

    if needs_reset and existing is None:
        gf2 = Match(
            match_id=reset_id,
            tournament_id=m.tournament_id,
            bracket=BracketKey.GF,
            round_no=2,
            match_no=1,
            label="GF2",
            home_team_id=m.home_team_id,
            away_team_id=m.away_team_id,
            venue=m.venue,
        )
        matches[reset_id] = gf2
        outcome.created_matches.append(gf2)
    elif not needs_reset and existing is not None:
        del matches[reset_id]
        outcome.deleted_match_ids.append(reset_id)


# -------------------------
# Public operations
# -------------------------

def start_match(m: Match) -> Match:
    _require_playable(m)
    if m.status != MatchStatus.SCHEDULED:
        raise MatchNotReady(f"Match {m.label or m.code} is already {m.status.value}.")
    m.status = MatchStatus.IN_PROGRESS
    return m


def enter_score(
    config: Tournament,
    m: Match,
    matches: MutableMapping[str, Match],
    teams: Mapping[str, Team],
    *,
    home_score: int,
    away_score: int,
    overtime_winner_id: Optional[str] = None,
) -> Outcome:
    _require_playable(m)
    winner = _decide_winner(config, m, home_score, away_score, overtime_winner_id)

    outcome = Outcome(match=m)
    m.home_score = home_score
    m.away_score = away_score
    m.winner_team_id = winner
    m.forfeit_reason = None
    m.status = MatchStatus.COMPLETED

    _apply_effect(_result_effect(config, m), teams, outcome, sign=+1)
    _propagate(m, matches, outcome)
    _grand_final_reset(config, m, matches, outcome)
    return outcome


def record_forfeit(
    config: Tournament,
    m: Match,
    matches: MutableMapping[str, Match],
    teams: Mapping[str, Team],
    *,
    forfeiting_team_id: str,
    reason: Optional[str] = None,
) -> Outcome:
    _require_playable(m)
    if forfeiting_team_id not in (m.home_team_id, m.away_team_id):
        raise ValidationFailed("Forfeiting team is not a participant in this match.")

    outcome = Outcome(match=m)
    m.winner_team_id = m.away_team_id if forfeiting_team_id == m.home_team_id else m.home_team_id
    m.home_score = None
    m.away_score = None
    m.forfeit_reason = reason
    m.status = MatchStatus.FORFEIT

    _apply_effect(_result_effect(config, m), teams, outcome, sign=+1)
    _propagate(m, matches, outcome)
    _grand_final_reset(config, m, matches, outcome)
    return outcome


def correct_score(
    config: Tournament,
    m: Match,
    matches: MutableMapping[str, Match],
    teams: Mapping[str, Team],
    *,
    home_score: int,
    away_score: int,
    overtime_winner_id: Optional[str] = None,
) -> Outcome:
    """
    Replaces the result of a terminal match and re-runs propagation from it.
    Every downstream match must still be open; their slots are overwritten.
    """
    if not m.status.is_terminal:
        raise MatchNotReady(f"Match {m.label or m.code} has no result to correct; enter a score instead.")

    done = [d.match_id for d in downstream_matches(m, matches) if d.status.is_terminal]
    if done:
        raise DownstreamMatchAlreadyCompleted(m.match_id, done)

    winner = _decide_winner(config, m, home_score, away_score, overtime_winner_id)

    outcome = Outcome(match=m)
    _apply_effect(_result_effect(config, m), teams, outcome, sign=-1)

    m.home_score = home_score
    m.away_score = away_score
    m.winner_team_id = winner
    m.forfeit_reason = None
    m.status = MatchStatus.COMPLETED

    _apply_effect(_result_effect(config, m), teams, outcome, sign=+1)
    _propagate(m, matches, outcome)
    _grand_final_reset(config, m, matches, outcome)
    return outcome


def clear_manual_placements(teams: Mapping[str, Team], outcome: Outcome) -> None:
    """Any result change invalidates admin tie resolutions."""
    for team in teams.values():
        if team.placement_locked or team.final_placement is not None:
            team.placement_locked = False
            team.final_placement = None
            outcome.touch_team(team)


def pending_matches(matches: Mapping[str, Match]) -> list[Match]:
    return sorted((m for m in matches.values() if not m.status.is_terminal), key=lambda m: m.order_key)
