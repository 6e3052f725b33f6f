# domain/models.py
from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from domain.enums import (
    DEFAULT_TIEBREAK_ORDER,
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

# Namespace for deterministic match ids: two generators racing on the same
# tournament produce the same primary keys.
MATCH_ID_NAMESPACE = uuid.UUID("6f1c2b0e-5d0a-4c1e-9a57-2f4b8f3f1d10")

SYSTEM_ACTOR = "system"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def match_id_for(tournament_id: str, bracket: BracketKey, round_no: int, match_no: int) -> str:
    return uuid.uuid5(MATCH_ID_NAMESPACE, f"{tournament_id}:{bracket.value}:{round_no}:{match_no}").hex


def match_code(bracket: str, round_no: int, match_no: int) -> str:
    b = bracket.upper()
    if b == "GF":
        return f"GF-{match_no:02d}"
    return f"{b}{round_no}-{match_no:02d}"


def next_power_of_two(n: int) -> int:
    if n <= 1:
        return 1
    p = 1
    while p < n:
        p <<= 1
    return p


def seeded_positions(n: int) -> list[int]:
    """
    Standard tournament seeding positions list (length n, n is power of two).
    Example n=8 => [1,8,4,5,2,7,3,6]
    """
    if n <= 1:
        return [1]
    if n == 2:
        return [1, 2]
    prev = seeded_positions(n // 2)
    out: list[int] = []
    for s in prev:
        out.append(s)
        out.append(n + 1 - s)
    return out


@dataclass
class Tournament:
    tournament_id: str
    name: str
    format: TournamentFormat = TournamentFormat.SINGLE
    team_formation: TeamFormation = TeamFormation.ORGANIZER_ASSIGNED
    status: TournamentStatus = TournamentStatus.DRAFT

    max_teams: Optional[int] = None
    min_players_per_team: Optional[int] = None
    max_players_per_team: Optional[int] = None
    allow_substitutions: bool = True

    # scoring rule
    points_win: int = 3
    points_tie: int = 1
    points_loss: int = 0

    round_robin_cycles: int = 1
    playoff_teams_count: Optional[int] = None
    bracket_reset: bool = True
    tiebreak_order: tuple[Tiebreaker, ...] = DEFAULT_TIEBREAK_ORDER

    entry_fee: Decimal = Decimal("0")
    fee_type: Optional[FeeType] = None

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    registration_deadline: Optional[datetime] = None
    postponed_to: Optional[datetime] = None
    postponed_from_status: Optional[TournamentStatus] = None
    venue: Optional[str] = None

    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    published_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def allows_ties(self) -> bool:
        return self.format == TournamentFormat.ROUND_ROBIN

    @property
    def player_capacity(self) -> Optional[int]:
        if self.max_teams is None or self.max_players_per_team is None:
            return None
        return self.max_teams * self.max_players_per_team

    def deadline_elapsed(self, now: datetime) -> bool:
        return self.registration_deadline is not None and now >= self.registration_deadline


@dataclass
class Team:
    team_id: str
    tournament_id: str
    name: str
    created_seq: int
    status: EntryStatus = EntryStatus.REGISTERED
    captain_user_id: Optional[str] = None
    seed: Optional[int] = None
    waitlist_position: Optional[int] = None
    final_placement: Optional[int] = None
    placement_locked: bool = False

    wins: int = 0
    losses: int = 0
    ties: int = 0
    points: int = 0
    goals_for: int = 0
    goals_against: int = 0

    payment_state: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def goal_differential(self) -> int:
        return self.goals_for - self.goals_against

    def counters(self) -> dict[str, int]:
        return {
            "wins": self.wins,
            "losses": self.losses,
            "ties": self.ties,
            "points": self.points,
            "goals_for": self.goals_for,
            "goals_against": self.goals_against,
        }


@dataclass
class Registration:
    registration_id: str
    tournament_id: str
    user_id: str
    registered_seq: int
    status: EntryStatus = EntryStatus.REGISTERED
    team_id: Optional[str] = None
    skill_tier: Optional[SkillTier] = None
    position: Optional[str] = None
    waitlist_position: Optional[int] = None
    # opaque to the engine; stored and returned untouched
    payment_state: Optional[str] = None
    registered_at: datetime = field(default_factory=utcnow)
    promoted_at: Optional[datetime] = None


@dataclass
class Match:
    match_id: str
    tournament_id: str
    bracket: BracketKey
    round_no: int
    match_no: int
    label: str = ""

    home_team_id: Optional[str] = None
    away_team_id: Optional[str] = None
    status: MatchStatus = MatchStatus.SCHEDULED
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    winner_team_id: Optional[str] = None
    forfeit_reason: Optional[str] = None

    next_match_id: Optional[str] = None
    next_slot: Optional[Slot] = None
    loser_next_match_id: Optional[str] = None
    loser_next_slot: Optional[Slot] = None

    scheduled_at: Optional[datetime] = None
    venue: Optional[str] = None

    @property
    def code(self) -> str:
        return match_code(self.bracket.value, self.round_no, self.match_no)

    @property
    def order_key(self) -> tuple[int, int, int]:
        bracket_order = {BracketKey.RR: 0, BracketKey.W: 0, BracketKey.L: 1, BracketKey.GF: 2}
        return (bracket_order[self.bracket], self.round_no, self.match_no)

    @property
    def has_both_teams(self) -> bool:
        return self.home_team_id is not None and self.away_team_id is not None

    @property
    def loser_team_id(self) -> Optional[str]:
        if self.winner_team_id is None or not self.has_both_teams:
            return None
        return self.away_team_id if self.winner_team_id == self.home_team_id else self.home_team_id

    def team_in(self, slot: Slot) -> Optional[str]:
        return self.home_team_id if slot == Slot.HOME else self.away_team_id

    def set_team(self, slot: Slot, team_id: Optional[str]) -> None:
        if slot == Slot.HOME:
            self.home_team_id = team_id
        else:
            self.away_team_id = team_id


@dataclass
class AuditLogEntry:
    tournament_id: str
    actor: str
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    timestamp: datetime = field(default_factory=utcnow)


def snapshot(obj: Any) -> dict[str, Any]:
    """JSON-friendly dict of a model, for audit before/after columns."""
    out: dict[str, Any] = {}
    for k, v in asdict(obj).items():
        if hasattr(v, "value"):
            v = v.value
        elif isinstance(v, datetime):
            v = v.isoformat()
        elif isinstance(v, Decimal):
            v = str(v)
        elif isinstance(v, tuple):
            v = [getattr(x, "value", x) for x in v]
        out[k] = v
    return out
