# domain/enums.py
from __future__ import annotations

from enum import Enum


class BracketKey(str, Enum):
    W = "W"     # Winners
    L = "L"     # Losers
    GF = "GF"   # Grand Finals
    RR = "RR"   # Round robin


class TournamentFormat(str, Enum):
    SINGLE = "single_elim"
    DOUBLE = "double_elim"
    ROUND_ROBIN = "round_robin"

    @property
    def is_elimination(self) -> bool:
        return self in (TournamentFormat.SINGLE, TournamentFormat.DOUBLE)


class TeamFormation(str, Enum):
    ORGANIZER_ASSIGNED = "organizer_assigned"
    PRE_FORMED = "pre_formed"


class TournamentStatus(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    CLOSED = "closed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    POSTPONED = "postponed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TournamentStatus.COMPLETED, TournamentStatus.CANCELLED)


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FORFEIT = "forfeit"

    @property
    def is_terminal(self) -> bool:
        return self in (MatchStatus.COMPLETED, MatchStatus.FORFEIT)


class Slot(str, Enum):
    HOME = "home"
    AWAY = "away"


class EntryStatus(str, Enum):
    """Shared by teams and registrations."""

    REGISTERED = "registered"
    WAITLISTED = "waitlisted"
    WITHDRAWN = "withdrawn"


class FeeType(str, Enum):
    PER_PLAYER = "per_player"
    PER_TEAM = "per_team"


class AdminRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    SCOREKEEPER = "scorekeeper"


class Tiebreaker(str, Enum):
    HEAD_TO_HEAD = "HeadToHead"
    GOAL_DIFFERENTIAL = "GoalDifferential"
    GOALS_SCORED = "GoalsScored"
    GOALS_AGAINST = "GoalsAgainst"
    WINS = "Wins"


DEFAULT_TIEBREAK_ORDER: tuple[Tiebreaker, ...] = (
    Tiebreaker.HEAD_TO_HEAD,
    Tiebreaker.GOAL_DIFFERENTIAL,
    Tiebreaker.GOALS_SCORED,
)


class SkillTier(str, Enum):
    GOLD = "gold"
    SILVER = "silver"
    BRONZE = "bronze"
    D_LEAGUE = "d_league"


# lower rank sorts first; unset tiers sort last
SKILL_TIER_RANK = {
    SkillTier.GOLD: 0,
    SkillTier.SILVER: 1,
    SkillTier.BRONZE: 2,
    SkillTier.D_LEAGUE: 3,
}
