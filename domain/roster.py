# domain/roster.py
from __future__ import annotations

from collections import Counter
from typing import Iterable, Optional, Protocol, Sequence

from domain.enums import SKILL_TIER_RANK, EntryStatus, TournamentStatus
from domain.errors import CapacityExceeded, RosterLocked
from domain.lifecycle import has_started
from domain.models import Registration, Team, Tournament


class _Waitlisted(Protocol):
    status: EntryStatus
    waitlist_position: Optional[int]


def check_roster_editable(t: Tournament) -> None:
    if t.status in (TournamentStatus.CANCELLED, TournamentStatus.COMPLETED):
        raise RosterLocked(f"Tournament is {t.status.value}; rosters are final.")
    if has_started(t) and not t.allow_substitutions:
        raise RosterLocked("Tournament has started and substitutions are not allowed.")


# -------------------------
# Waitlists
# -------------------------

def _seq(entry: object) -> int:
    return int(getattr(entry, "registered_seq", None) or getattr(entry, "created_seq", 0))


def renumber_waitlist(entries: Iterable[_Waitlisted]) -> list[_Waitlisted]:
    """
    Rewrites waitlist positions as 1..K in current order and clears them on
    everything not waitlisted. Returns the entries whose position changed.
    """
    changed: list[_Waitlisted] = []
    entries = list(entries)

    waiting = sorted(
        (e for e in entries if e.status == EntryStatus.WAITLISTED),
        key=lambda e: (e.waitlist_position is None, e.waitlist_position or 0, _seq(e)),
    )
    for pos, e in enumerate(waiting, start=1):
        if e.waitlist_position != pos:
            e.waitlist_position = pos
            changed.append(e)

    for e in entries:
        if e.status != EntryStatus.WAITLISTED and e.waitlist_position is not None:
            e.waitlist_position = None
            changed.append(e)

    return changed


def next_waitlist_position(entries: Iterable[_Waitlisted]) -> int:
    return 1 + sum(1 for e in entries if e.status == EntryStatus.WAITLISTED)


def waitlist_head(registrations: Sequence[Registration]) -> Optional[Registration]:
    waiting = [r for r in registrations if r.status == EntryStatus.WAITLISTED]
    if not waiting:
        return None
    return min(waiting, key=lambda r: (r.waitlist_position or 0, r.registered_seq))


# -------------------------
# Capacity
# -------------------------

def active_registrations(registrations: Iterable[Registration]) -> list[Registration]:
    return [r for r in registrations if r.status == EntryStatus.REGISTERED]


def registered_teams(teams: Iterable[Team]) -> list[Team]:
    return sorted((t for t in teams if t.status == EntryStatus.REGISTERED), key=lambda t: t.created_seq)


def has_player_room(t: Tournament, registrations: Sequence[Registration]) -> bool:
    cap = t.player_capacity
    return cap is None or len(active_registrations(registrations)) < cap


def has_team_room(t: Tournament, teams: Sequence[Team]) -> bool:
    return t.max_teams is None or len(registered_teams(teams)) < t.max_teams


def team_sizes(registrations: Iterable[Registration]) -> Counter[str]:
    return Counter(r.team_id for r in registrations if r.team_id and r.status == EntryStatus.REGISTERED)


def is_team_eligible(t: Tournament, team_id: str, sizes: Counter[str]) -> bool:
    """A pre-formed team counts once it reaches the minimum roster size."""
    return t.min_players_per_team is None or sizes.get(team_id, 0) >= t.min_players_per_team


def require_team_room(t: Tournament, team: Team, sizes: Counter[str]) -> None:
    if t.max_players_per_team is not None and sizes.get(team.team_id, 0) >= t.max_players_per_team:
        raise CapacityExceeded(f"Team '{team.name}' already has {t.max_players_per_team} players.")


def team_promotion_candidate(t: Tournament, teams: Sequence[Team], sizes: Counter[str]) -> Optional[Team]:
    """Lowest-position waitlisted team that meets the minimum roster size."""
    waiting = sorted(
        (x for x in teams if x.status == EntryStatus.WAITLISTED),
        key=lambda x: (x.waitlist_position or 0, x.created_seq),
    )
    for team in waiting:
        if is_team_eligible(t, team.team_id, sizes):
            return team
    return None


# -------------------------
# Auto-assignment
# -------------------------

def _skill_key(r: Registration) -> int:
    if r.skill_tier is None:
        return len(SKILL_TIER_RANK)
    return SKILL_TIER_RANK[r.skill_tier]


def auto_assign(
    t: Tournament,
    registrations: Sequence[Registration],
    teams: Sequence[Team],
    *,
    balance_by_skill: bool = False,
) -> tuple[list[tuple[Registration, Team]], list[Registration]]:
    """
    Places every unassigned Registered player into the smallest team that
    still has room, ties going to the earliest created team. Walking players
    in skill order spreads each tier across the teams.

    Returns (assignments, left_over); left_over is non-empty only when every
    team is full.
    """
    pool = [r for r in active_registrations(registrations) if r.team_id is None]
    if balance_by_skill:
        pool.sort(key=lambda r: (_skill_key(r), r.registered_seq))
    else:
        pool.sort(key=lambda r: r.registered_seq)

    targets = registered_teams(teams)
    sizes = team_sizes(registrations)
    cap = t.max_players_per_team

    assignments: list[tuple[Registration, Team]] = []
    left_over: list[Registration] = []

    for reg in pool:
        open_teams = [x for x in targets if cap is None or sizes[x.team_id] < cap]
        if not open_teams:
            left_over.append(reg)
            continue
        team = min(open_teams, key=lambda x: (sizes[x.team_id], x.created_seq))
        reg.team_id = team.team_id
        sizes[team.team_id] += 1
        assignments.append((reg, team))

    return assignments, left_over


def bulk_team_names(prefix: str, count: int, existing: Iterable[str]) -> list[str]:
    taken = {n.casefold() for n in existing}
    names: list[str] = []
    i = 1
    while len(names) < count:
        name = f"{prefix} {i}"
        if name.casefold() not in taken:
            names.append(name)
            taken.add(name.casefold())
        i += 1
    return names
