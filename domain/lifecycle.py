# domain/lifecycle.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from domain.enums import FeeType, TournamentStatus as S
from domain.errors import InvalidStateTransition, ValidationFailed
from domain.models import Tournament

# FromStatus -> set of legal ToStatuses. Postponed -> (previous status) is
# handled separately because the target depends on where it was postponed from.
VALID_TRANSITIONS: dict[S, frozenset[S]] = {
    S.DRAFT: frozenset({S.OPEN, S.POSTPONED, S.CANCELLED}),
    S.OPEN: frozenset({S.CLOSED, S.POSTPONED, S.CANCELLED}),
    S.CLOSED: frozenset({S.IN_PROGRESS, S.POSTPONED, S.CANCELLED}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.POSTPONED, S.CANCELLED}),
    S.POSTPONED: frozenset({S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

TRANSITION_ACTIONS: dict[S, str] = {
    S.OPEN: "Publish",
    S.CLOSED: "CloseRegistration",
    S.IN_PROGRESS: "Start",
    S.COMPLETED: "Complete",
    S.POSTPONED: "Postpone",
    S.CANCELLED: "Cancel",
}

_PROGRESS_RANK = {
    S.DRAFT: 0,
    S.OPEN: 1,
    S.CLOSED: 2,
    S.IN_PROGRESS: 3,
    S.COMPLETED: 4,
}


def can_transition(t: Tournament, to: S) -> bool:
    if t.status == S.POSTPONED and to != S.CANCELLED:
        return t.postponed_from_status is not None and to == t.postponed_from_status
    return to in VALID_TRANSITIONS.get(t.status, frozenset())


def validate_transition(t: Tournament, to: S) -> None:
    if not can_transition(t, to):
        raise InvalidStateTransition(current=t.status, attempted=to)


def action_for(t: Tournament, to: S) -> str:
    if t.status == S.POSTPONED and to != S.CANCELLED:
        return "Resume"
    return TRANSITION_ACTIONS.get(to, "Unknown")


def effective_status(t: Tournament) -> S:
    """Status a postponed tournament will return to; the real status otherwise."""
    if t.status == S.POSTPONED and t.postponed_from_status is not None:
        return t.postponed_from_status
    return t.status


def has_started(t: Tournament) -> bool:
    """True once the tournament reached InProgress (bracket exists from here on)."""
    if t.status == S.CANCELLED:
        return t.started_at is not None
    return _PROGRESS_RANK.get(effective_status(t), 0) >= _PROGRESS_RANK[S.IN_PROGRESS]


def apply_transition(t: Tournament, to: S, *, now: datetime, postponed_to: Optional[datetime] = None) -> str:
    """
    Mutates `t` into status `to` and stamps lifecycle timestamps.
    Returns the audit action name.
    """
    validate_transition(t, to)
    action = action_for(t, to)

    if to == S.POSTPONED:
        t.postponed_from_status = t.status
        if postponed_to is not None:
            t.postponed_to = postponed_to
            t.start_date = postponed_to
            if t.end_date is not None and t.end_date < postponed_to:
                t.end_date = postponed_to
    elif t.status == S.POSTPONED:
        t.postponed_from_status = None

    t.status = to
    t.updated_at = now

    if to == S.OPEN and t.published_at is None:
        t.published_at = now
    elif to == S.IN_PROGRESS and t.started_at is None:
        t.started_at = now
    elif to == S.COMPLETED:
        t.completed_at = now
    elif to == S.CANCELLED:
        t.cancelled_at = now

    return action


def validate_publishable(t: Tournament) -> None:
    """Date range and fee configuration must be sane before a tournament goes public."""
    problems: list[str] = []

    if t.start_date is None or t.end_date is None:
        problems.append("start_date and end_date are required")
    elif t.start_date > t.end_date:
        problems.append("start_date must be on or before end_date")

    if t.registration_deadline is not None and t.start_date is not None and t.registration_deadline > t.start_date:
        problems.append("registration_deadline must be on or before start_date")

    fee = Decimal(t.entry_fee or 0)
    if fee < 0:
        problems.append("entry_fee must be >= 0")
    elif fee > 0 and t.fee_type is None:
        problems.append("entry_fee requires a fee_type")
    elif fee == 0 and t.fee_type is not None:
        problems.append(f"fee_type '{FeeType(t.fee_type).value}' set without an entry_fee")

    if t.max_teams is not None and t.max_teams < 2:
        problems.append("max_teams must be >= 2")
    if (
        t.min_players_per_team is not None
        and t.max_players_per_team is not None
        and t.min_players_per_team > t.max_players_per_team
    ):
        problems.append("min_players_per_team must be <= max_players_per_team")

    if problems:
        raise ValidationFailed("Cannot publish tournament: " + "; ".join(problems) + ".")
