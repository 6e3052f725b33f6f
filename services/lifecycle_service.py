# services/lifecycle_service.py
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from config import EngineConfig
from domain.brackets import MatchSet
from domain.enums import FeeType, TeamFormation, Tiebreaker, TournamentFormat, TournamentStatus as S
from domain.errors import ConcurrencyConflict, InsufficientTeams, InvalidStateTransition, NotFound, ValidationFailed
from domain.lifecycle import validate_publishable, validate_transition
from domain.models import SYSTEM_ACTOR, Tournament, new_id, snapshot
from domain.roster import registered_teams
from domain.standings import Standings, compute_standings
from services.base_service import Changes, TournamentServiceBase
from services.bracket_service import BracketService

logger = logging.getLogger(__name__)

# settings a caller may pass to create_tournament
_SETTINGS = (
    "max_teams",
    "min_players_per_team",
    "max_players_per_team",
    "allow_substitutions",
    "points_win",
    "points_tie",
    "points_loss",
    "round_robin_cycles",
    "playoff_teams_count",
    "bracket_reset",
    "tiebreak_order",
    "entry_fee",
    "fee_type",
    "start_date",
    "end_date",
    "registration_deadline",
    "venue",
)


class LifecycleService(TournamentServiceBase):
    """
    Tournament lifecycle:
      Draft -> Open -> Closed -> InProgress -> Completed
      Postponed / Cancelled from any non-terminal state, Resume out of Postponed.

    Every transition writes exactly one audit entry and announces the change.
    Start generates the bracket inside the same unit of work.
    """

    def __init__(self, *, bracket_service: BracketService, engine: EngineConfig | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._brackets = bracket_service
        self._engine = engine or EngineConfig()

    # -------------------------
    # Create / read
    # -------------------------

    async def create_tournament(
        self,
        *,
        actor: str,
        name: str,
        format: TournamentFormat | str = TournamentFormat.SINGLE,
        team_formation: TeamFormation | str = TeamFormation.ORGANIZER_ASSIGNED,
        **settings: Any,
    ) -> Tournament:
        unknown = set(settings) - set(_SETTINGS)
        if unknown:
            raise ValidationFailed(f"Unknown tournament setting(s): {', '.join(sorted(unknown))}.")

        name = (name or "").strip()
        if not name:
            raise ValidationFailed("Tournament name is required.")

        try:
            fmt = TournamentFormat(format)
            formation = TeamFormation(team_formation)
        except ValueError as e:
            raise ValidationFailed(str(e)) from e

        now = self._clock()
        t = Tournament(
            tournament_id=new_id(),
            name=name,
            format=fmt,
            team_formation=formation,
            points_win=self._engine.points_win,
            points_tie=self._engine.points_tie,
            points_loss=self._engine.points_loss,
            bracket_reset=self._engine.bracket_reset,
            tiebreak_order=self._engine.tiebreak_order,
            created_by=actor,
            created_at=now,
            updated_at=now,
        )
        t = replace(t, **settings)
        try:
            if t.fee_type is not None:
                t.fee_type = FeeType(t.fee_type)
            t.tiebreak_order = tuple(Tiebreaker(x) for x in t.tiebreak_order)
        except ValueError as e:
            raise ValidationFailed(str(e)) from e
        t.entry_fee = Decimal(t.entry_fee or 0)
        _validate_settings(t)

        await self._store.create_tournament(t, owner_id=actor)

        changes = Changes(tournament=t, actor=actor, now=now)
        changes.record("CreateTournament", entity_type="Tournament", entity_id=t.tournament_id, after=t, to_status=t.status)
        await self._release(changes)

        logger.info("Tournament %s (%s) created by %s", t.tournament_id, t.name, actor)
        return t

    async def get_tournament(self, *, tournament_id: str) -> Tournament:
        return await self._store.get_tournament(tournament_id)

    async def find_tournament(self, *, name_or_id: str) -> Tournament:
        """Lookup used by the command surface: exact id first, then newest by name."""
        try:
            return await self._store.get_tournament(name_or_id)
        except NotFound:
            matches = await self._store.find_by_name(name_or_id)
            if not matches:
                raise
            return matches[0]

    # -------------------------
    # Transitions
    # -------------------------

    async def publish(self, *, actor: str, tournament_id: str) -> Tournament:
        async with self._mutation(tournament_id, actor=actor, action="Publish") as (uow, changes):
            t = uow.tournament
            validate_transition(t, S.OPEN)
            validate_publishable(t)
            self._transition(changes, t, S.OPEN)
            await uow.update_tournament(t)
        return t

    async def close_registration(self, *, actor: str, tournament_id: str) -> Tournament:
        async with self._mutation(tournament_id, actor=actor, action="CloseRegistration") as (uow, changes):
            t = uow.tournament
            self._transition(changes, t, S.CLOSED)
            await uow.update_tournament(t)
        return t

    async def start(self, *, actor: str, tournament_id: str) -> MatchSet:
        """
        Closed -> InProgress, generating the bracket atomically.
        From Open the CloseRegistration step is applied first (two audit entries).
        A repeated Start on a started tournament returns its bracket.

        A conflict rolls everything back and the whole step runs once more, so
        a competing writer's bracket is returned; a second conflict propagates.
        """
        try:
            return await self._start(actor=actor, tournament_id=tournament_id)
        except ConcurrencyConflict:
            logger.warning("Start raced for tournament %s; retrying", tournament_id)
        return await self._start(actor=actor, tournament_id=tournament_id)

    async def _start(self, *, actor: str, tournament_id: str) -> MatchSet:
        async with self._mutation(tournament_id, actor=actor, action="Start") as (uow, changes):
            t = uow.tournament
            if t.status == S.IN_PROGRESS:
                current = await self._brackets.existing(uow)
                if current is not None:
                    logger.info("Tournament %s already started; returning its bracket", tournament_id)
                    return current

            if t.status == S.OPEN:
                validate_transition(replace(t, status=S.CLOSED), S.IN_PROGRESS)
            else:
                validate_transition(t, S.IN_PROGRESS)

            teams = await uow.list_teams()
            entrants = registered_teams(teams)
            if len(entrants) < 2:
                raise InsufficientTeams(len(entrants))

            if t.status == S.OPEN and not self._close_if_expired(changes, t):
                self._transition(changes, t, S.CLOSED)

            match_set = await self._brackets.build(uow, changes, teams)
            self._transition(changes, t, S.IN_PROGRESS)
            await uow.update_tournament(t)
        return match_set

    async def complete(self, *, actor: str, tournament_id: str) -> Standings:
        """
        Requires every match to be terminal and a fully ordered standings
        table; writes final placements back onto the teams.
        """
        async with self._mutation(tournament_id, actor=actor, action="Complete") as (uow, changes):
            t = uow.tournament
            validate_transition(t, S.COMPLETED)

            matches = await uow.list_matches()
            pending = [m for m in matches if not m.status.is_terminal]
            if pending:
                raise InvalidStateTransition(
                    current=t.status,
                    attempted=S.COMPLETED,
                    reason=f"{len(pending)} match(es) still pending ({', '.join(m.label for m in pending[:5])})",
                )

            teams = await uow.list_teams()
            standings = compute_standings(t, teams, matches)
            placements = standings.final_placements()

            for team in teams:
                place = placements.get(team.team_id)
                if place is not None and team.final_placement != place:
                    team.final_placement = place
                    await uow.update_team(team)

            self._transition(changes, t, S.COMPLETED)
            changes.audit[-1].details = {"placements": placements}
            await uow.update_tournament(t)

        return compute_standings(t, teams, matches)

    async def cancel(self, *, actor: str, tournament_id: str, reason: Optional[str] = None) -> Tournament:
        async with self._mutation(tournament_id, actor=actor, action="Cancel") as (uow, changes):
            t = uow.tournament
            self._transition(changes, t, S.CANCELLED)
            if reason:
                changes.audit[-1].details = {"reason": reason}
            await uow.update_tournament(t)
        return t

    async def postpone(self, *, actor: str, tournament_id: str, new_date: Optional[datetime] = None) -> Tournament:
        async with self._mutation(tournament_id, actor=actor, action="Postpone") as (uow, changes):
            t = uow.tournament
            before = snapshot(t)
            self._transition(changes, t, S.POSTPONED, postponed_to=new_date)
            changes.audit[-1].before = before
            changes.audit[-1].after = snapshot(t)
            await uow.update_tournament(t)
        return t

    async def resume(self, *, actor: str, tournament_id: str) -> Tournament:
        async with self._mutation(tournament_id, actor=actor, action="Resume") as (uow, changes):
            t = uow.tournament
            if t.status != S.POSTPONED or t.postponed_from_status is None:
                raise InvalidStateTransition(current=t.status, attempted="resume", reason="tournament is not postponed")
            self._transition(changes, t, t.postponed_from_status)
            await uow.update_tournament(t)
        return t

    async def close_expired_registrations(self, *, now: Optional[datetime] = None) -> list[str]:
        """Sweep: close every Open tournament whose registration deadline has passed."""
        now = now or self._clock()
        closed: list[str] = []
        for tournament_id in await self._store.list_due_for_close(now):
            async with self._mutation(tournament_id, actor=SYSTEM_ACTOR, action="CloseRegistration") as (uow, changes):
                if self._close_if_expired(changes, uow.tournament):
                    await uow.update_tournament(uow.tournament)
                    closed.append(tournament_id)
        if closed:
            logger.info("Closed registration on %d tournament(s) past their deadline", len(closed))
        return closed


def _validate_settings(t: Tournament) -> None:
    problems: list[str] = []
    if t.max_teams is not None and t.max_teams < 2:
        problems.append("max_teams must be >= 2")
    for name in ("min_players_per_team", "max_players_per_team"):
        v = getattr(t, name)
        if v is not None and v < 1:
            problems.append(f"{name} must be >= 1")
    if (
        t.min_players_per_team is not None
        and t.max_players_per_team is not None
        and t.min_players_per_team > t.max_players_per_team
    ):
        problems.append("min_players_per_team must be <= max_players_per_team")
    if t.round_robin_cycles < 1:
        problems.append("round_robin_cycles must be >= 1")
    if t.playoff_teams_count is not None and t.playoff_teams_count < 2:
        problems.append("playoff_teams_count must be >= 2")
    if t.entry_fee < 0:
        problems.append("entry_fee must be >= 0")
    if problems:
        raise ValidationFailed("Invalid tournament settings: " + "; ".join(problems) + ".")
