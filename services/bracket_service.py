# services/bracket_service.py
from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from domain.brackets import MatchSet, generate_matches
from domain.enums import TournamentStatus
from domain.errors import ConcurrencyConflict, InvalidStateTransition
from domain.models import Match, Team, Tournament
from domain.roster import registered_teams
from services.base_service import Changes, TournamentServiceBase

logger = logging.getLogger(__name__)


def _match_set(matches: Sequence[Match], teams: Sequence[Team]) -> MatchSet:
    ordered = sorted(matches, key=lambda m: m.order_key)
    return MatchSet(matches=ordered, seeds={t.team_id: t.seed for t in teams if t.seed is not None})


class BracketService(TournamentServiceBase):
    """
    Responsible for:
      - Building the match graph for the Registered teams (called by Start)
      - GenerateBracket: returning the one bracket a started tournament has
      - Read access to matches

    Notes:
      - Byes are not stored; every match row is a real pairing or a TBD slot.
      - Match ids are derived from (tournament, bracket, round, match_no), so a
        second writer collides on the primary/unique key instead of duplicating.
    """

    async def existing(self, uow: Any) -> Optional[MatchSet]:
        matches = await uow.list_matches()
        if not matches:
            return None
        return _match_set(matches, await uow.list_teams())

    async def build(self, uow: Any, changes: Changes, teams: Sequence[Team]) -> MatchSet:
        """Generate and persist inside the caller's unit of work."""
        t: Tournament = uow.tournament
        match_set = generate_matches(t, registered_teams(teams))

        for team in teams:
            seed = match_set.seeds.get(team.team_id)
            if seed is not None and team.seed != seed:
                team.seed = seed
                await uow.update_team(team)

        await uow.insert_matches(match_set.matches)

        changes.record(
            "GenerateBracket",
            entity_type="Tournament",
            entity_id=t.tournament_id,
            details={
                "format": t.format.value,
                "matches": len(match_set.matches),
                "seeds": match_set.seeds,
            },
        )
        changes.announce(
            "bracket_generated",
            f"{t.name}: schedule ready",
            f"{len(match_set.matches)} matches for {len(match_set.seeds)} teams.",
        )
        logger.info(
            "Generated %s bracket for tournament %s: %d teams, %d matches",
            t.format.value,
            t.tournament_id,
            len(match_set.seeds),
            len(match_set.matches),
        )
        return match_set

    async def generate_bracket(self, *, actor: str, tournament_id: str) -> MatchSet:
        """
        Idempotent: returns the existing bracket whenever one exists. A lost
        insert race is rolled back and the check runs again, which then finds
        the winner's bracket; a second conflict propagates as a retry.
        """
        try:
            return await self._generate(actor=actor, tournament_id=tournament_id)
        except ConcurrencyConflict:
            logger.warning("Bracket insert raced for tournament %s; retrying", tournament_id)
        return await self._generate(actor=actor, tournament_id=tournament_id)

    async def _generate(self, *, actor: str, tournament_id: str) -> MatchSet:
        async with self._mutation(tournament_id, actor=actor, action="GenerateBracket") as (uow, changes):
            t = uow.tournament
            if t.status not in (TournamentStatus.IN_PROGRESS, TournamentStatus.COMPLETED):
                raise InvalidStateTransition(
                    current=t.status,
                    attempted=TournamentStatus.IN_PROGRESS,
                    reason="the bracket is generated when the tournament starts",
                )

            current = await self.existing(uow)
            if current is not None:
                logger.info("Bracket already exists for tournament %s; returning it", tournament_id)
                return current

            return await self.build(uow, changes, await uow.list_teams())

    async def get_bracket(self, *, tournament_id: str) -> MatchSet:
        matches = await self._store.list_matches(tournament_id)
        teams = await self._store.list_teams(tournament_id)
        return _match_set(matches, teams)

    async def get_matches(self, *, tournament_id: str) -> list[Match]:
        return sorted(await self._store.list_matches(tournament_id), key=lambda m: m.order_key)
