# services/standings_service.py
from __future__ import annotations

import logging
from typing import Mapping

from domain.enums import TournamentStatus
from domain.errors import InvalidStateTransition
from domain.standings import Standings, compute_standings, validate_resolution
from services.base_service import TournamentServiceBase

logger = logging.getLogger(__name__)


class StandingsService(TournamentServiceBase):
    """
    Read side of the competition: ranked rows plus the tied groups no
    criterion could separate. ResolveTies is the only write, and only admins
    may make it.
    """

    async def get_standings(self, *, tournament_id: str) -> Standings:
        t = await self._store.get_tournament(tournament_id)
        teams = await self._store.list_teams(tournament_id)
        matches = await self._store.list_matches(tournament_id)
        return compute_standings(t, teams, matches)

    async def resolve_ties(
        self,
        *,
        actor: str,
        tournament_id: str,
        placements: Mapping[str, int],
    ) -> Standings:
        placements = {str(k): int(v) for k, v in placements.items()}

        async with self._mutation(tournament_id, actor=actor, action="ResolveTies") as (uow, changes):
            t = uow.tournament
            if t.status not in (TournamentStatus.IN_PROGRESS, TournamentStatus.COMPLETED):
                raise InvalidStateTransition(
                    current=t.status,
                    attempted="resolve_ties",
                    reason="ties can only be resolved once play has started",
                )

            teams = await uow.list_teams()
            matches = await uow.list_matches()
            groups = validate_resolution(compute_standings(t, teams, matches), placements)

            for team in teams:
                if team.team_id in placements:
                    team.final_placement = placements[team.team_id]
                    team.placement_locked = True
                    await uow.update_team(team)

            changes.record(
                "ResolveTies",
                entity_type="Tournament",
                entity_id=tournament_id,
                details={
                    "placements": placements,
                    "groups": [list(g.team_ids) for g in groups],
                },
            )
            logger.info("Resolved %d tied group(s) in tournament %s", len(groups), tournament_id)

        return compute_standings(t, teams, matches)
