# services/match_service.py
from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from domain import progression
from domain.enums import MatchStatus, TournamentStatus
from domain.errors import InvalidStateTransition, NotFound
from domain.models import Match, snapshot
from services.base_service import Changes, TournamentServiceBase

logger = logging.getLogger(__name__)


class MatchService(TournamentServiceBase):
    """
    Result entry and propagation.

    One unit of work covers the match row, both teams' counters and every
    downstream slot it feeds, so a failure anywhere leaves nothing behind.
    """

    async def _load(self, uow: Any, match_id: str) -> tuple[dict[str, Match], Match]:
        matches = {m.match_id: m for m in await uow.list_matches()}
        m = matches.get(match_id)
        if m is None:
            raise NotFound(f"Match not found: {match_id}")
        return matches, m

    def _require_in_progress(self, uow: Any) -> None:
        t = uow.tournament
        if t.status != TournamentStatus.IN_PROGRESS:
            raise InvalidStateTransition(
                current=t.status,
                attempted=TournamentStatus.IN_PROGRESS,
                reason="results can only be recorded while the tournament is in progress",
            )

    async def start_match(self, *, actor: str, tournament_id: str, match_id: str) -> Match:
        async with self._mutation(tournament_id, actor=actor, action="StartMatch") as (uow, changes):
            self._require_in_progress(uow)
            _matches, m = await self._load(uow, match_id)
            before = snapshot(m)
            progression.start_match(m)
            await uow.update_match(m)
            changes.record("StartMatch", entity_type="Match", entity_id=m.match_id, before=before, after=m)
        return m

    async def _apply(
        self,
        *,
        actor: str,
        tournament_id: str,
        match_id: str,
        action: str,
        step: Callable[..., progression.Outcome],
        **kwargs: Any,
    ) -> progression.Outcome:
        async with self._mutation(tournament_id, actor=actor, action=action) as (uow, changes):
            self._require_in_progress(uow)
            t = uow.tournament
            matches, m = await self._load(uow, match_id)
            teams = {x.team_id: x for x in await uow.list_teams()}

            before = snapshot(m)
            outcome = step(t, m, matches, teams, **kwargs)
            progression.clear_manual_placements(teams, outcome)

            await self._write(uow, outcome)
            self._report(changes, action, before, outcome, teams)
        return outcome

    async def _write(self, uow: Any, outcome: progression.Outcome) -> None:
        await uow.update_match(outcome.match)
        for m in outcome.changed_matches.values():
            await uow.update_match(m)
        if outcome.created_matches:
            await uow.insert_matches(outcome.created_matches)
        for match_id in outcome.deleted_match_ids:
            await uow.delete_match(match_id)
        for team in outcome.changed_teams.values():
            await uow.update_team(team)

    def _report(self, changes: Changes, action: str, before: dict, outcome: progression.Outcome, teams: dict) -> None:
        m = outcome.match
        changes.record(
            action,
            entity_type="Match",
            entity_id=m.match_id,
            before=before,
            after=m,
            details={
                "downstream": sorted(outcome.changed_matches),
                "created": [x.match_id for x in outcome.created_matches],
                "deleted": list(outcome.deleted_match_ids),
            },
        )

        def name(team_id: Optional[str]) -> str:
            team = teams.get(team_id) if team_id else None
            return team.name if team else "TBD"

        if m.status == MatchStatus.FORFEIT:
            line = f"{name(m.loser_team_id)} forfeited to {name(m.winner_team_id)}"
        else:
            line = f"{name(m.home_team_id)} {m.home_score} - {m.away_score} {name(m.away_team_id)}"
        changes.announce("score_entered", f"{changes.tournament.name}: {m.label}", line, match_id=m.match_id)

        logger.info(
            "%s on match %s (%s) of tournament %s: winner=%s, %d downstream update(s)",
            action,
            m.match_id,
            m.label,
            m.tournament_id,
            m.winner_team_id or "tie",
            len(outcome.changed_matches),
        )
        if outcome.created_matches:
            logger.info("Bracket reset: created %s", ", ".join(x.label for x in outcome.created_matches))
        if outcome.deleted_match_ids:
            logger.info("Bracket reset withdrawn: deleted %s", ", ".join(outcome.deleted_match_ids))

    async def enter_score(
        self,
        *,
        actor: str,
        tournament_id: str,
        match_id: str,
        home_score: int,
        away_score: int,
        overtime_winner_id: Optional[str] = None,
    ) -> Match:
        outcome = await self._apply(
            actor=actor,
            tournament_id=tournament_id,
            match_id=match_id,
            action="EnterScore",
            step=progression.enter_score,
            home_score=home_score,
            away_score=away_score,
            overtime_winner_id=overtime_winner_id,
        )
        return outcome.match

    async def record_forfeit(
        self,
        *,
        actor: str,
        tournament_id: str,
        match_id: str,
        forfeiting_team_id: str,
        reason: Optional[str] = None,
    ) -> Match:
        outcome = await self._apply(
            actor=actor,
            tournament_id=tournament_id,
            match_id=match_id,
            action="RecordForfeit",
            step=progression.record_forfeit,
            forfeiting_team_id=forfeiting_team_id,
            reason=reason,
        )
        return outcome.match

    async def correct_score(
        self,
        *,
        actor: str,
        tournament_id: str,
        match_id: str,
        home_score: int,
        away_score: int,
        overtime_winner_id: Optional[str] = None,
    ) -> Match:
        outcome = await self._apply(
            actor=actor,
            tournament_id=tournament_id,
            match_id=match_id,
            action="CorrectScore",
            step=progression.correct_score,
            home_score=home_score,
            away_score=away_score,
            overtime_winner_id=overtime_winner_id,
        )
        return outcome.match
