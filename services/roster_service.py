# services/roster_service.py
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence

from domain.enums import EntryStatus, SkillTier, TeamFormation, TournamentStatus
from domain.errors import NotFound, RosterLocked, ValidationFailed
from domain.lifecycle import has_started
from domain.models import Registration, Team, Tournament, new_id, snapshot
from domain.roster import (
    auto_assign,
    bulk_team_names,
    check_roster_editable,
    has_player_room,
    has_team_room,
    next_waitlist_position,
    renumber_waitlist,
    require_team_room,
    team_promotion_candidate,
    team_sizes,
    waitlist_head,
)
from services.base_service import Changes, TournamentServiceBase

logger = logging.getLogger(__name__)


def _find(items: Sequence[Any], attr: str, value: str, what: str) -> Any:
    for item in items:
        if getattr(item, attr) == value:
            return item
    raise NotFound(f"{what} not found: {value}")


def _next_seq(items: Sequence[Any], attr: str) -> int:
    return 1 + max((int(getattr(i, attr)) for i in items), default=0)


class RosterService(TournamentServiceBase):
    """
    Registrations, teams and waitlists.

    Both waitlists (players and teams) stay a gapless 1..K sequence: every
    operation that changes who is waiting renumbers before it writes.
    """

    # -------------------------
    # Reads
    # -------------------------

    async def get_registrations(self, *, tournament_id: str) -> list[Registration]:
        return await self._store.list_registrations(tournament_id)

    async def get_teams(self, *, tournament_id: str) -> list[Team]:
        return await self._store.list_teams(tournament_id)

    # -------------------------
    # Registration
    # -------------------------

    async def register(
        self,
        *,
        actor: str,
        tournament_id: str,
        user_id: Optional[str] = None,
        skill_tier: SkillTier | str | None = None,
        position: Optional[str] = None,
        payment_state: Optional[str] = None,
    ) -> Registration:
        user_id = str(user_id or actor)
        if user_id != actor:
            await self._authz.require(tournament_id=tournament_id, actor=actor, action="Register")
        try:
            tier = SkillTier(skill_tier) if skill_tier is not None else None
        except ValueError as e:
            raise ValidationFailed(str(e)) from e

        rejected: Optional[ValidationFailed] = None
        reg: Optional[Registration] = None

        async with self._mutation(tournament_id, actor=actor, action="Register", authorize=False) as (uow, changes):
            t = uow.tournament
            if self._close_if_expired(changes, t):
                await uow.update_tournament(t)
                rejected = ValidationFailed("Registration closed: the registration deadline has passed.")
            elif t.status != TournamentStatus.OPEN:
                raise ValidationFailed(f"Registration is not open (status '{t.status.value}').")
            else:
                reg = await self._register(uow, changes, user_id, tier, position, payment_state)

        if rejected is not None:
            raise rejected
        return reg

    async def _register(
        self,
        uow: Any,
        changes: Changes,
        user_id: str,
        tier: Optional[SkillTier],
        position: Optional[str],
        payment_state: Optional[str],
    ) -> Registration:
        t = uow.tournament
        regs = await uow.list_registrations()

        existing = next((r for r in regs if r.user_id == user_id), None)
        if existing is not None and existing.status != EntryStatus.WITHDRAWN:
            return existing

        if has_player_room(t, regs):
            status, wl = EntryStatus.REGISTERED, None
        else:
            status, wl = EntryStatus.WAITLISTED, next_waitlist_position(regs)

        if existing is not None:
            # re-registering after a withdrawal goes to the back of the line
            reg = existing
            reg.registered_seq = _next_seq(regs, "registered_seq")
            reg.status = status
            reg.waitlist_position = wl
            reg.skill_tier = tier
            reg.position = position
            reg.payment_state = payment_state
            reg.registered_at = changes.now
            reg.promoted_at = None
            await uow.update_registration(reg)
        else:
            reg = Registration(
                registration_id=new_id(),
                tournament_id=t.tournament_id,
                user_id=user_id,
                registered_seq=_next_seq(regs, "registered_seq"),
                status=status,
                skill_tier=tier,
                position=position,
                waitlist_position=wl,
                payment_state=payment_state,
                registered_at=changes.now,
            )
            await uow.insert_registration(reg)

        changes.record("Register", entity_type="Registration", entity_id=reg.registration_id, after=reg)
        logger.info(
            "User %s registered for tournament %s (%s%s)",
            user_id,
            t.tournament_id,
            status.value,
            f" #{wl}" if wl else "",
        )
        return reg

    async def withdraw_registration(self, *, actor: str, tournament_id: str, registration_id: str) -> Registration:
        async with self._mutation(tournament_id, actor=actor, action="WithdrawRegistration", authorize=False) as (uow, changes):
            t = uow.tournament
            regs = await uow.list_registrations()
            reg: Registration = _find(regs, "registration_id", registration_id, "Registration")
            if reg.user_id != actor:
                await self._authz.require(tournament_id=tournament_id, actor=actor, action="WithdrawRegistration")
            if reg.status == EntryStatus.WITHDRAWN:
                return reg
            if reg.team_id is not None:
                check_roster_editable(t)

            before = snapshot(reg)
            was = reg.status
            reg.status = EntryStatus.WITHDRAWN
            reg.team_id = None
            reg.waitlist_position = None
            await uow.update_registration(reg)
            changes.record(
                "WithdrawRegistration",
                entity_type="Registration",
                entity_id=reg.registration_id,
                before=before,
                after=reg,
            )

            if was == EntryStatus.REGISTERED:
                await self._promote_registrations(uow, changes, regs)
            for r in renumber_waitlist(regs):
                await uow.update_registration(r)
        return reg

    async def _promote_registrations(self, uow: Any, changes: Changes, regs: list[Registration]) -> None:
        t = uow.tournament
        while has_player_room(t, regs):
            head = waitlist_head(regs)
            if head is None:
                return
            before = snapshot(head)
            head.status = EntryStatus.REGISTERED
            head.waitlist_position = None
            head.promoted_at = changes.now
            await uow.update_registration(head)
            changes.record(
                "PromoteFromWaitlist",
                entity_type="Registration",
                entity_id=head.registration_id,
                before=before,
                after=head,
            )
            changes.announce(
                "waitlist_promoted",
                f"{t.name}: spot opened",
                f"<@{head.user_id}> moved off the waitlist.",
                user_id=head.user_id,
            )
            logger.info("Promoted registration %s from the waitlist of tournament %s", head.registration_id, t.tournament_id)

    # -------------------------
    # Teams
    # -------------------------

    def _check_team_list_open(self, t: Tournament) -> None:
        check_roster_editable(t)
        if has_started(t):
            raise RosterLocked("The team list is fixed once the tournament has started.")

    def _new_team(self, t: Tournament, teams: list[Team], name: str, captain_user_id: Optional[str], now: Any) -> Team:
        if has_team_room(t, teams):
            status, wl = EntryStatus.REGISTERED, None
        else:
            status, wl = EntryStatus.WAITLISTED, next_waitlist_position(teams)
        team = Team(
            team_id=new_id(),
            tournament_id=t.tournament_id,
            name=name,
            created_seq=_next_seq(teams, "created_seq"),
            status=status,
            captain_user_id=captain_user_id,
            waitlist_position=wl,
            created_at=now,
        )
        teams.append(team)
        return team

    async def create_team(
        self,
        *,
        actor: str,
        tournament_id: str,
        name: str,
        captain_user_id: Optional[str] = None,
    ) -> Team:
        name = (name or "").strip()
        if not name:
            raise ValidationFailed("Team name is required.")

        async with self._mutation(tournament_id, actor=actor, action="CreateTeam", authorize=False) as (uow, changes):
            t = uow.tournament
            # pre-formed captains build their own team
            if not (t.team_formation == TeamFormation.PRE_FORMED and captain_user_id == actor):
                await self._authz.require(tournament_id=tournament_id, actor=actor, action="CreateTeam")
            self._check_team_list_open(t)

            teams = await uow.list_teams()
            if any(x.name.casefold() == name.casefold() and x.status != EntryStatus.WITHDRAWN for x in teams):
                raise ValidationFailed(f"A team named '{name}' already exists in this tournament.")

            team = self._new_team(t, teams, name, captain_user_id, changes.now)
            await uow.insert_team(team)
            changes.record("CreateTeam", entity_type="Team", entity_id=team.team_id, after=team)

            if captain_user_id:
                regs = await uow.list_registrations()
                captain = next(
                    (r for r in regs if r.user_id == captain_user_id and r.status == EntryStatus.REGISTERED),
                    None,
                )
                if captain is not None and captain.team_id is None:
                    captain.team_id = team.team_id
                    await uow.update_registration(captain)

            logger.info("Team %s (%s) created in tournament %s as %s", team.team_id, name, tournament_id, team.status.value)
        return team

    async def bulk_create_teams(self, *, actor: str, tournament_id: str, count: int, name_prefix: str = "Team") -> list[Team]:
        count = int(count)
        if count < 1:
            raise ValidationFailed("count must be >= 1.")
        prefix = (name_prefix or "Team").strip() or "Team"

        async with self._mutation(tournament_id, actor=actor, action="BulkCreateTeams") as (uow, changes):
            t = uow.tournament
            self._check_team_list_open(t)

            teams = await uow.list_teams()
            live = [x.name for x in teams if x.status != EntryStatus.WITHDRAWN]
            created: list[Team] = []
            for name in bulk_team_names(prefix, count, live):
                team = self._new_team(t, teams, name, None, changes.now)
                await uow.insert_team(team)
                created.append(team)

            changes.record(
                "BulkCreateTeams",
                entity_type="Tournament",
                entity_id=tournament_id,
                details={"teams": {x.team_id: x.name for x in created}, "prefix": prefix},
            )
            logger.info("Created %d teams in tournament %s", len(created), tournament_id)
        return created

    async def withdraw_team(self, *, actor: str, tournament_id: str, team_id: str) -> Team:
        async with self._mutation(tournament_id, actor=actor, action="WithdrawTeam") as (uow, changes):
            t = uow.tournament
            self._check_team_list_open(t)

            teams = await uow.list_teams()
            team: Team = _find(teams, "team_id", team_id, "Team")
            if team.status == EntryStatus.WITHDRAWN:
                return team

            before = snapshot(team)
            team.status = EntryStatus.WITHDRAWN
            team.waitlist_position = None
            await uow.update_team(team)
            changes.record("WithdrawTeam", entity_type="Team", entity_id=team.team_id, before=before, after=team)

            regs = await uow.list_registrations()
            for r in regs:
                if r.team_id == team.team_id:
                    r.team_id = None
                    await uow.update_registration(r)

            await self._promote_teams(uow, changes, teams, regs)
        return team

    async def _promote_teams(self, uow: Any, changes: Changes, teams: list[Team], regs: list[Registration]) -> None:
        t = uow.tournament
        if has_started(t):
            return
        sizes = team_sizes(regs)
        while has_team_room(t, teams):
            cand = team_promotion_candidate(t, teams, sizes)
            if cand is None:
                break
            before = snapshot(cand)
            cand.status = EntryStatus.REGISTERED
            cand.waitlist_position = None
            await uow.update_team(cand)
            changes.record("PromoteFromWaitlist", entity_type="Team", entity_id=cand.team_id, before=before, after=cand)
            changes.announce("waitlist_promoted", f"{t.name}: team promoted", f"{cand.name} is in.", team_id=cand.team_id)
            logger.info("Promoted team %s from the waitlist of tournament %s", cand.team_id, t.tournament_id)

        for x in renumber_waitlist(teams):
            await uow.update_team(x)

    # -------------------------
    # Membership
    # -------------------------

    async def assign_team(self, *, actor: str, tournament_id: str, registration_id: str, team_id: str) -> Registration:
        async with self._mutation(tournament_id, actor=actor, action="AssignTeam") as (uow, changes):
            t = uow.tournament
            check_roster_editable(t)

            regs = await uow.list_registrations()
            teams = await uow.list_teams()
            reg: Registration = _find(regs, "registration_id", registration_id, "Registration")
            team: Team = _find(teams, "team_id", team_id, "Team")

            if reg.status != EntryStatus.REGISTERED:
                raise ValidationFailed(f"Only registered players can join a team (status '{reg.status.value}').")
            if team.status == EntryStatus.WITHDRAWN:
                raise ValidationFailed(f"Team '{team.name}' has withdrawn.")
            if reg.team_id == team.team_id:
                return reg

            require_team_room(t, team, team_sizes(regs))

            before = snapshot(reg)
            reg.team_id = team.team_id
            await uow.update_registration(reg)
            changes.record("AssignTeam", entity_type="Registration", entity_id=reg.registration_id, before=before, after=reg)

            await self._promote_teams(uow, changes, teams, regs)
        return reg

    async def remove_from_team(self, *, actor: str, tournament_id: str, registration_id: str) -> Registration:
        async with self._mutation(tournament_id, actor=actor, action="RemoveFromTeam") as (uow, changes):
            check_roster_editable(uow.tournament)

            regs = await uow.list_registrations()
            reg: Registration = _find(regs, "registration_id", registration_id, "Registration")
            if reg.team_id is None:
                return reg

            before = snapshot(reg)
            reg.team_id = None
            await uow.update_registration(reg)
            changes.record("RemoveFromTeam", entity_type="Registration", entity_id=reg.registration_id, before=before, after=reg)
        return reg

    async def auto_assign_teams(
        self,
        *,
        actor: str,
        tournament_id: str,
        balance_by_skill: bool = False,
    ) -> list[tuple[Registration, Team]]:
        async with self._mutation(tournament_id, actor=actor, action="AutoAssignTeams") as (uow, changes):
            t = uow.tournament
            check_roster_editable(t)
            if t.team_formation != TeamFormation.ORGANIZER_ASSIGNED:
                raise ValidationFailed("Auto-assignment is only available for organizer-assigned tournaments.")

            regs = await uow.list_registrations()
            teams = await uow.list_teams()
            assignments, left_over = auto_assign(t, regs, teams, balance_by_skill=balance_by_skill)

            for reg, _team in assignments:
                await uow.update_registration(reg)

            changes.record(
                "AutoAssignTeams",
                entity_type="Tournament",
                entity_id=tournament_id,
                details={
                    "balance_by_skill": balance_by_skill,
                    "assignments": {r.registration_id: team.team_id for r, team in assignments},
                    "unassigned": [r.registration_id for r in left_over],
                },
            )
            logger.info(
                "Auto-assigned %d players in tournament %s (%d left without a team)",
                len(assignments),
                tournament_id,
                len(left_over),
            )
        return assignments

    async def set_seeds(self, *, actor: str, tournament_id: str, seeds: Mapping[str, int]) -> list[Team]:
        async with self._mutation(tournament_id, actor=actor, action="SetSeeds") as (uow, changes):
            t = uow.tournament
            self._check_team_list_open(t)

            teams = await uow.list_teams()
            by_id = {x.team_id: x for x in teams if x.status == EntryStatus.REGISTERED}
            unknown = [tid for tid in seeds if tid not in by_id]
            if unknown:
                raise ValidationFailed(f"Not registered team(s): {', '.join(unknown)}.")
            values = [int(v) for v in seeds.values()]
            if any(v < 1 for v in values) or len(set(values)) != len(values):
                raise ValidationFailed("Seeds must be distinct positive integers.")

            changed: list[Team] = []
            for team_id, seed in seeds.items():
                team = by_id[team_id]
                if team.seed != int(seed):
                    team.seed = int(seed)
                    await uow.update_team(team)
                    changed.append(team)

            changes.record(
                "SetSeeds",
                entity_type="Tournament",
                entity_id=tournament_id,
                details={"seeds": {k: int(v) for k, v in seeds.items()}},
            )
        return changed
