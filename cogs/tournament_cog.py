# cogs/tournament_cog.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands, tasks

from domain.errors import EngineError, NotFound, ValidationFailed
from domain.models import Match, Team, Tournament
from renderers.bracket_view import BracketView
from renderers.embeds import Embeds
from renderers.standings_view import StandingsOptions, StandingsView
from services.bracket_service import BracketService
from services.lifecycle_service import LifecycleService
from services.match_service import MatchService
from services.roster_service import RosterService
from services.standings_service import StandingsService

logger = logging.getLogger(__name__)

_FORMATS = [
    app_commands.Choice(name="Single Elim", value="single_elim"),
    app_commands.Choice(name="Double Elim", value="double_elim"),
    app_commands.Choice(name="Round Robin", value="round_robin"),
]

_FORMATIONS = [
    app_commands.Choice(name="Organizer assigns teams", value="organizer_assigned"),
    app_commands.Choice(name="Captains build teams", value="pre_formed"),
]

_TIERS = [
    app_commands.Choice(name="Gold", value="gold"),
    app_commands.Choice(name="Silver", value="silver"),
    app_commands.Choice(name="Bronze", value="bronze"),
    app_commands.Choice(name="D-League", value="d_league"),
]


def _parse_date(v: Optional[str]) -> Optional[datetime]:
    if not v:
        return None
    try:
        d = datetime.fromisoformat(v.strip())
    except ValueError as e:
        raise ValidationFailed(f"Dates look like 2025-03-01 or 2025-03-01T18:30, got {v!r}.") from e
    return d if d.tzinfo else d.replace(tzinfo=timezone.utc)


def _actor(interaction: discord.Interaction) -> str:
    return str(interaction.user.id)


class TournamentCog(commands.Cog):
    tournament = app_commands.Group(name="tournament", description="Run league tournaments.")

    def __init__(
        self,
        bot: commands.Bot,
        *,
        lifecycle: LifecycleService,
        roster: RosterService,
        brackets: BracketService,
        matches: MatchService,
        standings: StandingsService,
        embeds: Embeds,
        bracket_view: BracketView,
        standings_view: StandingsView,
    ) -> None:
        self.bot = bot
        self.lifecycle = lifecycle
        self.roster = roster
        self.brackets = brackets
        self.matches = matches
        self.standings = standings
        self.embeds = embeds
        self.bracket_view = bracket_view
        self.standings_view = standings_view

    async def cog_load(self) -> None:
        self.deadline_sweep.start()

    async def cog_unload(self) -> None:
        self.deadline_sweep.cancel()

    @tasks.loop(minutes=1)
    async def deadline_sweep(self) -> None:
        await self.lifecycle.close_expired_registrations()

    @deadline_sweep.error
    async def _deadline_sweep_error(self, error: BaseException) -> None:
        logger.exception("Registration deadline sweep failed", exc_info=error)

    # -----------------------------
    # Helpers
    # -----------------------------

    async def _tournament(self, name_or_id: str) -> Tournament:
        return await self.lifecycle.find_tournament(name_or_id=name_or_id.strip())

    async def _team(self, tournament_id: str, name: str) -> Team:
        wanted = name.strip().casefold()
        for t in await self.roster.get_teams(tournament_id=tournament_id):
            if t.name.casefold() == wanted or t.team_id == name.strip():
                return t
        raise NotFound(f"Team not found: {name}")

    async def _match(self, tournament_id: str, label: str) -> Match:
        wanted = label.strip().casefold()
        for m in await self.brackets.get_matches(tournament_id=tournament_id):
            if m.label.casefold() == wanted or m.match_id == label.strip():
                return m
        raise NotFound(f"Match not found: {label}. Use /tournament bracket to see match labels.")

    async def _reply(self, interaction: discord.Interaction, embed: discord.Embed, *, ephemeral: bool = False) -> None:
        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=ephemeral)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=ephemeral)

    async def cog_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError) -> None:
        original = getattr(error, "original", error)
        if isinstance(original, EngineError):
            await self._reply(interaction, self.embeds.engine_error(original), ephemeral=True)
            return
        logger.exception("Command /%s failed", interaction.command.qualified_name if interaction.command else "?", exc_info=original)
        await self._reply(
            interaction,
            self.embeds.error(title="Something went wrong", description="The error was logged."),
            ephemeral=True,
        )

    # -----------------------------
    # Lifecycle
    # -----------------------------

    @tournament.command(name="create", description="Create a draft tournament.")
    @app_commands.describe(
        name="Tournament name",
        format="Bracket / schedule format",
        team_formation="Who builds the teams",
        max_teams="Team cap (extra teams are waitlisted)",
        min_players="Minimum players per team",
        max_players="Maximum players per team",
        start_date="Start (YYYY-MM-DD or ISO datetime)",
        end_date="End (YYYY-MM-DD or ISO datetime)",
        registration_deadline="Registration deadline (ISO)",
        playoff_teams="Top N teams flagged as playoff-bound",
        venue="Venue",
    )
    @app_commands.choices(format=_FORMATS, team_formation=_FORMATIONS)
    async def create(
        self,
        interaction: discord.Interaction,
        name: str,
        format: app_commands.Choice[str],
        team_formation: app_commands.Choice[str],
        max_teams: Optional[app_commands.Range[int, 2, 256]] = None,
        min_players: Optional[app_commands.Range[int, 1, 50]] = None,
        max_players: Optional[app_commands.Range[int, 1, 50]] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        registration_deadline: Optional[str] = None,
        playoff_teams: Optional[app_commands.Range[int, 2, 256]] = None,
        venue: Optional[str] = None,
    ) -> None:
        await interaction.response.defer()
        t = await self.lifecycle.create_tournament(
            actor=_actor(interaction),
            name=name[:120],
            format=format.value,
            team_formation=team_formation.value,
            max_teams=max_teams,
            min_players_per_team=min_players,
            max_players_per_team=max_players,
            start_date=_parse_date(start_date),
            end_date=_parse_date(end_date),
            registration_deadline=_parse_date(registration_deadline),
            playoff_teams_count=playoff_teams,
            venue=venue,
        )
        e = self.embeds.tournament(t)
        e.title = f"Created: {t.name}"
        await interaction.followup.send(embed=e)

    @tournament.command(name="info", description="Show tournament details.")
    async def info(self, interaction: discord.Interaction, tournament: str) -> None:
        t = await self._tournament(tournament)
        await interaction.response.send_message(embed=self.embeds.tournament(t), ephemeral=True)

    @tournament.command(name="publish", description="Open registration.")
    async def publish(self, interaction: discord.Interaction, tournament: str) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self._tournament(tournament)
        t = await self.lifecycle.publish(actor=_actor(interaction), tournament_id=t.tournament_id)
        await interaction.followup.send(embed=self.embeds.success(title="Registration open", description=t.name), ephemeral=True)

    @tournament.command(name="close", description="Close registration.")
    async def close(self, interaction: discord.Interaction, tournament: str) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self._tournament(tournament)
        t = await self.lifecycle.close_registration(actor=_actor(interaction), tournament_id=t.tournament_id)
        await interaction.followup.send(embed=self.embeds.success(title="Registration closed", description=t.name), ephemeral=True)

    @tournament.command(name="start", description="Start the tournament and generate the bracket.")
    async def start(self, interaction: discord.Interaction, tournament: str) -> None:
        await interaction.response.defer()
        t = await self._tournament(tournament)
        match_set = await self.lifecycle.start(actor=_actor(interaction), tournament_id=t.tournament_id)
        teams = await self.roster.get_teams(tournament_id=t.tournament_id)
        await interaction.followup.send(
            embed=self.embeds.success(title=f"{t.name} started", description=f"{len(match_set.matches)} matches generated.")
        )
        await interaction.followup.send(content=self.bracket_view.render(matches=match_set.matches, teams=teams, title=t.name))

    @tournament.command(name="complete", description="Complete the tournament and record final placements.")
    async def complete(self, interaction: discord.Interaction, tournament: str) -> None:
        await interaction.response.defer()
        t = await self._tournament(tournament)
        standings = await self.lifecycle.complete(actor=_actor(interaction), tournament_id=t.tournament_id)
        await interaction.followup.send(embed=self.embeds.success(title=f"{t.name} completed"))
        await interaction.followup.send(
            content=self.standings_view.render(standings, opts=StandingsOptions(title=f"{t.name} final standings"))
        )

    @tournament.command(name="cancel", description="Cancel the tournament.")
    async def cancel(self, interaction: discord.Interaction, tournament: str, reason: Optional[str] = None) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self._tournament(tournament)
        await self.lifecycle.cancel(actor=_actor(interaction), tournament_id=t.tournament_id, reason=reason)
        await interaction.followup.send(embed=self.embeds.warning(title="Cancelled", description=t.name), ephemeral=True)

    @tournament.command(name="postpone", description="Postpone the tournament.")
    @app_commands.describe(new_date="New start (YYYY-MM-DD or ISO datetime)")
    async def postpone(self, interaction: discord.Interaction, tournament: str, new_date: Optional[str] = None) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self._tournament(tournament)
        t = await self.lifecycle.postpone(
            actor=_actor(interaction),
            tournament_id=t.tournament_id,
            new_date=_parse_date(new_date),
        )
        await interaction.followup.send(embed=self.embeds.warning(title="Postponed", description=t.name), ephemeral=True)

    @tournament.command(name="resume", description="Resume a postponed tournament.")
    async def resume(self, interaction: discord.Interaction, tournament: str) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self._tournament(tournament)
        t = await self.lifecycle.resume(actor=_actor(interaction), tournament_id=t.tournament_id)
        await interaction.followup.send(
            embed=self.embeds.success(title="Resumed", description=f"{t.name} is `{t.status.value}` again."),
            ephemeral=True,
        )

    # -----------------------------
    # Roster
    # -----------------------------

    @tournament.command(name="register", description="Register yourself for a tournament.")
    @app_commands.choices(skill_tier=_TIERS)
    async def register(
        self,
        interaction: discord.Interaction,
        tournament: str,
        skill_tier: Optional[app_commands.Choice[str]] = None,
        position: Optional[str] = None,
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self._tournament(tournament)
        reg = await self.roster.register(
            actor=_actor(interaction),
            tournament_id=t.tournament_id,
            skill_tier=skill_tier.value if skill_tier else None,
            position=position,
        )
        if reg.waitlist_position:
            e = self.embeds.warning(title="Waitlisted", description=f"You are #{reg.waitlist_position} on the waitlist.")
        else:
            e = self.embeds.success(title="Registered", description=f"You are in for **{t.name}**.")
        await interaction.followup.send(embed=e, ephemeral=True)

    @tournament.command(name="withdraw", description="Withdraw your registration.")
    async def withdraw(self, interaction: discord.Interaction, tournament: str) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self._tournament(tournament)
        mine = [r for r in await self.roster.get_registrations(tournament_id=t.tournament_id) if r.user_id == _actor(interaction)]
        if not mine:
            raise NotFound("You are not registered for this tournament.")
        await self.roster.withdraw_registration(
            actor=_actor(interaction),
            tournament_id=t.tournament_id,
            registration_id=mine[0].registration_id,
        )
        await interaction.followup.send(embed=self.embeds.success(title="Withdrawn", description=t.name), ephemeral=True)

    @tournament.command(name="team_create", description="Create a team.")
    async def team_create(
        self,
        interaction: discord.Interaction,
        tournament: str,
        name: str,
        captain: Optional[discord.Member] = None,
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self._tournament(tournament)
        team = await self.roster.create_team(
            actor=_actor(interaction),
            tournament_id=t.tournament_id,
            name=name[:120],
            captain_user_id=str(captain.id) if captain else None,
        )
        note = f" (waitlist #{team.waitlist_position})" if team.waitlist_position else ""
        await interaction.followup.send(embed=self.embeds.success(title="Team created", description=f"{team.name}{note}"), ephemeral=True)

    @tournament.command(name="teams_bulk", description="Create numbered teams (Prefix 1..N).")
    async def teams_bulk(
        self,
        interaction: discord.Interaction,
        tournament: str,
        count: app_commands.Range[int, 1, 64],
        prefix: str = "Team",
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self._tournament(tournament)
        teams = await self.roster.bulk_create_teams(actor=_actor(interaction), tournament_id=t.tournament_id, count=count, name_prefix=prefix)
        await interaction.followup.send(
            embed=self.embeds.success(title=f"Created {len(teams)} teams", description=", ".join(x.name for x in teams)),
            ephemeral=True,
        )

    @tournament.command(name="auto_assign", description="Distribute unassigned players across teams.")
    async def auto_assign(self, interaction: discord.Interaction, tournament: str, balance_by_skill: bool = False) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self._tournament(tournament)
        assignments = await self.roster.auto_assign_teams(
            actor=_actor(interaction),
            tournament_id=t.tournament_id,
            balance_by_skill=balance_by_skill,
        )
        await interaction.followup.send(
            embed=self.embeds.success(title="Teams assigned", description=f"Placed {len(assignments)} player(s)."),
            ephemeral=True,
        )

    @tournament.command(name="assign", description="Put a registered player on a team.")
    async def assign(self, interaction: discord.Interaction, tournament: str, player: discord.Member, team: str) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self._tournament(tournament)
        target = await self._team(t.tournament_id, team)
        regs = [r for r in await self.roster.get_registrations(tournament_id=t.tournament_id) if r.user_id == str(player.id)]
        if not regs:
            raise NotFound(f"{player.display_name} is not registered.")
        await self.roster.assign_team(
            actor=_actor(interaction),
            tournament_id=t.tournament_id,
            registration_id=regs[0].registration_id,
            team_id=target.team_id,
        )
        await interaction.followup.send(
            embed=self.embeds.success(title="Assigned", description=f"{player.mention} -> {target.name}"),
            ephemeral=True,
        )

    @tournament.command(name="unassign", description="Take a player off their team.")
    async def unassign(self, interaction: discord.Interaction, tournament: str, player: discord.Member) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self._tournament(tournament)
        regs = [r for r in await self.roster.get_registrations(tournament_id=t.tournament_id) if r.user_id == str(player.id)]
        if not regs:
            raise NotFound(f"{player.display_name} is not registered.")
        await self.roster.remove_from_team(
            actor=_actor(interaction),
            tournament_id=t.tournament_id,
            registration_id=regs[0].registration_id,
        )
        await interaction.followup.send(
            embed=self.embeds.success(title="Removed from team", description=player.mention),
            ephemeral=True,
        )

    @tournament.command(name="team_withdraw", description="Withdraw a team before the tournament starts.")
    async def team_withdraw(self, interaction: discord.Interaction, tournament: str, team: str) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self._tournament(tournament)
        target = await self._team(t.tournament_id, team)
        await self.roster.withdraw_team(actor=_actor(interaction), tournament_id=t.tournament_id, team_id=target.team_id)
        await interaction.followup.send(embed=self.embeds.warning(title="Team withdrawn", description=target.name), ephemeral=True)

    @tournament.command(name="seeds", description="Set seeds for registered teams.")
    @app_commands.describe(order="Team names, top seed first, comma separated")
    async def seeds(self, interaction: discord.Interaction, tournament: str, order: str) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self._tournament(tournament)
        names = [n.strip() for n in order.split(",") if n.strip()]
        seeds: dict[str, int] = {}
        for i, n in enumerate(names, start=1):
            seeds[(await self._team(t.tournament_id, n)).team_id] = i
        await self.roster.set_seeds(actor=_actor(interaction), tournament_id=t.tournament_id, seeds=seeds)
        await interaction.followup.send(
            embed=self.embeds.success(title="Seeds set", description="\n".join(f"{i}. {n}" for i, n in enumerate(names, start=1))),
            ephemeral=True,
        )

    # -----------------------------
    # Matches
    # -----------------------------

    @tournament.command(name="bracket", description="Show the bracket or schedule.")
    async def bracket(self, interaction: discord.Interaction, tournament: str) -> None:
        await interaction.response.defer()
        t = await self._tournament(tournament)
        matches = await self.brackets.get_matches(tournament_id=t.tournament_id)
        if not matches:
            await interaction.followup.send(embed=self.embeds.warning(title="No matches", description="The bracket is generated at start."))
            return
        teams = await self.roster.get_teams(tournament_id=t.tournament_id)
        await interaction.followup.send(content=self.bracket_view.render(matches=matches, teams=teams, title=t.name))

    @tournament.command(name="match_start", description="Mark a match as in progress.")
    async def match_start(self, interaction: discord.Interaction, tournament: str, match: str) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self._tournament(tournament)
        m = await self._match(t.tournament_id, match)
        await self.matches.start_match(actor=_actor(interaction), tournament_id=t.tournament_id, match_id=m.match_id)
        await interaction.followup.send(embed=self.embeds.success(title=f"{m.label} is live"), ephemeral=True)

    @tournament.command(name="score", description="Enter a final score.")
    @app_commands.describe(match="Match label from /tournament bracket (e.g. SF1, W2-M1, RR-R3-M2)", overtime_winner="Team that won in overtime (tied score)")
    async def score(
        self,
        interaction: discord.Interaction,
        tournament: str,
        match: str,
        home_score: app_commands.Range[int, 0, 999],
        away_score: app_commands.Range[int, 0, 999],
        overtime_winner: Optional[str] = None,
    ) -> None:
        await interaction.response.defer()
        t = await self._tournament(tournament)
        m = await self._match(t.tournament_id, match)
        ot = (await self._team(t.tournament_id, overtime_winner)).team_id if overtime_winner else None
        m = await self.matches.enter_score(
            actor=_actor(interaction),
            tournament_id=t.tournament_id,
            match_id=m.match_id,
            home_score=int(home_score),
            away_score=int(away_score),
            overtime_winner_id=ot,
        )
        await interaction.followup.send(
            embed=self.embeds.success(title=f"{m.label} recorded", description=f"{m.home_score} - {m.away_score}")
        )

    @tournament.command(name="forfeit", description="Record a forfeit.")
    async def forfeit(
        self,
        interaction: discord.Interaction,
        tournament: str,
        match: str,
        forfeiting_team: str,
        reason: Optional[str] = None,
    ) -> None:
        await interaction.response.defer()
        t = await self._tournament(tournament)
        m = await self._match(t.tournament_id, match)
        team = await self._team(t.tournament_id, forfeiting_team)
        m = await self.matches.record_forfeit(
            actor=_actor(interaction),
            tournament_id=t.tournament_id,
            match_id=m.match_id,
            forfeiting_team_id=team.team_id,
            reason=reason,
        )
        await interaction.followup.send(embed=self.embeds.warning(title=f"{m.label} forfeited", description=f"{team.name} forfeits."))

    @tournament.command(name="correct", description="Correct a recorded score.")
    async def correct(
        self,
        interaction: discord.Interaction,
        tournament: str,
        match: str,
        home_score: app_commands.Range[int, 0, 999],
        away_score: app_commands.Range[int, 0, 999],
        overtime_winner: Optional[str] = None,
    ) -> None:
        await interaction.response.defer()
        t = await self._tournament(tournament)
        m = await self._match(t.tournament_id, match)
        ot = (await self._team(t.tournament_id, overtime_winner)).team_id if overtime_winner else None
        m = await self.matches.correct_score(
            actor=_actor(interaction),
            tournament_id=t.tournament_id,
            match_id=m.match_id,
            home_score=int(home_score),
            away_score=int(away_score),
            overtime_winner_id=ot,
        )
        await interaction.followup.send(
            embed=self.embeds.success(title=f"{m.label} corrected", description=f"{m.home_score} - {m.away_score}")
        )

    # -----------------------------
    # Standings
    # -----------------------------

    @tournament.command(name="standings", description="Show standings.")
    async def show_standings(self, interaction: discord.Interaction, tournament: str) -> None:
        await interaction.response.defer()
        t = await self._tournament(tournament)
        st = await self.standings.get_standings(tournament_id=t.tournament_id)
        await interaction.followup.send(content=self.standings_view.render(st, opts=StandingsOptions(title=t.name)))

    @tournament.command(name="resolve_ties", description="Order a tied group by hand.")
    @app_commands.describe(order="Team names, best first, comma separated", first_place="Placement of the first team listed")
    async def resolve_ties(
        self,
        interaction: discord.Interaction,
        tournament: str,
        order: str,
        first_place: app_commands.Range[int, 1, 256],
    ) -> None:
        await interaction.response.defer()
        t = await self._tournament(tournament)
        names = [n.strip() for n in order.split(",") if n.strip()]
        placements: dict[str, int] = {}
        for i, n in enumerate(names):
            placements[(await self._team(t.tournament_id, n)).team_id] = int(first_place) + i
        st = await self.standings.resolve_ties(actor=_actor(interaction), tournament_id=t.tournament_id, placements=placements)
        await interaction.followup.send(content=self.standings_view.render(st, opts=StandingsOptions(title=t.name)))


async def setup(
    bot: commands.Bot,
    *,
    lifecycle: LifecycleService,
    roster: RosterService,
    brackets: BracketService,
    matches: MatchService,
    standings: StandingsService,
    embeds: Embeds,
    bracket_view: BracketView,
    standings_view: StandingsView,
) -> None:
    await bot.add_cog(
        TournamentCog(
            bot,
            lifecycle=lifecycle,
            roster=roster,
            brackets=brackets,
            matches=matches,
            standings=standings,
            embeds=embeds,
            bracket_view=bracket_view,
            standings_view=standings_view,
        )
    )
