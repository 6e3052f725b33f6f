# cogs/admin_cog.py
from __future__ import annotations

import discord
from discord import app_commands
from discord.ext import commands

from domain.errors import EngineError
from renderers.embeds import Embeds
from services.authorization_service import AuthorizationService
from services.lifecycle_service import LifecycleService

_ROLES = [
    app_commands.Choice(name="Admin", value="admin"),
    app_commands.Choice(name="Scorekeeper", value="scorekeeper"),
]


class AdminCog(commands.Cog):
    admin = app_commands.Group(name="tournament_admin", description="Manage who can run a tournament.")

    def __init__(
        self,
        bot: commands.Bot,
        *,
        authz: AuthorizationService,
        lifecycle: LifecycleService,
        embeds: Embeds,
    ) -> None:
        self.bot = bot
        self.authz = authz
        self.lifecycle = lifecycle
        self.embeds = embeds

    async def cog_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError) -> None:
        original = getattr(error, "original", error)
        if not isinstance(original, EngineError):
            raise error
        e = self.embeds.engine_error(original)
        if interaction.response.is_done():
            await interaction.followup.send(embed=e, ephemeral=True)
        else:
            await interaction.response.send_message(embed=e, ephemeral=True)

    @admin.command(name="grant", description="Make someone an admin or scorekeeper of a tournament.")
    @app_commands.describe(user="Member to promote", role="Admin runs everything; scorekeepers enter results")
    @app_commands.choices(role=_ROLES)
    async def grant(
        self,
        interaction: discord.Interaction,
        tournament: str,
        user: discord.Member,
        role: app_commands.Choice[str],
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self.lifecycle.find_tournament(name_or_id=tournament)
        granted = await self.authz.grant(
            actor=str(interaction.user.id),
            tournament_id=t.tournament_id,
            user_id=str(user.id),
            role=role.value,
        )
        e = self.embeds.success(
            title="Role granted",
            description=f"{user.mention} is now **{granted.value}** of **{t.name}**.",
        )
        await interaction.followup.send(embed=e, ephemeral=True)

    @admin.command(name="revoke", description="Remove someone's tournament role.")
    async def revoke(self, interaction: discord.Interaction, tournament: str, user: discord.Member) -> None:
        await interaction.response.defer(ephemeral=True)
        t = await self.lifecycle.find_tournament(name_or_id=tournament)
        removed = await self.authz.revoke(actor=str(interaction.user.id), tournament_id=t.tournament_id, user_id=str(user.id))
        if removed:
            e = self.embeds.success(title="Role removed", description=f"{user.mention} no longer helps run **{t.name}**.")
        else:
            e = self.embeds.warning(title="Nothing to remove", description=f"{user.mention} has no removable role.")
        await interaction.followup.send(embed=e, ephemeral=True)

    @admin.command(name="whoami", description="Show your role in a tournament.")
    async def whoami(self, interaction: discord.Interaction, tournament: str) -> None:
        t = await self.lifecycle.find_tournament(name_or_id=tournament)
        role = await self.authz.is_tournament_admin(str(interaction.user.id), t.tournament_id)
        e = self.embeds.info(title=t.name, description=f"Your role: **{role.value if role else 'player'}**")
        await interaction.response.send_message(embed=e, ephemeral=True)


async def setup(
    bot: commands.Bot,
    *,
    authz: AuthorizationService,
    lifecycle: LifecycleService,
    embeds: Embeds,
) -> None:
    await bot.add_cog(AdminCog(bot, authz=authz, lifecycle=lifecycle, embeds=embeds))
