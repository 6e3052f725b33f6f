# main.py
from __future__ import annotations

import asyncio
import logging
import signal
from typing import Optional

import discord
from discord.ext import commands

from config import load_config
from db.pool import DbPool

from repositories.tournament_repo import TournamentRepo
from repositories.admin_repo import AdminRepo
from repositories.audit_repo import AuditRepo

from services.authorization_service import AuthorizationService
from services.bracket_service import BracketService
from services.lifecycle_service import LifecycleService
from services.match_service import MatchService
from services.notifier import DiscordNotifier, drain
from services.roster_service import RosterService
from services.standings_service import StandingsService

from renderers.embeds import Embeds
from renderers.bracket_view import BracketView
from renderers.standings_view import StandingsView

from cogs.admin_cog import setup as setup_admin_cog
from cogs.tournament_cog import setup as setup_tournament_cog


class LeagueBot(commands.Bot):
    def __init__(self) -> None:
        self.cfg = load_config()

        intents = discord.Intents.default()
        super().__init__(
            command_prefix=self.cfg.command_prefix,
            intents=intents,
            allowed_mentions=discord.AllowedMentions.none(),
        )

        self.db: Optional[DbPool] = None

    async def setup_hook(self) -> None:
        logging.info("Starting setup_hook...")

        # --- DB ---
        self.db = DbPool()
        await self.db.start(self.cfg.mysql)

        # --- Repos ---
        tournament_repo = TournamentRepo(self.db)
        admin_repo = AdminRepo(self.db)
        audit_repo = AuditRepo(self.db)

        # --- Renderers ---
        embeds = Embeds()
        bracket_view = BracketView()
        standings_view = StandingsView()

        # --- Services ---
        authz = AuthorizationService(admin_repo)
        notifier = DiscordNotifier(client=self, channel_id=self.cfg.default_announce_channel_id, embeds=embeds)
        shared = dict(store=tournament_repo, authz=authz, audit=audit_repo, notifier=notifier)

        bracket_service = BracketService(**shared)
        lifecycle_service = LifecycleService(bracket_service=bracket_service, engine=self.cfg.engine, **shared)
        roster_service = RosterService(**shared)
        match_service = MatchService(**shared)
        standings_service = StandingsService(**shared)

        # --- Cogs ---
        await setup_admin_cog(self, authz=authz, lifecycle=lifecycle_service, embeds=embeds)
        await setup_tournament_cog(
            self,
            lifecycle=lifecycle_service,
            roster=roster_service,
            brackets=bracket_service,
            matches=match_service,
            standings=standings_service,
            embeds=embeds,
            bracket_view=bracket_view,
            standings_view=standings_view,
        )

        # --- Slash sync ---
        if self.cfg.dev_guild_id:
            guild = discord.Object(id=self.cfg.dev_guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logging.info("Slash commands synced to DEV guild %s", self.cfg.dev_guild_id)
        else:
            await self.tree.sync()
            logging.info("Slash commands synced globally")

        logging.info("setup_hook complete.")

    async def close(self) -> None:
        try:
            await drain()
            await super().close()
        finally:
            if self.db:
                await self.db.close()
                self.db = None


async def _run_bot() -> None:
    cfg = load_config()

    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    bot = LeagueBot()

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _request_stop(*_args) -> None:
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop)
        except NotImplementedError:
            pass

    async with bot:
        runner = asyncio.create_task(bot.start(cfg.token))
        await stop_event.wait()
        await bot.close()
        await runner


def main() -> None:
    asyncio.run(_run_bot())


if __name__ == "__main__":
    main()
