# renderers/embeds.py
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import discord

from domain.errors import EngineError, ErrorKind
from domain.models import Tournament

if TYPE_CHECKING:
    from services.notifier import TournamentEvent


@dataclass(frozen=True)
class EmbedTheme:
    primary: int = 0x1F6FB2   # rink blue
    success: int = 0x2ECC71
    warning: int = 0xF1C40F
    danger: int = 0xE74C3C
    neutral: int = 0x5865F2   # discord-ish blue


_ERROR_TITLES = {
    ErrorKind.FIX_INPUT: "Can't do that",
    ErrorKind.RETRY: "Busy, try again",
    ErrorKind.NEEDS_ADMIN: "Needs an admin",
    ErrorKind.FORBIDDEN: "Not allowed",
}


def _when(v) -> str:
    return discord.utils.format_dt(v, style="f") if v else "TBD"


class Embeds:
    """
    Centralized embed styling so every command looks consistent.
    """

    def __init__(self, *, theme: EmbedTheme | None = None, footer: str = "League Engine") -> None:
        self._theme = theme or EmbedTheme()
        self._footer = footer

    def base(
        self,
        *,
        title: str,
        description: str | None = None,
        color: int | None = None,
    ) -> discord.Embed:
        e = discord.Embed(
            title=title,
            description=description,
            color=color if color is not None else self._theme.primary,
        )
        e.set_footer(text=self._footer)
        return e

    def info(self, *, title: str, description: str | None = None) -> discord.Embed:
        return self.base(title=title, description=description, color=self._theme.neutral)

    def success(self, *, title: str, description: str | None = None) -> discord.Embed:
        return self.base(title=title, description=description, color=self._theme.success)

    def warning(self, *, title: str, description: str | None = None) -> discord.Embed:
        return self.base(title=title, description=description, color=self._theme.warning)

    def error(self, *, title: str, description: str | None = None) -> discord.Embed:
        return self.base(title=title, description=description, color=self._theme.danger)

    def engine_error(self, err: EngineError) -> discord.Embed:
        color = self._theme.warning if err.kind == ErrorKind.RETRY else self._theme.danger
        e = self.base(title=_ERROR_TITLES.get(err.kind, "Error"), description=err.reason, color=color)
        e.add_field(name="Kind", value=f"`{err.kind.value}`", inline=True)
        return e

    def tournament_event(self, event: TournamentEvent) -> discord.Embed:
        color = self._theme.success if event.kind == "score_entered" else self._theme.primary
        return self.base(title=event.title, description=event.description or None, color=color)

    def tournament(self, t: Tournament) -> discord.Embed:
        e = self.info(title=t.name, description=f"ID: `{t.tournament_id}`")
        e.add_field(name="Status", value=t.status.value, inline=True)
        e.add_field(name="Format", value=t.format.value, inline=True)
        e.add_field(name="Teams", value=t.team_formation.value, inline=True)
        if t.max_teams:
            e.add_field(name="Max teams", value=str(t.max_teams), inline=True)
        if t.min_players_per_team or t.max_players_per_team:
            e.add_field(
                name="Roster",
                value=f"{t.min_players_per_team or 1}-{t.max_players_per_team or '∞'} players",
                inline=True,
            )
        e.add_field(name="Starts", value=_when(t.start_date), inline=True)
        if t.registration_deadline:
            e.add_field(name="Registration closes", value=_when(t.registration_deadline), inline=True)
        if t.venue:
            e.add_field(name="Venue", value=t.venue, inline=True)
        return e
