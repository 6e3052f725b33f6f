# services/notifier.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Protocol

import discord

if TYPE_CHECKING:
    from renderers.embeds import Embeds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TournamentEvent:
    tournament_id: str
    kind: str          # status_changed | bracket_generated | score_entered | waitlist_promoted
    title: str
    description: str = ""
    data: dict[str, Any] = field(default_factory=dict)


class Notifier(Protocol):
    async def notify(self, event: TournamentEvent) -> None: ...


class NullNotifier:
    async def notify(self, event: TournamentEvent) -> None:
        return None


class DiscordNotifier:
    """Posts tournament events to the announce channel."""

    def __init__(self, *, client: discord.Client, channel_id: Optional[int], embeds: Embeds) -> None:
        self._client = client
        self._channel_id = channel_id
        self._embeds = embeds

    async def notify(self, event: TournamentEvent) -> None:
        if not self._channel_id:
            return
        channel = self._client.get_channel(self._channel_id)
        if channel is None:
            channel = await self._client.fetch_channel(self._channel_id)
        await channel.send(embed=self._embeds.tournament_event(event))


_pending: set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.exception("Notification dispatch failed", exc_info=exc)


def dispatch(notifier: Notifier, event: TournamentEvent) -> asyncio.Task:
    """
    Fire-and-forget. Delivery runs after the unit of work commits and never
    blocks or fails the operation that produced the event.
    """
    task = asyncio.create_task(notifier.notify(event), name=f"notify:{event.kind}:{event.tournament_id}")
    _pending.add(task)
    task.add_done_callback(_on_done)
    return task


async def drain(timeout: float = 5.0) -> None:
    """Wait for in-flight notifications (shutdown and tests)."""
    loop = asyncio.get_running_loop()
    tasks = [t for t in _pending if t.get_loop() is loop]
    if tasks:
        await asyncio.wait(tasks, timeout=timeout)
