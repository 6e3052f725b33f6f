# renderers/bracket_view.py
from __future__ import annotations

from itertools import groupby
from typing import Mapping, Optional, Sequence

from domain.enums import BracketKey, MatchStatus
from domain.models import Match, Team


def _pad(s: str, width: int) -> str:
    s = s or ""
    if len(s) > width:
        return s[: max(0, width - 1)] + "…" if width >= 2 else s[:width]
    return s + (" " * (width - len(s)))


def _status_mark(m: Match) -> str:
    if m.status == MatchStatus.COMPLETED:
        return f"{m.home_score}-{m.away_score}"
    if m.status == MatchStatus.FORFEIT:
        return "FF"
    if m.status == MatchStatus.IN_PROGRESS:
        return "live"
    return "⏳" if m.has_both_teams else ""


_SECTIONS = (
    (BracketKey.RR, "SCHEDULE"),
    (BracketKey.W, "WINNERS"),
    (BracketKey.L, "LOSERS"),
    (BracketKey.GF, "GRAND FINAL"),
)


class BracketView:
    """
    Text bracket / schedule renderer for Discord (monospace).
    The winning side is marked with '*'.
    """

    def __init__(self, *, name_width: int = 18) -> None:
        self._name_width = int(name_width)

    def _team_label(self, team: Optional[Team], *, winner: bool) -> str:
        if team is None:
            return _pad("TBD", self._name_width + 1)
        name = team.name if team.seed is None else f"[{team.seed}] {team.name}"
        return _pad(("*" if winner else " ") + name, self._name_width + 1)

    def render(
        self,
        *,
        matches: Sequence[Match],
        teams: Sequence[Team],
        title: str = "Bracket",
        max_lines: int = 55,
    ) -> str:
        team_map: Mapping[str, Team] = {t.team_id: t for t in teams}

        def team(tid: Optional[str]) -> Optional[Team]:
            return team_map.get(tid) if tid else None

        lines: list[str] = [f"=== {title} ===", ""]

        for key, heading in _SECTIONS:
            section = sorted((m for m in matches if m.bracket == key), key=lambda m: (m.round_no, m.match_no))
            if not section:
                continue
            lines.append(f"-- {heading} --")
            for round_no, ms in groupby(section, key=lambda m: m.round_no):
                lines.append(f"Round {round_no}:")
                for m in ms:
                    home = self._team_label(team(m.home_team_id), winner=m.winner_team_id == m.home_team_id and m.winner_team_id is not None)
                    away = self._team_label(team(m.away_team_id), winner=m.winner_team_id == m.away_team_id and m.winner_team_id is not None)
                    lines.append(f"  {_pad(m.label, 8)} {home} vs {away} {_status_mark(m)}".rstrip())
            lines.append("")

        # Trim if too long for Discord messages (keep end because finals matter)
        if len(lines) > max_lines:
            head = lines[:10]
            tail = lines[-(max_lines - 12) :]
            lines = head + ["...", ""] + tail

        return "```text\n" + "\n".join(lines).rstrip() + "\n```"
