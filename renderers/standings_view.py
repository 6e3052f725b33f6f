# renderers/standings_view.py
from __future__ import annotations

from dataclasses import dataclass

from domain.standings import Standings


def _pad(s: str, width: int) -> str:
    s = s or ""
    if len(s) > width:
        return s[: max(0, width - 1)] + "…" if width >= 2 else s[:width]
    return s + (" " * (width - len(s)))


def _rpad(s: str, width: int) -> str:
    return (" " * max(0, width - len(s))) + s


@dataclass(frozen=True)
class StandingsOptions:
    max_rows: int = 20
    name_width: int = 18
    title: str = "Standings"


class StandingsView:
    """
    Renders the standings table as monospace text for Discord.

    Tied teams share a rank and are flagged with '='; playoff-bound rows
    get a '>' marker.
    """

    def render(self, standings: Standings, *, opts: StandingsOptions | None = None) -> str:
        o = opts or StandingsOptions()
        rows = list(standings.rows)[: o.max_rows]
        tied = {tid for g in standings.tied_groups for tid in g.team_ids}

        num_w = 3
        name_w = max(o.name_width, min(28, max((len(r.team_name) for r in rows), default=o.name_width)))
        cols = ["GP", "W", "L", "T", "PTS", "GF", "GA", "GD"]

        lines: list[str] = [f"=== {o.title} ==="]
        lines.append("  " + _pad("#", 4) + _pad("Team", name_w) + " " + " ".join(_rpad(c, num_w) for c in cols))
        lines.append("-" * (6 + name_w + (num_w + 1) * len(cols)))

        for r in rows:
            mark = ">" if r.is_playoff_bound else " "
            rank = f"{r.rank}{'=' if r.team_id in tied else ''}"
            gd = f"{r.goal_differential:+d}" if r.goal_differential else "0"
            values = [r.games_played, r.wins, r.losses, r.ties, r.points, r.goals_for, r.goals_against]
            lines.append(
                f"{mark} {_pad(rank, 4)}{_pad(r.team_name, name_w)} "
                + " ".join(_rpad(str(v), num_w) for v in values)
                + " "
                + _rpad(gd, num_w)
            )

        if standings.tied_groups:
            lines.append("")
            lines.append(f"{len(standings.tied_groups)} tie(s) need /tournament resolve_ties")

        return "```text\n" + "\n".join(lines).rstrip() + "\n```"
