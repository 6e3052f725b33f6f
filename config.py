# config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from domain.enums import DEFAULT_TIEBREAK_ORDER, Tiebreaker


def _maybe_load_env_file() -> None:
    """
    Load .env from the project root (same folder as this config.py).
    Never overwrites already-set environment variables.
    """
    dotenv_path = Path(__file__).resolve().parent / ".env"
    if dotenv_path.exists():
        load_dotenv(dotenv_path=dotenv_path, override=False)


@dataclass(frozen=True)
class MySqlConfig:
    host: str
    port: int
    user: str
    password: str
    database: str
    minsize: int = 1
    maxsize: int = 5
    connect_timeout: int = 10


@dataclass(frozen=True)
class EngineConfig:
    """Defaults applied to newly created tournaments."""

    tiebreak_order: tuple[Tiebreaker, ...] = DEFAULT_TIEBREAK_ORDER
    bracket_reset: bool = True
    points_win: int = 3
    points_tie: int = 1
    points_loss: int = 0


@dataclass(frozen=True)
class BotConfig:
    token: str
    dev_guild_id: int | None
    default_announce_channel_id: int | None
    command_prefix: str
    log_level: str
    mysql: MySqlConfig
    engine: EngineConfig


def _getenv(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    if v is None:
        return default
    v = v.strip()
    return v if v else default


def _int_or_none(value: str | None, var_name: str) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{var_name} must be an integer, got: {value!r}") from e


def _int(value: str | None, var_name: str, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{var_name} must be an integer, got: {value!r}") from e


def _bool(value: str | None, var_name: str, default: bool) -> bool:
    if value is None:
        return default
    v = value.lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{var_name} must be a boolean, got: {value!r}")


def _tiebreaks(value: str | None, var_name: str) -> tuple[Tiebreaker, ...]:
    if value is None:
        return DEFAULT_TIEBREAK_ORDER
    out: list[Tiebreaker] = []
    for raw in value.split(","):
        name = raw.strip()
        if not name:
            continue
        try:
            tb = Tiebreaker(name)
        except ValueError as e:
            allowed = ", ".join(t.value for t in Tiebreaker)
            raise ValueError(f"{var_name} has unknown criterion {name!r} (allowed: {allowed})") from e
        if tb not in out:
            out.append(tb)
    return tuple(out) or DEFAULT_TIEBREAK_ORDER


def load_engine_config() -> EngineConfig:
    _maybe_load_env_file()
    return EngineConfig(
        tiebreak_order=_tiebreaks(_getenv("TIEBREAK_ORDER"), "TIEBREAK_ORDER"),
        bracket_reset=_bool(_getenv("BRACKET_RESET"), "BRACKET_RESET", True),
        points_win=_int(_getenv("POINTS_WIN"), "POINTS_WIN", 3),
        points_tie=_int(_getenv("POINTS_TIE"), "POINTS_TIE", 1),
        points_loss=_int(_getenv("POINTS_LOSS"), "POINTS_LOSS", 0),
    )


def load_mysql_config() -> MySqlConfig:
    _maybe_load_env_file()

    minsize = _int(_getenv("DB_POOL_MIN"), "DB_POOL_MIN", 1)
    maxsize = _int(_getenv("DB_POOL_MAX"), "DB_POOL_MAX", 5)
    if minsize < 1:
        raise ValueError("DB_POOL_MIN must be >= 1")
    if maxsize < minsize:
        raise ValueError("DB_POOL_MAX must be >= DB_POOL_MIN")

    return MySqlConfig(
        host=_getenv("DB_HOST", "127.0.0.1") or "127.0.0.1",
        port=_int(_getenv("DB_PORT"), "DB_PORT", 3306),
        user=_getenv("DB_USER", "root") or "root",
        password=_getenv("DB_PASSWORD", "") or "",
        database=_getenv("DB_NAME", "league_engine") or "league_engine",
        minsize=minsize,
        maxsize=maxsize,
        connect_timeout=_int(_getenv("DB_CONNECT_TIMEOUT"), "DB_CONNECT_TIMEOUT", 10),
    )


def load_config() -> BotConfig:
    _maybe_load_env_file()

    token = (_getenv("DISCORD_TOKEN") or "").strip()
    if not token:
        raise RuntimeError("Missing DISCORD_TOKEN environment variable.")

    return BotConfig(
        token=token,
        dev_guild_id=_int_or_none(_getenv("DEV_GUILD_ID"), "DEV_GUILD_ID"),
        default_announce_channel_id=_int_or_none(_getenv("ANNOUNCE_CHANNEL_ID"), "ANNOUNCE_CHANNEL_ID"),
        command_prefix=_getenv("COMMAND_PREFIX", "!") or "!",
        log_level=(_getenv("LOG_LEVEL", "INFO") or "INFO").upper(),
        mysql=load_mysql_config(),
        engine=load_engine_config(),
    )
