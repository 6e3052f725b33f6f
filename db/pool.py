# db/pool.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import aiomysql

from config import MySqlConfig

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"


class DbPool:
    """One aiomysql pool per process, shared by every repository."""

    def __init__(self) -> None:
        self._pool: Optional[aiomysql.Pool] = None

    @property
    def pool(self) -> aiomysql.Pool:
        if self._pool is None:
            raise RuntimeError("DB pool is not initialized. Call await DbPool.start() first.")
        return self._pool

    async def start(self, cfg: MySqlConfig) -> None:
        if self._pool is not None:
            return

        self._pool = await aiomysql.create_pool(
            host=cfg.host,
            port=cfg.port,
            user=cfg.user,
            password=cfg.password,
            db=cfg.database,
            minsize=cfg.minsize,
            maxsize=cfg.maxsize,
            connect_timeout=cfg.connect_timeout,
            autocommit=True,  # units of work open their own transaction
            charset="utf8mb4",
            # DATETIME columns hold UTC
            init_command="SET time_zone = '+00:00', innodb_lock_wait_timeout = 10",
        )

        await self.ping()
        logger.info("MySQL pool ready (%s@%s:%s/%s)", cfg.user, cfg.host, cfg.port, cfg.database)

    async def ping(self) -> None:
        async with self.pool.acquire() as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT 1;")
                await cur.fetchone()

    async def apply_schema(self, path: Path = SCHEMA_PATH) -> int:
        """Runs every statement in schema.sql. All statements are IF NOT EXISTS."""
        statements = [
            s.strip()
            for s in _strip_comments(path.read_text(encoding="utf-8")).split(";")
            if s.strip()
        ]
        async with self.pool.acquire() as conn:
            async with conn.cursor() as cur:
                for stmt in statements:
                    await cur.execute(stmt)
        return len(statements)

    async def close(self) -> None:
        if self._pool is None:
            return
        self._pool.close()
        await self._pool.wait_closed()
        self._pool = None


def _strip_comments(sql: str) -> str:
    return "\n".join(line for line in sql.splitlines() if not line.lstrip().startswith("--"))
