# db/tx.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Tuple

import aiomysql

from domain.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

# InnoDB gives up on a row lock with one of these; the caller may simply retry.
ER_LOCK_WAIT_TIMEOUT = 1205
ER_LOCK_DEADLOCK = 1213
RETRYABLE = frozenset({ER_LOCK_WAIT_TIMEOUT, ER_LOCK_DEADLOCK})


def _cursor_cls(dict_rows: bool) -> type:
    return aiomysql.DictCursor if dict_rows else aiomysql.Cursor


@asynccontextmanager
async def get_cursor(pool: aiomysql.Pool, *, dict_rows: bool = True) -> AsyncIterator[aiomysql.Cursor]:
    """Single statement outside a transaction (pool is autocommit)."""
    async with pool.acquire() as conn:
        async with conn.cursor(_cursor_cls(dict_rows)) as cur:
            yield cur


@asynccontextmanager
async def transaction(
    pool: aiomysql.Pool, *, dict_rows: bool = True
) -> AsyncIterator[Tuple[aiomysql.Connection, aiomysql.Cursor]]:
    """
    BEGIN ... COMMIT, rolled back on any exception.

    Deadlocks and lock-wait timeouts surface as ConcurrencyConflict so the
    services report them as "try again" instead of a server error.

        async with transaction(pool) as (conn, cur):
            await cur.execute("SELECT ... FOR UPDATE", ...)
    """
    async with pool.acquire() as conn:
        await conn.begin()
        try:
            async with conn.cursor(_cursor_cls(dict_rows)) as cur:
                yield conn, cur
            await conn.commit()
        except aiomysql.OperationalError as e:
            await conn.rollback()
            code = e.args[0] if e.args else None
            if code in RETRYABLE:
                logger.warning("Transaction aborted by lock contention (MySQL %s)", code)
                raise ConcurrencyConflict("Another change to this tournament was in progress; try again.") from e
            raise
        except BaseException:
            await conn.rollback()
            raise
