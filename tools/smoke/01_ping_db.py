from __future__ import annotations

import os, sys

HERE = os.path.dirname(__file__)
ROOT = os.path.abspath(os.path.join(HERE, "..", ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import asyncio
from config import load_mysql_config
from db.pool import DbPool

TABLES = (
    "tournament",
    "tournament_admin",
    "tournament_team",
    "tournament_registration",
    "tournament_match",
    "tournament_audit_log",
)


async def main() -> None:
    cfg = load_mysql_config()
    db = DbPool()
    await db.start(cfg)
    try:
        applied = await db.apply_schema()
        async with db.pool.acquire() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    "SELECT table_name FROM information_schema.tables WHERE table_schema=%s",
                    (cfg.database,),
                )
                present = {row[0] for row in await cur.fetchall()}
    finally:
        await db.close()

    missing = [t for t in TABLES if t not in present]
    if missing:
        raise SystemExit(f"FAIL: schema applied ({applied} statements) but missing tables: {', '.join(missing)}")
    print(f"OK: {cfg.database} reachable, {applied} schema statements applied, {len(TABLES)} tables present.")

if __name__ == "__main__":
    asyncio.run(main())
