from __future__ import annotations

import os, sys

HERE = os.path.dirname(__file__)
ROOT = os.path.abspath(os.path.join(HERE, "..", ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import asyncio
from config import load_mysql_config
from db.pool import DbPool
from db.tx import transaction

async def main() -> None:
    run_id = os.getenv("SMOKE_RUN_ID")
    if not run_id:
        raise RuntimeError("Set SMOKE_RUN_ID to the run_id you want to clean up.")

    db = DbPool()
    await db.start(load_mysql_config())

    pattern = f"SMOKE_{run_id}%"
    async with transaction(db.pool) as (_conn, cur):
        # audit rows have no FK to tournament
        await cur.execute(
            "DELETE a FROM tournament_audit_log a JOIN tournament t ON t.tournament_id=a.tournament_id WHERE t.name LIKE %s;",
            (pattern,),
        )
        print(f"OK: {cur.rowcount} audit rows deleted")
        # teams, registrations, matches and admins cascade
        await cur.execute("DELETE FROM tournament WHERE name LIKE %s;", (pattern,))
        print(f"OK: {cur.rowcount} tournaments deleted")

    await db.close()
    print(f"OK: cleanup done for run_id={run_id}")

if __name__ == "__main__":
    asyncio.run(main())
