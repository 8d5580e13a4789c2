#!/usr/bin/env python3
"""Print advisory lock ids for job keys and, optionally, who holds them."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import asyncpg  # noqa: E402

from advisorylock.hashing import resolve_lock_id  # noqa: E402

# Single-argument advisory locks are keyed by a bigint split over classid/objid.
HOLDERS_SQL = """
SELECT pid, granted
FROM pg_locks
WHERE locktype = 'advisory'
  AND objsubid = 1
  AND ((classid::bigint << 32) | objid::bigint) = $1
"""


#: Marks a literal numeric lock id; every other argument is a key to hash.
ID_PREFIX = "id:"


def _parse_key(raw: str):
    if not raw.startswith(ID_PREFIX):
        return raw
    digits = raw[len(ID_PREFIX):]
    try:
        return int(digits)
    except ValueError:
        raise ValueError(f"Invalid numeric lock id {digits!r}") from None


def _resolve(keys: Sequence[str]) -> Dict[str, int]:
    return {key: resolve_lock_id(_parse_key(key)) for key in keys}


async def _fetch_holders(dsn: str, lock_ids: Sequence[int]) -> Dict[int, List[int]]:
    connection = await asyncpg.connect(dsn)
    try:
        holders: Dict[int, List[int]] = {}
        for lock_id in lock_ids:
            rows = await connection.fetch(HOLDERS_SQL, lock_id)
            holders[lock_id] = [row["pid"] for row in rows if row["granted"]]
        return holders
    finally:
        await connection.close()


def _print_summary(resolved: Dict[str, int], holders: Optional[Dict[int, List[int]]]) -> None:
    for key, lock_id in resolved.items():
        line = f"  • {key}: {lock_id}"
        if holders is not None:
            pids = holders.get(lock_id) or []
            line += f"  held by pid {', '.join(map(str, pids))}" if pids else "  (free)"
        print(line)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "keys",
        nargs="+",
        help="Job keys to hash; prefix a literal lock id with id: (e.g. id:839271)",
    )
    parser.add_argument(
        "--dsn",
        default=None,
        help="PostgreSQL DSN; when given, report which backends currently hold each lock",
    )
    args = parser.parse_args(argv)

    try:
        resolved = _resolve(args.keys)
    except (TypeError, ValueError) as exc:
        parser.error(str(exc))

    dsn = args.dsn or os.environ.get("ADVISORYLOCK_CHECK_DSN")
    holders = asyncio.run(_fetch_holders(dsn, list(resolved.values()))) if dsn else None
    _print_summary(resolved, holders)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
