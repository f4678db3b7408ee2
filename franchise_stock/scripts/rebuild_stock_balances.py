#!/usr/bin/env python3
"""
Rebuild stock_balances and stock_batch_balances from the stock ledger.

Run in a maintenance window. The rebuild takes the ledger's exclusive advisory
lock without waiting: if any ledger writer is mid-transaction it exits with an
error instead of racing it. `--check` only reports drift and writes nothing.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import asdict

import psycopg
from psycopg.rows import dict_row

# Allow running from repo root without installing as a package.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from franchise_stock.app.config import settings  # noqa: E402
from franchise_stock.app.jsonlog import json_log  # noqa: E402
from franchise_stock.app.repositories.stock import StockRepository  # noqa: E402
from franchise_stock.app.services.stock_ledger import (  # noqa: E402
    LedgerChangedError,
    RebuildLockedError,
    find_balance_drift,
    rebuild_balances,
)


def get_conn(db_url: str):
    return psycopg.connect(db_url, row_factory=dict_row)


def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser()
    p.add_argument("--db", default=settings.db_url, help="Postgres URL (default: DATABASE_URL)")
    p.add_argument(
        "--batch-size",
        type=int,
        default=settings.rebuild_batch_size,
        help=f"Grouped rows per insert batch (default: {settings.rebuild_batch_size})",
    )
    p.add_argument("--check", action="store_true", help="Report drift between ledger and balances; no writes")
    p.add_argument("--limit", type=int, default=200, help="Max drift rows reported per projection with --check")
    return p.parse_args(argv)


def run_check(conn, limit: int) -> int:
    with conn.cursor() as cur:
        drift = find_balance_drift(StockRepository(cur), limit)
    if not drift:
        print(json.dumps({"ok": True, "drift": 0}))
        return 0
    print(json.dumps({"ok": False, "drift": len(drift), "rows": drift}, default=str))
    return 1


def run_rebuild(conn, batch_size: int) -> int:
    try:
        with conn.transaction():
            with conn.cursor() as cur:
                result = rebuild_balances(StockRepository(cur), batch_size)
    except RebuildLockedError as exc:
        json_log("error", "stock.rebuild.locked", error=str(exc))
        print(json.dumps({"ok": False, "error": str(exc)}))
        return 2
    except LedgerChangedError as exc:
        json_log("error", "stock.rebuild.ledger_changed", before=asdict(exc.before), after=asdict(exc.after))
        print(json.dumps({"ok": False, "error": str(exc)}))
        return 3
    print(
        json.dumps(
            {
                "ok": True,
                "balances": result.balances,
                "batch_balances": result.batch_balances,
                "ledger": asdict(result.ledger),
            }
        )
    )
    return 0


def main(argv=None) -> int:
    args = _parse_args(argv)
    if args.batch_size <= 0:
        print("--batch-size must be > 0", file=sys.stderr)
        return 2
    limit = max(1, min(int(args.limit or 200), 5000))
    with get_conn(args.db) as conn:
        if args.check:
            return run_check(conn, limit)
        return run_rebuild(conn, args.batch_size)


if __name__ == "__main__":
    raise SystemExit(main())
