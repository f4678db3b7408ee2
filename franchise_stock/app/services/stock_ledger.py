from collections import defaultdict
from dataclasses import dataclass

from ..jsonlog import json_log
from ..models import LedgerFingerprint, LedgerLine


class RebuildLockedError(RuntimeError):
    """Raised when ledger writers hold the ledger lock, so the rebuild cannot start."""


class LedgerChangedError(RuntimeError):
    """Raised when the ledger moved while the projections were being rebuilt."""

    def __init__(self, before: LedgerFingerprint, after: LedgerFingerprint):
        super().__init__(f"ledger changed during rebuild: before={before} after={after}")
        self.before = before
        self.after = after


@dataclass
class RebuildResult:
    balances: int
    batch_balances: int
    ledger: LedgerFingerprint


def aggregate_lines(lines: list[LedgerLine]):
    """Sum qty_change per (franchise, medicine) and per batch key."""
    totals: dict = defaultdict(int)
    batch_totals: dict = defaultdict(int)
    for ln in lines:
        totals[(ln.franchise_id, ln.medicine_id)] += int(ln.qty_change)
        key = ln.batch_key
        if key is not None:
            batch_totals[key] += int(ln.qty_change)
    return dict(totals), dict(batch_totals)


def post_ledger_lines(repos, transaction_id: int, lines: list[LedgerLine]) -> None:
    """
    Append ledger rows for one stock transaction and apply them to both projections.

    Runs inside the caller's transaction: the ledger rows and the balance upserts
    commit or roll back together. Keys are touched in sorted order so two
    concurrent postings lock balance rows in the same sequence.
    """
    if not lines:
        return
    stock = repos.stock
    stock.lock_ledger_shared()
    stock.insert_ledger_lines(transaction_id, lines)

    totals, batch_totals = aggregate_lines(lines)
    for (franchise_id, medicine_id), qty in sorted(totals.items()):
        if qty == 0:
            continue
        new_qty = stock.increment_balance(franchise_id, medicine_id, qty)
        if new_qty < 0:
            json_log(
                "warning",
                "stock.balance.negative",
                scope="balance",
                transaction_id=transaction_id,
                franchise_id=franchise_id,
                medicine_id=medicine_id,
                quantity=new_qty,
            )
    for (franchise_id, medicine_id, batch_number, expiry_date), qty in sorted(batch_totals.items()):
        if qty == 0:
            continue
        new_qty = stock.increment_batch_balance(franchise_id, medicine_id, batch_number, expiry_date, qty)
        if new_qty < 0:
            json_log(
                "warning",
                "stock.balance.negative",
                scope="batch",
                transaction_id=transaction_id,
                franchise_id=franchise_id,
                medicine_id=medicine_id,
                batch_number=batch_number,
                expiry_date=expiry_date,
                quantity=new_qty,
            )


def rebuild_balances(stock, batch_size: int = 1000) -> RebuildResult:
    """
    Recompute stock_balances and stock_batch_balances from the ledger.

    Must run in one transaction. Takes the exclusive ledger lock (non-blocking),
    wipes both projections and re-inserts the grouped non-zero sums, streaming
    `batch_size` groups at a time. The ledger is fingerprinted before and after;
    any difference aborts the rebuild so the caller's transaction rolls back.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be > 0")
    if not stock.try_lock_ledger_exclusive():
        raise RebuildLockedError("ledger is locked by active writers; retry in a quiet window")

    before = stock.ledger_fingerprint()
    stock.delete_balances()

    balances = 0
    for chunk in stock.iter_balance_totals(batch_size):
        rows = [r for r in chunk if r.quantity != 0]
        stock.insert_balances(rows)
        balances += len(rows)

    batch_balances = 0
    for chunk in stock.iter_batch_balance_totals(batch_size):
        rows = [r for r in chunk if r.quantity != 0]
        stock.insert_batch_balances(rows)
        batch_balances += len(rows)

    after = stock.ledger_fingerprint()
    if after != before:
        raise LedgerChangedError(before, after)

    json_log(
        "info",
        "stock.rebuild.completed",
        balances=balances,
        batch_balances=batch_balances,
        ledger_rows=after.rows,
        ledger_total_qty=after.total_qty,
    )
    return RebuildResult(balances=balances, batch_balances=batch_balances, ledger=after)


def find_balance_drift(stock, limit: int = 100) -> list[dict]:
    """Rows where a projection disagrees with the ledger sum. Read-only."""
    out = []
    for r in stock.balance_drift(limit):
        out.append({"scope": "balance", **r})
    for r in stock.batch_balance_drift(limit):
        out.append({"scope": "batch", **r})
    if out:
        json_log("warning", "stock.rebuild.drift", rows=len(out), sample=out[:5])
    return out
