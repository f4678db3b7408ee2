from collections import defaultdict
from datetime import date, timedelta
from typing import NamedTuple, Optional

from fastapi import HTTPException

from ..jsonlog import json_log
from ..models import AuthContext


class AdminAllocation(NamedTuple):
    medicine_id: int
    quantity: int
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None


def _medicine_label(repos, medicine_id: int) -> str:
    med = repos.catalog.get_medicine(medicine_id)
    if med is None:
        return f"medicine {medicine_id}"
    return f"{med.name} (medicine {medicine_id})"


def allocate_admin_stock(repos, allocations: list[AdminAllocation]) -> dict[int, int]:
    """
    Move stock out of the central pool.

    All admin rows involved are locked and checked before anything is written,
    so a shortage on any medicine leaves every balance untouched (409).
    Returns the remaining admin quantity per medicine.
    """
    required: dict[int, int] = defaultdict(int)
    by_batch: dict = defaultdict(int)
    for a in allocations:
        if a.quantity <= 0:
            continue
        required[a.medicine_id] += int(a.quantity)
        if a.batch_number and a.expiry_date:
            by_batch[(a.medicine_id, a.batch_number, a.expiry_date)] += int(a.quantity)
    if not required:
        return {}

    available = repos.admin_stock.get_balances_for_update(sorted(required))
    for medicine_id in sorted(required):
        have = available.get(medicine_id, 0)
        need = required[medicine_id]
        if have < need:
            raise HTTPException(
                status_code=409,
                detail=(
                    f"insufficient admin stock for {_medicine_label(repos, medicine_id)}: "
                    f"available {have}, required {need}"
                ),
            )

    remaining = {}
    for medicine_id in sorted(required):
        remaining[medicine_id] = repos.admin_stock.decrement_balance(medicine_id, required[medicine_id])

    for (medicine_id, batch_number, expiry_date), qty in sorted(by_batch.items()):
        left = repos.admin_stock.decrement_batch(medicine_id, batch_number, expiry_date, qty)
        if left is not None and left < 0:
            json_log(
                "warning",
                "stock.balance.negative",
                scope="admin_batch",
                medicine_id=medicine_id,
                batch_number=batch_number,
                expiry_date=expiry_date,
                quantity=left,
            )
    return remaining


def validate_refill_items(items, today: date, min_shelf_life_days: int = 90) -> None:
    cutoff = today + timedelta(days=min_shelf_life_days)
    seen: set = set()
    for idx, it in enumerate(items):
        if it.expiry_date <= cutoff:
            raise HTTPException(
                status_code=400,
                detail=(
                    f"items[{idx}]: expiry date {it.expiry_date.isoformat()} must be more than "
                    f"{min_shelf_life_days} days from today"
                ),
            )
        key = (it.medicine_id, it.batch_number)
        if key in seen:
            raise HTTPException(
                status_code=400,
                detail=f"items[{idx}]: duplicate batch number {it.batch_number} for medicine {it.medicine_id}",
            )
        seen.add(key)


def refill_admin_stock(repos, ctx: AuthContext, items, today: date, min_shelf_life_days: int = 90) -> dict:
    if not ctx.is_admin:
        raise HTTPException(status_code=403, detail="admin only")
    validate_refill_items(items, today, min_shelf_life_days)

    for it in items:
        if repos.catalog.get_medicine(it.medicine_id) is None:
            raise HTTPException(status_code=404, detail=f"medicine {it.medicine_id} not found")
        clash = [d for d in repos.admin_stock.find_batch_expiries(it.medicine_id, it.batch_number) if d != it.expiry_date]
        if clash:
            raise HTTPException(
                status_code=409,
                detail=(
                    f"batch number {it.batch_number} already exists for medicine {it.medicine_id} "
                    f"with expiry {clash[0].isoformat()}"
                ),
            )

    rows = []
    for it in items:
        batch_qty = repos.admin_stock.increment_batch(it.medicine_id, it.batch_number, it.expiry_date, it.quantity)
        stock_qty = repos.admin_stock.increment_balance(it.medicine_id, it.quantity)
        rows.append(
            {
                "medicine_id": it.medicine_id,
                "batch_number": it.batch_number,
                "expiry_date": it.expiry_date,
                "batch_quantity": batch_qty,
                "stock": stock_qty,
            }
        )
    repos.audit.record(
        ctx.user_id,
        "admin_stock_refilled",
        "admin_stock",
        ",".join(str(m) for m in sorted({it.medicine_id for it in items})),
        {"items": [{"medicine_id": it.medicine_id, "batch_number": it.batch_number, "quantity": it.quantity} for it in items]},
    )
    return {"ok": True, "items": rows}
