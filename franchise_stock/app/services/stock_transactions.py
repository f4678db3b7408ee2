from datetime import datetime
from decimal import Decimal

from fastapi import HTTPException

from ..models import TXN_DISPATCH_TO_FRANCHISE, AuthContext, LedgerLine
from .admin_stock import AdminAllocation, allocate_admin_stock
from .stock_ledger import post_ledger_lines


def dispatch_to_franchise(repos, ctx: AuthContext, data, now: datetime) -> dict:
    """Manual stock transfer from the admin pool to a franchise, outside any sale."""
    if not ctx.is_admin:
        raise HTTPException(status_code=403, detail="admin only")
    if repos.catalog.get_franchise(data.franchise_id) is None:
        raise HTTPException(status_code=404, detail="franchise not found")
    for it in data.items:
        if repos.catalog.get_medicine(it.medicine_id) is None:
            raise HTTPException(status_code=404, detail=f"medicine {it.medicine_id} not found")
        if bool(it.batch_number) != bool(it.expiry_date):
            raise HTTPException(status_code=400, detail="batch_number and expiry_date must be given together")

    allocate_admin_stock(
        repos,
        [AdminAllocation(it.medicine_id, it.quantity, it.batch_number, it.expiry_date) for it in data.items],
    )
    txn = repos.stock.create_transaction(
        TXN_DISPATCH_TO_FRANCHISE,
        data.txn_date or now.date(),
        data.franchise_id,
        ctx.user_id,
        notes=data.notes,
    )
    lines = [
        LedgerLine(
            franchise_id=data.franchise_id,
            medicine_id=it.medicine_id,
            qty_change=int(it.quantity),
            rate=it.rate,
            amount=it.amount if it.amount is not None else (it.rate * it.quantity).quantize(Decimal("0.01")),
            batch_number=it.batch_number,
            expiry_date=it.expiry_date,
        )
        for it in data.items
    ]
    post_ledger_lines(repos, txn.id, lines)
    repos.audit.record(
        ctx.user_id,
        "stock_dispatched",
        "stock_transaction",
        txn.id,
        {"txn_no": txn.txn_no, "franchise_id": data.franchise_id, "lines": len(lines)},
    )
    return {"id": txn.id, "txn_no": txn.txn_no, "lines": len(lines)}
