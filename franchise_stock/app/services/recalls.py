from datetime import date, datetime, timedelta
from decimal import Decimal

from fastapi import HTTPException

from ..models import TXN_RECALL_FROM_FRANCHISE, AuthContext, LedgerLine
from .stock_ledger import post_ledger_lines


def recall_stock(repos, ctx: AuthContext, data, today: date, now: datetime, window_days: int = 45) -> dict:
    """
    Pull a near-expiry batch back from a franchise.

    The batch row is locked before the quantity check; the ledger gets one
    negative line and a StockRecall row records who recalled what.
    """
    if not ctx.is_admin:
        raise HTTPException(status_code=403, detail="admin only")
    if data.expiry_date > today + timedelta(days=window_days):
        raise HTTPException(
            status_code=400,
            detail=f"only batches expiring within {window_days} days can be recalled",
        )
    if repos.catalog.get_franchise(data.franchise_id) is None:
        raise HTTPException(status_code=404, detail="franchise not found")
    medicine = repos.catalog.get_medicine(data.medicine_id)
    if medicine is None:
        raise HTTPException(status_code=404, detail="medicine not found")

    batch = repos.stock.get_batch_balance_for_update(
        data.franchise_id, data.medicine_id, data.batch_number, data.expiry_date
    )
    if batch is None:
        raise HTTPException(status_code=404, detail="batch stock not found")
    if batch.quantity < data.quantity:
        raise HTTPException(
            status_code=409,
            detail=f"insufficient batch stock: available {batch.quantity}, requested {data.quantity}",
        )

    rate = Decimal(str(medicine.rate or 0))

    txn = repos.stock.create_transaction(
        TXN_RECALL_FROM_FRANCHISE,
        now.date(),
        data.franchise_id,
        ctx.user_id,
        notes=f"Recall of batch {data.batch_number}",
    )
    post_ledger_lines(
        repos,
        txn.id,
        [
            LedgerLine(
                franchise_id=data.franchise_id,
                medicine_id=data.medicine_id,
                qty_change=-int(data.quantity),
                rate=rate,
                amount=(rate * int(data.quantity)).quantize(Decimal("0.01")),
                batch_number=data.batch_number,
                expiry_date=data.expiry_date,
            )
        ],
    )
    recall = repos.recalls.create(
        stock_transaction_id=txn.id,
        franchise_id=data.franchise_id,
        medicine_id=data.medicine_id,
        batch_number=data.batch_number,
        expiry_date=data.expiry_date,
        quantity=int(data.quantity),
        user_id=ctx.user_id,
    )
    repos.audit.record(
        ctx.user_id,
        "stock_recalled",
        "stock_recall",
        recall.id,
        {"txn_no": txn.txn_no, "batch_number": data.batch_number, "quantity": int(data.quantity)},
    )
    return {
        "ok": True,
        "recall_id": recall.id,
        "txn_no": txn.txn_no,
        "remaining_batch_qty": batch.quantity - int(data.quantity),
    }
