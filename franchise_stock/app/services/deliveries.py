"""
Transport lifecycle: PENDING -> DISPATCHED -> DELIVERED.

Admins create and edit transports while they are PENDING; the receiving
franchise confirms delivery, which moves the goods out of the admin pool and
posts them to the franchise ledger exactly once (guarded by `stock_posted_at`).
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import HTTPException

from ..jsonlog import json_log
from ..models import (
    TRANSPORT_DELIVERED,
    TRANSPORT_DISPATCHED,
    TRANSPORT_PENDING,
    TXN_SALE_TO_FRANCHISE,
    AuthContext,
    LedgerLine,
    Sale,
    SaleDetail,
    Transport,
    TransportDetail,
)
from .admin_stock import AdminAllocation, allocate_admin_stock
from .stock_ledger import post_ledger_lines


CARRIER_FIELDS = (
    "transporter_name",
    "company_name",
    "transport_fee",
    "receipt_number",
    "vehicle_number",
    "tracking_number",
    "notes",
)


def _fill_in_order(sale: Sale, qty: int) -> list[TransportDetail]:
    out = []
    left = qty
    for d in sale.details:
        if left <= 0:
            break
        take = min(int(d.quantity), left)
        out.append(TransportDetail(sale_detail_id=d.id, quantity=take))
        left -= take
    return out


def plan_dispatch_details(sale: Sale, dispatched_details, dispatched_quantity: Optional[int]):
    """
    Turn the admin's dispatch input into per-sale-detail quantities.

    Explicit `dispatched_details` win; otherwise `dispatched_quantity` is filled
    across the sale lines in order; otherwise the whole sale is dispatched.
    Returns (details, total_quantity).
    """
    by_id = {d.id: d for d in sale.details}
    if dispatched_details:
        seen: set = set()
        details = []
        for dd in dispatched_details:
            if dd.sale_detail_id in seen:
                raise HTTPException(status_code=400, detail="duplicate sale detail provided")
            seen.add(dd.sale_detail_id)
            sd = by_id.get(dd.sale_detail_id)
            if sd is None:
                raise HTTPException(status_code=400, detail="invalid sale detail for dispatch")
            if dd.quantity > int(sd.quantity):
                raise HTTPException(status_code=400, detail="dispatched quantity exceeds sale detail quantity")
            if dd.quantity > 0:
                details.append(TransportDetail(sale_detail_id=sd.id, quantity=int(dd.quantity)))
        total = sum(d.quantity for d in details)
        if total <= 0:
            raise HTTPException(status_code=400, detail="dispatched quantity must be > 0")
        return details, total

    if dispatched_quantity is not None:
        if dispatched_quantity > sale.total_quantity:
            raise HTTPException(status_code=400, detail="dispatched quantity exceeds sale quantity")
        return _fill_in_order(sale, int(dispatched_quantity)), int(dispatched_quantity)

    if sale.total_quantity <= 0:
        raise HTTPException(status_code=400, detail="dispatched details are required")
    return [TransportDetail(sale_detail_id=d.id, quantity=int(d.quantity)) for d in sale.details], sale.total_quantity


def resolve_dispatch_lines(
    sale: Sale, details: list[TransportDetail], dispatched_quantity: Optional[int]
) -> list[tuple[SaleDetail, int]]:
    """Sale lines and the quantity of each that actually travelled on the transport."""
    if details:
        by_id = {d.id: d for d in sale.details}
        out = []
        for td in details:
            sd = by_id.get(td.sale_detail_id)
            if sd is None:
                raise HTTPException(status_code=400, detail="invalid transport details")
            if td.quantity > 0:
                out.append((sd, int(td.quantity)))
        return out
    if dispatched_quantity:
        by_id = {d.id: d for d in sale.details}
        return [(by_id[td.sale_detail_id], td.quantity) for td in _fill_in_order(sale, int(dispatched_quantity))]
    return [(d, int(d.quantity)) for d in sale.details]


def _line_amount(sd: SaleDetail, qty: int) -> Decimal:
    if qty == int(sd.quantity):
        return Decimal(str(sd.amount))
    return (Decimal(str(sd.rate)) * qty).quantize(Decimal("0.01"))


def build_ledger_lines(franchise_id: int, lines: list[tuple[SaleDetail, int]]) -> list[LedgerLine]:
    return [
        LedgerLine(
            franchise_id=franchise_id,
            medicine_id=sd.medicine_id,
            qty_change=qty,
            rate=Decimal(str(sd.rate)),
            amount=_line_amount(sd, qty),
            batch_number=sd.batch_number or None,
            expiry_date=sd.expiry_date,
        )
        for sd, qty in lines
    ]


def _require_admin(ctx: AuthContext) -> None:
    if not ctx.is_admin:
        raise HTTPException(status_code=403, detail="unauthorized role")


def create_transport(repos, ctx: AuthContext, data, now: datetime) -> Transport:
    _require_admin(ctx)
    sale = repos.sales.get(data.sale_id)
    if sale is None:
        raise HTTPException(status_code=404, detail="sale not found")

    existing = repos.transports.get_by_sale_for_update(sale.id)
    if existing is not None and existing.status == TRANSPORT_DELIVERED:
        raise HTTPException(status_code=409, detail="transport already delivered")
    if existing is not None and existing.status == TRANSPORT_DISPATCHED and data.status == TRANSPORT_PENDING:
        raise HTTPException(status_code=409, detail="transport already dispatched; cannot move back to PENDING")

    details, qty = plan_dispatch_details(sale, data.dispatched_details, data.dispatched_quantity)
    fields = {k: getattr(data, k) for k in CARRIER_FIELDS}
    fields["status"] = data.status
    fields["dispatched_quantity"] = qty
    fields["dispatched_at"] = now if data.status == TRANSPORT_DISPATCHED else None

    if existing is None:
        transport = repos.transports.create(sale.id, sale.franchise_id, fields)
        action = "transport_created"
    else:
        transport = repos.transports.update(existing.id, fields)
        action = "transport_replaced"
    repos.transports.replace_details(transport.id, details)
    repos.audit.record(
        ctx.user_id,
        action,
        "transport",
        transport.id,
        {"sale_id": sale.id, "status": transport.status, "dispatched_quantity": qty},
    )
    return transport


def update_transport(repos, ctx: AuthContext, transport_id: int, data, now: datetime) -> Transport:
    _require_admin(ctx)
    if data.status == TRANSPORT_DELIVERED:
        raise HTTPException(status_code=400, detail="DELIVERED must be set by franchise")

    transport = repos.transports.get_for_update(transport_id)
    if transport is None:
        raise HTTPException(status_code=404, detail="transport not found")
    if transport.status == TRANSPORT_DELIVERED:
        raise HTTPException(status_code=409, detail="transport already delivered")
    if transport.status != TRANSPORT_PENDING:
        raise HTTPException(status_code=409, detail="only PENDING transports can be updated")

    sent = data.model_fields_set
    patch = {k: getattr(data, k) for k in CARRIER_FIELDS if k in sent}
    if "dispatched_details" in sent or "dispatched_quantity" in sent:
        sale = repos.sales.get(transport.sale_id)
        if sale is None:
            raise HTTPException(status_code=404, detail="sale not found")
        details, qty = plan_dispatch_details(sale, data.dispatched_details, data.dispatched_quantity)
        repos.transports.replace_details(transport.id, details)
        patch["dispatched_quantity"] = qty
    if data.status:
        patch["status"] = data.status
        if data.status == TRANSPORT_DISPATCHED:
            patch["dispatched_at"] = now

    updated = repos.transports.update(transport.id, patch)
    repos.audit.record(ctx.user_id, "transport_updated", "transport", transport.id, {"updated": sorted(patch.keys())})
    return updated


def mark_delivered(repos, ctx: AuthContext, transport_id: int, now: datetime) -> Transport:
    """
    Franchise confirmation of a dispatched transport.

    The transport row is locked first, so concurrent confirmations serialize and
    only one of them sees DISPATCHED. Retrying on a DELIVERED transport returns
    it unchanged. Everything else happens in the caller's transaction: a
    shortage in the admin pool or a missing sale leaves no writes behind.
    """
    if ctx.franchise_id is None:
        raise HTTPException(status_code=400, detail="current user is not associated with any franchise")

    transport = repos.transports.get_for_update(transport_id)
    if transport is None:
        raise HTTPException(status_code=404, detail="transport not found")
    if transport.franchise_id != ctx.franchise_id:
        raise HTTPException(status_code=403, detail="forbidden")
    if transport.status == TRANSPORT_DELIVERED:
        return transport
    if transport.status != TRANSPORT_DISPATCHED:
        raise HTTPException(status_code=409, detail="transport must be DISPATCHED before DELIVERED")

    sale = repos.sales.get(transport.sale_id)
    if sale is None:
        raise HTTPException(status_code=404, detail="sale not found")
    lines = resolve_dispatch_lines(sale, repos.transports.list_details(transport.id), transport.dispatched_quantity)
    if not lines:
        raise HTTPException(status_code=400, detail="dispatched details are required")

    txn = None
    if transport.stock_posted_at is None:
        txn = repos.stock.get_transaction_by_sale(sale.id)
        if txn is not None and repos.stock.count_ledger_lines(txn.id) > 0:
            raise HTTPException(
                status_code=409,
                detail=f"stock transaction {txn.txn_no} already has ledger lines for this sale",
            )

    allocate_admin_stock(
        repos,
        [AdminAllocation(sd.medicine_id, qty, sd.batch_number, sd.expiry_date) for sd, qty in lines],
    )
    transport = repos.transports.mark_delivered(transport.id, now)

    posted_lines = 0
    if transport.stock_posted_at is None:
        if txn is None:
            txn = repos.stock.create_transaction(
                TXN_SALE_TO_FRANCHISE,
                sale.invoice_date,
                transport.franchise_id,
                ctx.user_id,
                sale_id=sale.id,
                notes=f"Delivery of invoice {sale.invoice_no}",
            )
        ledger_lines = build_ledger_lines(transport.franchise_id, lines)
        post_ledger_lines(repos, txn.id, ledger_lines)
        posted_lines = len(ledger_lines)
        transport = repos.transports.mark_stock_posted(transport.id, now)

    repos.audit.record(
        ctx.user_id,
        "transport_delivered",
        "transport",
        transport.id,
        {"sale_id": sale.id, "ledger_lines": posted_lines},
    )
    json_log(
        "info",
        "transport.delivered",
        transport_id=transport.id,
        sale_id=sale.id,
        franchise_id=transport.franchise_id,
        ledger_lines=posted_lines,
    )
    return transport
