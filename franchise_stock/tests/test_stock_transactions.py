from decimal import Decimal

import pytest
from fastapi import HTTPException

from franchise_stock.app.schemas import DispatchIn
from franchise_stock.app.services.stock_transactions import dispatch_to_franchise
from franchise_stock.tests.fakes import BATCH_EXPIRY, FRANCHISE_ID, MEDICINE_ID, NOW


def _body(qty=6, **line):
    return DispatchIn.model_validate(
        {
            "franchise_id": FRANCHISE_ID,
            "notes": "opening stock",
            "items": [
                {
                    "medicine_id": MEDICINE_ID,
                    "quantity": qty,
                    "rate": "5.00",
                    "batch_number": "B1",
                    "expiry_date": BATCH_EXPIRY.isoformat(),
                    **line,
                }
            ],
        }
    )


def test_dispatch_moves_admin_stock_to_franchise(store, repos, admin_ctx):
    store.admin_balances[MEDICINE_ID] = 10
    store.admin_batches[(MEDICINE_ID, "B1", BATCH_EXPIRY)] = 10

    out = dispatch_to_franchise(repos, admin_ctx, _body(), NOW)

    assert out["lines"] == 1
    assert store.admin_balances[MEDICINE_ID] == 4
    assert store.admin_batches[(MEDICINE_ID, "B1", BATCH_EXPIRY)] == 4
    assert store.balances[(FRANCHISE_ID, MEDICINE_ID)] == 6
    assert store.batch_balances[(FRANCHISE_ID, MEDICINE_ID, "B1", BATCH_EXPIRY)] == 6
    txn = store.txns[out["id"]]
    assert txn.txn_type == "DISPATCH_TO_FRANCHISE"
    assert txn.txn_date == NOW.date()
    assert store.ledger[0][1].amount == Decimal("30.00")


def test_dispatch_short_admin_stock_conflicts_without_changes(store, repos, admin_ctx):
    store.admin_balances[MEDICINE_ID] = 2
    before = store.snapshot()
    with pytest.raises(HTTPException) as exc_info:
        dispatch_to_franchise(repos, admin_ctx, _body(), NOW)
    assert exc_info.value.status_code == 409
    assert store.snapshot() == before


def test_dispatch_requires_batch_and_expiry_together(repos, admin_ctx, store):
    store.admin_balances[MEDICINE_ID] = 10
    with pytest.raises(HTTPException) as exc_info:
        dispatch_to_franchise(repos, admin_ctx, _body(expiry_date=None), NOW)
    assert exc_info.value.status_code == 400


def test_dispatch_unknown_franchise_is_404(repos, admin_ctx):
    body = _body()
    body.franchise_id = 999
    with pytest.raises(HTTPException) as exc_info:
        dispatch_to_franchise(repos, admin_ctx, body, NOW)
    assert exc_info.value.status_code == 404
