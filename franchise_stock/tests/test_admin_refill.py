from datetime import timedelta

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from franchise_stock.app.schemas import RefillIn, RefillItemIn
from franchise_stock.app.services.admin_stock import refill_admin_stock, validate_refill_items
from franchise_stock.tests.fakes import MEDICINE_ID, TODAY


def _item(days, batch="B7", qty=20, medicine_id=MEDICINE_ID):
    return RefillItemIn(medicine_id=medicine_id, quantity=qty, batch_number=batch, expiry_date=TODAY + timedelta(days=days))


@pytest.mark.parametrize("days", [0, 89, 90])
def test_refill_rejects_expiry_within_90_days(repos, admin_ctx, store, days):
    with pytest.raises(HTTPException) as exc_info:
        refill_admin_stock(repos, admin_ctx, [_item(days)], TODAY)
    assert exc_info.value.status_code == 400
    assert "more than 90 days" in exc_info.value.detail
    assert store.admin_balances == {}


def test_refill_accepts_expiry_91_days_out(repos, admin_ctx, store):
    out = refill_admin_stock(repos, admin_ctx, [_item(91)], TODAY)
    assert out["ok"] is True
    assert store.admin_balances[MEDICINE_ID] == 20
    assert store.admin_batches[(MEDICINE_ID, "B7", TODAY + timedelta(days=91))] == 20


def test_one_bad_item_rejects_the_whole_request(repos, admin_ctx, store):
    with pytest.raises(HTTPException):
        refill_admin_stock(repos, admin_ctx, [_item(200, batch="OK1"), _item(30, batch="BAD")], TODAY)
    assert store.admin_balances == {}
    assert store.admin_batches == {}


def test_duplicate_batch_in_one_request_is_rejected(repos, admin_ctx, store):
    with pytest.raises(HTTPException) as exc_info:
        refill_admin_stock(repos, admin_ctx, [_item(120), _item(150)], TODAY)
    assert exc_info.value.status_code == 400
    assert "duplicate batch number" in exc_info.value.detail


def test_same_batch_number_for_different_medicines_is_fine():
    validate_refill_items([_item(120), _item(150, medicine_id=8)], TODAY)


def test_existing_batch_with_other_expiry_conflicts(repos, admin_ctx, store):
    store.admin_batches[(MEDICINE_ID, "B7", TODAY + timedelta(days=300))] = 5
    with pytest.raises(HTTPException) as exc_info:
        refill_admin_stock(repos, admin_ctx, [_item(120)], TODAY)
    assert exc_info.value.status_code == 409
    assert store.admin_balances == {}


def test_refill_tops_up_existing_batch(repos, admin_ctx, store):
    expiry = TODAY + timedelta(days=120)
    store.admin_batches[(MEDICINE_ID, "B7", expiry)] = 5
    store.admin_balances[MEDICINE_ID] = 5

    out = refill_admin_stock(repos, admin_ctx, [_item(120, qty=7)], TODAY)

    assert store.admin_batches[(MEDICINE_ID, "B7", expiry)] == 12
    assert store.admin_balances[MEDICINE_ID] == 12
    assert out["items"][0]["batch_quantity"] == 12
    assert store.audit[-1]["action"] == "admin_stock_refilled"


def test_refill_unknown_medicine_is_404(repos, admin_ctx):
    with pytest.raises(HTTPException) as exc_info:
        refill_admin_stock(repos, admin_ctx, [_item(120, medicine_id=999)], TODAY)
    assert exc_info.value.status_code == 404


def test_refill_requires_admin(repos, franchise_ctx):
    with pytest.raises(HTTPException) as exc_info:
        refill_admin_stock(repos, franchise_ctx, [_item(120)], TODAY)
    assert exc_info.value.status_code == 403


def test_refill_min_shelf_life_is_configurable(repos, admin_ctx, store):
    refill_admin_stock(repos, admin_ctx, [_item(31)], TODAY, min_shelf_life_days=30)
    assert store.admin_balances[MEDICINE_ID] == 20


def test_refill_body_requires_items_and_positive_quantities():
    with pytest.raises(ValidationError):
        RefillIn(items=[])
    with pytest.raises(ValidationError):
        RefillIn.model_validate(
            {"items": [{"medicine_id": 7, "quantity": 0, "batch_number": "B1", "expiry_date": "2027-01-01"}]}
        )
    with pytest.raises(ValidationError):
        RefillIn.model_validate(
            {"items": [{"medicine_id": 7, "quantity": 3, "batch_number": "   ", "expiry_date": "2027-01-01"}]}
        )
