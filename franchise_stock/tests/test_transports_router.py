import pytest
from fastapi import HTTPException

from franchise_stock.app.models import AuthContext
from franchise_stock.app.routers import transports as transports_router
from franchise_stock.app.schemas import TransportCreateIn
from franchise_stock.tests.fakes import FRANCHISE_ID, MEDICINE_ID, NOW, OTHER_FRANCHISE_ID, FakeDatabase


@pytest.fixture
def db(monkeypatch, repos):
    monkeypatch.setattr(transports_router, "bind_repositories", lambda _cur: repos)
    monkeypatch.setattr(transports_router, "_utcnow", lambda: NOW)
    return FakeDatabase()


def test_franchise_patch_marks_delivered(store, db, franchise_ctx, dispatched_sale):
    out = transports_router.patch_transport(100, body={"status": "delivered"}, ctx=franchise_ctx, db=db)

    assert out["status"] == "DELIVERED"
    assert out["stock_posted_at"] == NOW
    assert out["details"] == []
    assert store.admin_balances[MEDICINE_ID] == 5
    assert db.conn.transactions == 1


def test_franchise_patch_only_allows_delivered(db, franchise_ctx, dispatched_sale):
    with pytest.raises(HTTPException) as exc_info:
        transports_router.patch_transport(100, body={"status": "DISPATCHED"}, ctx=franchise_ctx, db=db)
    assert exc_info.value.status_code == 400
    assert db.conn.transactions == 0


def test_franchise_patch_with_bad_body_is_400(db, franchise_ctx, dispatched_sale):
    with pytest.raises(HTTPException) as exc_info:
        transports_router.patch_transport(100, body={"status": "LOST"}, ctx=franchise_ctx, db=db)
    assert exc_info.value.status_code == 400


def test_admin_patch_cannot_deliver(db, admin_ctx, dispatched_sale):
    with pytest.raises(HTTPException) as exc_info:
        transports_router.patch_transport(100, body={"status": "DELIVERED"}, ctx=admin_ctx, db=db)
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "DELIVERED must be set by franchise"


def test_admin_patch_rejects_bad_fields(db, admin_ctx, dispatched_sale):
    with pytest.raises(HTTPException) as exc_info:
        transports_router.patch_transport(100, body={"transport_fee": -1}, ctx=admin_ctx, db=db)
    assert exc_info.value.status_code == 400


def test_unknown_role_is_forbidden(db, dispatched_sale):
    ctx = AuthContext(user_id=5, role="AUDITOR")
    with pytest.raises(HTTPException) as exc_info:
        transports_router.patch_transport(100, body={"notes": "x"}, ctx=ctx, db=db)
    assert exc_info.value.status_code == 403


def test_post_transport_returns_plan(store, db, admin_ctx, dispatched_sale):
    del store.transports[100]
    out = transports_router.post_transport(TransportCreateIn(sale_id=1, dispatched_quantity=4), ctx=admin_ctx, db=db)
    assert out["status"] == "DISPATCHED"
    assert out["details"] == [{"sale_detail_id": 11, "quantity": 4}]


def test_get_transport_scoped_to_franchise(db, dispatched_sale):
    own = AuthContext(user_id=9, role="FRANCHISE", franchise_id=FRANCHISE_ID)
    other = AuthContext(user_id=10, role="FRANCHISE", franchise_id=OTHER_FRANCHISE_ID)

    out = transports_router.get_transport(100, ctx=own, db=db)
    assert out["sale"]["invoice_no"] == "INV-0001"

    with pytest.raises(HTTPException) as exc_info:
        transports_router.get_transport(100, ctx=other, db=db)
    assert exc_info.value.status_code == 403


def test_get_missing_transport_is_404(db, admin_ctx):
    with pytest.raises(HTTPException) as exc_info:
        transports_router.get_transport(1, ctx=admin_ctx, db=db)
    assert exc_info.value.status_code == 404
