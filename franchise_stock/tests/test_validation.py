import pytest
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from franchise_stock.app.main import _request_validation_error
from franchise_stock.app.pagination import page_result, page_window
from franchise_stock.app.schemas import RecallIn, TransportCreateIn, TransportDeliverIn, TransportUpdateIn


def test_transport_status_is_normalized():
    assert TransportDeliverIn.model_validate({"status": " delivered "}).status == "DELIVERED"
    assert TransportUpdateIn.model_validate({"status": "pending"}).status == "PENDING"


def test_create_transport_cannot_start_delivered():
    with pytest.raises(ValidationError):
        TransportCreateIn.model_validate({"sale_id": 1, "status": "DELIVERED"})


def test_blank_carrier_fields_become_none():
    data = TransportUpdateIn.model_validate({"receipt_number": "   ", "notes": " handle with care "})
    assert data.receipt_number is None
    assert data.notes == "handle with care"
    assert data.model_fields_set == {"receipt_number", "notes"}


def test_dispatched_details_must_not_be_empty():
    with pytest.raises(ValidationError):
        TransportUpdateIn.model_validate({"dispatched_details": []})


def test_recall_batch_number_is_trimmed():
    data = RecallIn.model_validate(
        {"franchise_id": 3, "medicine_id": 7, "batch_number": " R1 ", "expiry_date": "2026-04-01", "quantity": 2}
    )
    assert data.batch_number == "R1"


def test_request_validation_errors_map_to_400():
    resp = _request_validation_error(None, RequestValidationError([]))
    assert resp.status_code == 400


def test_pagination_clamps_and_counts_pages():
    assert page_window(0, 500) == (100, 0)
    assert page_window(3, 20) == (20, 40)
    out = page_result([{"id": 1}], total=41, page=3, per_page=20)
    assert out["total_pages"] == 3
    assert out["per_page"] == 20
    assert page_result([], total=0, page=1, per_page=10)["total_pages"] == 0
