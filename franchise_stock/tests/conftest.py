import os
import sys
from datetime import timedelta
from decimal import Decimal

import pytest


# Allow running pytest from either the repo root or from within `franchise_stock/`.
# Tests import `franchise_stock.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from franchise_stock.app.models import (  # noqa: E402
    ROLE_ADMIN,
    ROLE_FRANCHISE,
    AuthContext,
    Franchise,
    Medicine,
    Sale,
    SaleDetail,
    Transport,
)
from franchise_stock.tests.fakes import (  # noqa: E402
    BATCH_EXPIRY,
    FRANCHISE_ID,
    MEDICINE_ID,
    NOW,
    OTHER_FRANCHISE_ID,
    TODAY,
    FakeStore,
    make_repos,
)


@pytest.fixture
def store():
    s = FakeStore()
    s.franchises[FRANCHISE_ID] = Franchise(FRANCHISE_ID, "Andheri West")
    s.franchises[OTHER_FRANCHISE_ID] = Franchise(OTHER_FRANCHISE_ID, "Pune Camp")
    s.medicines[MEDICINE_ID] = Medicine(MEDICINE_ID, "Arnica 30C", rate=Decimal("5.00"))
    s.medicines[8] = Medicine(8, "Nux Vomica 200C", rate=Decimal("7.50"))
    return s


@pytest.fixture
def repos(store):
    return make_repos(store)


@pytest.fixture
def admin_ctx():
    return AuthContext(user_id=1, role=ROLE_ADMIN)


@pytest.fixture
def franchise_ctx():
    return AuthContext(user_id=9, role=ROLE_FRANCHISE, franchise_id=FRANCHISE_ID)


@pytest.fixture
def dispatched_sale(store):
    """Sale S1: one line of medicine 7, batch B1, 10 units; its transport is DISPATCHED."""
    store.sales[1] = Sale(
        id=1,
        invoice_no="INV-0001",
        invoice_date=TODAY,
        franchise_id=FRANCHISE_ID,
        total_amount=Decimal("50.00"),
        details=[
            SaleDetail(
                id=11,
                sale_id=1,
                medicine_id=MEDICINE_ID,
                quantity=10,
                rate=Decimal("5.00"),
                amount=Decimal("50.00"),
                batch_number="B1",
                expiry_date=BATCH_EXPIRY,
            )
        ],
    )
    store.transports[100] = Transport(
        id=100,
        sale_id=1,
        franchise_id=FRANCHISE_ID,
        status="DISPATCHED",
        dispatched_quantity=10,
        dispatched_at=NOW - timedelta(days=1),
    )
    store.admin_balances[MEDICINE_ID] = 15
    store.admin_batches[(MEDICINE_ID, "B1", BATCH_EXPIRY)] = 15
    return store.sales[1]
