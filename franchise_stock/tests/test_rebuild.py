import pytest

from franchise_stock.app.models import LedgerLine
from franchise_stock.app.services.stock_ledger import (
    LedgerChangedError,
    RebuildLockedError,
    find_balance_drift,
    post_ledger_lines,
    rebuild_balances,
)
from franchise_stock.tests.fakes import BATCH_EXPIRY, FRANCHISE_ID, MEDICINE_ID, OTHER_FRANCHISE_ID, FakeStockRepository


def _seed(repos):
    post_ledger_lines(
        repos,
        1,
        [
            LedgerLine(FRANCHISE_ID, MEDICINE_ID, 10, batch_number="B1", expiry_date=BATCH_EXPIRY),
            LedgerLine(FRANCHISE_ID, 8, 4),
            LedgerLine(OTHER_FRANCHISE_ID, MEDICINE_ID, 3, batch_number="B1", expiry_date=BATCH_EXPIRY),
        ],
    )
    # Fully recalled: the ledger nets to zero for franchise 4 / medicine 7.
    post_ledger_lines(
        repos, 2, [LedgerLine(OTHER_FRANCHISE_ID, MEDICINE_ID, -3, batch_number="B1", expiry_date=BATCH_EXPIRY)]
    )


def test_rebuild_is_idempotent(store, repos):
    _seed(repos)
    store.balances[(FRANCHISE_ID, MEDICINE_ID)] = 999

    first = rebuild_balances(repos.stock, batch_size=2)
    after_first = (dict(store.balances), dict(store.batch_balances))
    second = rebuild_balances(repos.stock, batch_size=2)

    assert (dict(store.balances), dict(store.batch_balances)) == after_first
    assert first == second
    assert store.balances == {(FRANCHISE_ID, MEDICINE_ID): 10, (FRANCHISE_ID, 8): 4}
    assert store.batch_balances == {(FRANCHISE_ID, MEDICINE_ID, "B1", BATCH_EXPIRY): 10}


def test_rebuild_skips_zero_rows_and_reports_counts(store, repos):
    _seed(repos)
    result = rebuild_balances(repos.stock)
    assert result.balances == 2
    assert result.batch_balances == 1
    assert result.ledger.rows == 4
    assert result.ledger.total_qty == 14
    assert (OTHER_FRANCHISE_ID, MEDICINE_ID) not in store.balances


def test_rebuild_streams_in_batches(store, repos):
    _seed(repos)
    stock = repos.stock
    rebuild_balances(stock, batch_size=2)
    # 3 balance groups -> 2 + 1, 2 batch groups -> 2.
    assert stock.chunk_sizes == [2, 1, 2]


def test_rebuild_fails_loudly_when_writers_hold_the_lock(store, repos):
    _seed(repos)
    store.ledger_locked_by_writers = True
    balances_before = dict(store.balances)

    with pytest.raises(RebuildLockedError):
        rebuild_balances(repos.stock)

    assert store.balances == balances_before


def test_rebuild_detects_ledger_change(store, repos):
    _seed(repos)

    class RacingStockRepository(FakeStockRepository):
        def delete_balances(self):
            super().delete_balances()
            # A writer that bypassed the ledger lock.
            self.insert_ledger_lines(99, [LedgerLine(FRANCHISE_ID, MEDICINE_ID, 1)])

    with pytest.raises(LedgerChangedError) as exc_info:
        rebuild_balances(RacingStockRepository(store))

    assert exc_info.value.before.rows == 4
    assert exc_info.value.after.rows == 5


def test_rebuild_rejects_non_positive_batch_size(repos):
    with pytest.raises(ValueError):
        rebuild_balances(repos.stock, batch_size=0)


def test_drift_check_reports_mismatches_and_clears_after_rebuild(store, repos):
    _seed(repos)
    store.balances[(FRANCHISE_ID, 8)] = 1
    store.batch_balances[(FRANCHISE_ID, MEDICINE_ID, "B1", BATCH_EXPIRY)] = 12

    drift = find_balance_drift(repos.stock)

    assert {(d["scope"], d["medicine_id"], d["ledger_qty"], d["balance_qty"]) for d in drift} == {
        ("balance", 8, 4, 1),
        ("batch", MEDICINE_ID, 10, 12),
    }

    rebuild_balances(repos.stock)
    assert find_balance_drift(repos.stock) == []
