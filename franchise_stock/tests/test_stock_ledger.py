from datetime import timedelta

from franchise_stock.app.models import LedgerLine
from franchise_stock.app.services import stock_ledger
from franchise_stock.app.services.stock_ledger import aggregate_lines, post_ledger_lines
from franchise_stock.tests.fakes import BATCH_EXPIRY, FRANCHISE_ID, MEDICINE_ID, OTHER_FRANCHISE_ID, TODAY


def _line(qty, franchise_id=FRANCHISE_ID, medicine_id=MEDICINE_ID, batch="B1", expiry=BATCH_EXPIRY):
    return LedgerLine(
        franchise_id=franchise_id,
        medicine_id=medicine_id,
        qty_change=qty,
        batch_number=batch,
        expiry_date=expiry,
    )


def test_aggregate_lines_groups_by_balance_and_batch_key():
    other_expiry = TODAY + timedelta(days=200)
    totals, batch_totals = aggregate_lines(
        [_line(5), _line(3), _line(2, expiry=other_expiry), _line(4, batch=None), _line(1, medicine_id=8)]
    )
    assert totals == {(FRANCHISE_ID, MEDICINE_ID): 14, (FRANCHISE_ID, 8): 1}
    assert batch_totals == {
        (FRANCHISE_ID, MEDICINE_ID, "B1", BATCH_EXPIRY): 8,
        (FRANCHISE_ID, MEDICINE_ID, "B1", other_expiry): 2,
        (FRANCHISE_ID, 8, "B1", BATCH_EXPIRY): 1,
    }


def test_balances_track_ledger_sums_across_postings(store, repos):
    postings = [
        (1, [_line(10), _line(4, medicine_id=8, batch=None)]),
        (2, [_line(-3)]),
        (3, [_line(6, franchise_id=OTHER_FRANCHISE_ID)]),
        (4, [_line(2), _line(-2, medicine_id=8, batch=None)]),
    ]
    for txn_id, lines in postings:
        post_ledger_lines(repos, txn_id, lines)
        for key, qty in store.balances.items():
            assert qty == store.ledger_sum(*key)

    assert store.balances == {
        (FRANCHISE_ID, MEDICINE_ID): 9,
        (FRANCHISE_ID, 8): 2,
        (OTHER_FRANCHISE_ID, MEDICINE_ID): 6,
    }
    assert store.batch_balances == {
        (FRANCHISE_ID, MEDICINE_ID, "B1", BATCH_EXPIRY): 9,
        (OTHER_FRANCHISE_ID, MEDICINE_ID, "B1", BATCH_EXPIRY): 6,
    }
    assert store.locks.count("ledger:shared") == len(postings)


def test_empty_posting_writes_nothing(store, repos):
    post_ledger_lines(repos, 1, [])
    assert store.ledger == []
    assert store.locks == []


def test_negative_balance_is_logged(store, repos, monkeypatch):
    events = []
    monkeypatch.setattr(stock_ledger, "json_log", lambda level, event, **fields: events.append((level, event, fields)))

    post_ledger_lines(repos, 1, [_line(2)])
    post_ledger_lines(repos, 2, [_line(-5)])

    assert store.balances[(FRANCHISE_ID, MEDICINE_ID)] == -3
    scopes = sorted(f["scope"] for level, event, f in events if event == "stock.balance.negative")
    assert scopes == ["balance", "batch"]
    assert all(level == "warning" for level, _, _ in events)
