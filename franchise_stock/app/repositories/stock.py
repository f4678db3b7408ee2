from datetime import date
from typing import Iterator, Optional

from ..models import (
    BalanceRow,
    BatchBalanceRow,
    LedgerFingerprint,
    LedgerLine,
    StockTransaction,
    from_row,
)

# Advisory lock key guarding the ledger: writers hold it shared, the rebuild exclusively.
LEDGER_LOCK_KEY = 7_340_001

_TXN_COLUMNS = "id, txn_type, txn_no, txn_date, franchise_id, created_by_user_id, sale_id, notes"

# Whitelisted ORDER BY expressions for the batch-level stock table.
BATCH_ROW_SORTS = {
    "franchise_name": "f.name",
    "medicine_name": "m.name",
    "batch_number": "sb.batch_number",
    "expiry_date": "sb.expiry_date",
    "rate": "m.rate",
    "stock": "sb.quantity",
    "franchise_id": "sb.franchise_id",
    "medicine_id": "sb.medicine_id",
}


class StockRepository:
    """Ledger, its two balance projections and the stock transactions that own ledger lines."""

    def __init__(self, cur):
        self.cur = cur

    # Locks

    def lock_ledger_shared(self) -> None:
        self.cur.execute("SELECT pg_advisory_xact_lock_shared(%s)", (LEDGER_LOCK_KEY,))

    def try_lock_ledger_exclusive(self) -> bool:
        self.cur.execute("SELECT pg_try_advisory_xact_lock(%s) AS locked", (LEDGER_LOCK_KEY,))
        row = self.cur.fetchone()
        return bool(row and row["locked"])

    # Transactions

    def get_transaction_by_sale(self, sale_id: int) -> Optional[StockTransaction]:
        self.cur.execute(
            f"SELECT {_TXN_COLUMNS} FROM stock_transactions WHERE sale_id=%s FOR UPDATE",
            (sale_id,),
        )
        row = self.cur.fetchone()
        return from_row(StockTransaction, row) if row else None

    def create_transaction(
        self,
        txn_type: str,
        txn_date: date,
        franchise_id: int,
        user_id: int,
        sale_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> StockTransaction:
        self.cur.execute(
            f"""
            INSERT INTO stock_transactions
              (txn_type, txn_no, txn_date, franchise_id, created_by_user_id, sale_id, notes)
            VALUES
              (%s, 'ST' || lpad(nextval('stock_transaction_no_seq')::text, 6, '0'), %s, %s, %s, %s, %s)
            RETURNING {_TXN_COLUMNS}
            """,
            (txn_type, txn_date, franchise_id, user_id, sale_id, notes),
        )
        return from_row(StockTransaction, self.cur.fetchone())

    # Ledger

    def count_ledger_lines(self, transaction_id: int) -> int:
        self.cur.execute(
            "SELECT COUNT(*) AS n FROM stock_ledger WHERE transaction_id=%s",
            (transaction_id,),
        )
        return int(self.cur.fetchone()["n"])

    def insert_ledger_lines(self, transaction_id: int, lines: list[LedgerLine]) -> None:
        if not lines:
            return
        self.cur.executemany(
            """
            INSERT INTO stock_ledger
              (transaction_id, franchise_id, medicine_id, batch_number, expiry_date, qty_change, rate, amount)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            [
                (
                    transaction_id,
                    ln.franchise_id,
                    ln.medicine_id,
                    ln.batch_number,
                    ln.expiry_date,
                    ln.qty_change,
                    ln.rate,
                    ln.amount,
                )
                for ln in lines
            ],
        )

    def ledger_fingerprint(self) -> LedgerFingerprint:
        self.cur.execute(
            """
            SELECT COUNT(*) AS n_rows,
                   COALESCE(SUM(qty_change), 0) AS total_qty,
                   COALESCE(MAX(id), 0) AS max_id
            FROM stock_ledger
            """
        )
        row = self.cur.fetchone()
        return LedgerFingerprint(rows=int(row["n_rows"]), total_qty=int(row["total_qty"]), max_id=int(row["max_id"]))

    # Balance projections (ledger-append path and rebuild only)

    def increment_balance(self, franchise_id: int, medicine_id: int, qty: int) -> int:
        self.cur.execute(
            """
            INSERT INTO stock_balances (franchise_id, medicine_id, quantity)
            VALUES (%s, %s, %s)
            ON CONFLICT (franchise_id, medicine_id) DO UPDATE
            SET quantity = stock_balances.quantity + EXCLUDED.quantity,
                updated_at = now()
            RETURNING quantity
            """,
            (franchise_id, medicine_id, qty),
        )
        return int(self.cur.fetchone()["quantity"])

    def increment_batch_balance(
        self, franchise_id: int, medicine_id: int, batch_number: str, expiry_date: date, qty: int
    ) -> int:
        self.cur.execute(
            """
            INSERT INTO stock_batch_balances (franchise_id, medicine_id, batch_number, expiry_date, quantity)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (franchise_id, medicine_id, batch_number, expiry_date) DO UPDATE
            SET quantity = stock_batch_balances.quantity + EXCLUDED.quantity,
                updated_at = now()
            RETURNING quantity
            """,
            (franchise_id, medicine_id, batch_number, expiry_date, qty),
        )
        return int(self.cur.fetchone()["quantity"])

    def get_balance(self, franchise_id: int, medicine_id: int) -> Optional[BalanceRow]:
        self.cur.execute(
            """
            SELECT franchise_id, medicine_id, quantity
            FROM stock_balances
            WHERE franchise_id=%s AND medicine_id=%s
            """,
            (franchise_id, medicine_id),
        )
        row = self.cur.fetchone()
        return from_row(BalanceRow, row) if row else None

    def get_batch_balance_for_update(
        self, franchise_id: int, medicine_id: int, batch_number: str, expiry_date: date
    ) -> Optional[BatchBalanceRow]:
        self.cur.execute(
            """
            SELECT franchise_id, medicine_id, batch_number, expiry_date, quantity
            FROM stock_batch_balances
            WHERE franchise_id=%s AND medicine_id=%s AND batch_number=%s AND expiry_date=%s
            FOR UPDATE
            """,
            (franchise_id, medicine_id, batch_number, expiry_date),
        )
        row = self.cur.fetchone()
        return from_row(BatchBalanceRow, row) if row else None

    def delete_balances(self) -> None:
        self.cur.execute("DELETE FROM stock_batch_balances")
        self.cur.execute("DELETE FROM stock_balances")

    def _iter_grouped(self, name: str, sql: str, batch_size: int) -> Iterator[list[dict]]:
        # Named cursor keeps the grouped result on the server; we page through it.
        with self.cur.connection.cursor(name=name) as scur:
            scur.execute(sql)
            while True:
                chunk = scur.fetchmany(batch_size)
                if not chunk:
                    break
                yield chunk

    def iter_balance_totals(self, batch_size: int) -> Iterator[list[BalanceRow]]:
        sql = """
            SELECT franchise_id, medicine_id, SUM(qty_change) AS quantity
            FROM stock_ledger
            GROUP BY franchise_id, medicine_id
            ORDER BY franchise_id, medicine_id
        """
        for chunk in self._iter_grouped("stock_balance_totals", sql, batch_size):
            yield [BalanceRow(r["franchise_id"], r["medicine_id"], int(r["quantity"])) for r in chunk]

    def iter_batch_balance_totals(self, batch_size: int) -> Iterator[list[BatchBalanceRow]]:
        sql = """
            SELECT franchise_id, medicine_id, batch_number, expiry_date, SUM(qty_change) AS quantity
            FROM stock_ledger
            WHERE batch_number IS NOT NULL AND batch_number <> '' AND expiry_date IS NOT NULL
            GROUP BY franchise_id, medicine_id, batch_number, expiry_date
            ORDER BY franchise_id, medicine_id, batch_number, expiry_date
        """
        for chunk in self._iter_grouped("stock_batch_balance_totals", sql, batch_size):
            yield [
                BatchBalanceRow(
                    r["franchise_id"], r["medicine_id"], r["batch_number"], r["expiry_date"], int(r["quantity"])
                )
                for r in chunk
            ]

    def insert_balances(self, rows: list[BalanceRow]) -> None:
        if not rows:
            return
        self.cur.executemany(
            "INSERT INTO stock_balances (franchise_id, medicine_id, quantity) VALUES (%s, %s, %s)",
            [(r.franchise_id, r.medicine_id, r.quantity) for r in rows],
        )

    def insert_batch_balances(self, rows: list[BatchBalanceRow]) -> None:
        if not rows:
            return
        self.cur.executemany(
            """
            INSERT INTO stock_batch_balances (franchise_id, medicine_id, batch_number, expiry_date, quantity)
            VALUES (%s, %s, %s, %s, %s)
            """,
            [(r.franchise_id, r.medicine_id, r.batch_number, r.expiry_date, r.quantity) for r in rows],
        )

    def balance_drift(self, limit: int) -> list[dict]:
        self.cur.execute(
            """
            WITH l AS (
              SELECT franchise_id, medicine_id, SUM(qty_change) AS ledger_qty
              FROM stock_ledger
              GROUP BY franchise_id, medicine_id
            )
            SELECT COALESCE(l.franchise_id, b.franchise_id) AS franchise_id,
                   COALESCE(l.medicine_id, b.medicine_id) AS medicine_id,
                   COALESCE(l.ledger_qty, 0) AS ledger_qty,
                   COALESCE(b.quantity, 0) AS balance_qty
            FROM l
            FULL OUTER JOIN stock_balances b
              ON b.franchise_id = l.franchise_id AND b.medicine_id = l.medicine_id
            WHERE COALESCE(l.ledger_qty, 0) <> COALESCE(b.quantity, 0)
            ORDER BY 1, 2
            LIMIT %s
            """,
            (limit,),
        )
        return list(self.cur.fetchall() or [])

    def batch_balance_drift(self, limit: int) -> list[dict]:
        self.cur.execute(
            """
            WITH l AS (
              SELECT franchise_id, medicine_id, batch_number, expiry_date, SUM(qty_change) AS ledger_qty
              FROM stock_ledger
              WHERE batch_number IS NOT NULL AND batch_number <> '' AND expiry_date IS NOT NULL
              GROUP BY franchise_id, medicine_id, batch_number, expiry_date
            )
            SELECT COALESCE(l.franchise_id, b.franchise_id) AS franchise_id,
                   COALESCE(l.medicine_id, b.medicine_id) AS medicine_id,
                   COALESCE(l.batch_number, b.batch_number) AS batch_number,
                   COALESCE(l.expiry_date, b.expiry_date) AS expiry_date,
                   COALESCE(l.ledger_qty, 0) AS ledger_qty,
                   COALESCE(b.quantity, 0) AS balance_qty
            FROM l
            FULL OUTER JOIN stock_batch_balances b
              ON b.franchise_id = l.franchise_id
             AND b.medicine_id = l.medicine_id
             AND b.batch_number = l.batch_number
             AND b.expiry_date = l.expiry_date
            WHERE COALESCE(l.ledger_qty, 0) <> COALESCE(b.quantity, 0)
            ORDER BY 1, 2, 3, 4
            LIMIT %s
            """,
            (limit,),
        )
        return list(self.cur.fetchall() or [])

    # Read projections

    def list_franchise_stock(self, franchise_id: int) -> list[dict]:
        self.cur.execute(
            """
            SELECT sb.medicine_id, m.name AS medicine_name, b.name AS brand_name,
                   m.rate, m.mrp, sb.quantity, sb.updated_at
            FROM stock_balances sb
            JOIN medicines m ON m.id = sb.medicine_id
            LEFT JOIN brands b ON b.id = m.brand_id
            WHERE sb.franchise_id=%s AND sb.quantity <> 0
            ORDER BY m.name ASC, sb.medicine_id ASC
            """,
            (franchise_id,),
        )
        return list(self.cur.fetchall() or [])

    def list_batch_rows(
        self, *, franchise_id: Optional[int], search: str, sort: str, order: str, limit: int, offset: int
    ) -> tuple[list[dict], int]:
        where = ["sb.quantity <> 0"]
        params: list = []
        if franchise_id is not None:
            where.append("sb.franchise_id = %s")
            params.append(franchise_id)
        if search:
            like = f"%{search}%"
            clause = "(f.name ILIKE %s OR m.name ILIKE %s OR sb.batch_number ILIKE %s"
            params.extend([like, like, like])
            if search.isdigit():
                clause += " OR sb.franchise_id = %s OR sb.medicine_id = %s"
                params.extend([int(search), int(search)])
            where.append(clause + ")")
        base = f"""
            FROM stock_batch_balances sb
            JOIN franchises f ON f.id = sb.franchise_id
            JOIN medicines m ON m.id = sb.medicine_id
            WHERE {' AND '.join(where)}
        """
        self.cur.execute(f"SELECT COUNT(*) AS n {base}", params)
        total = int(self.cur.fetchone()["n"])
        order_by = BATCH_ROW_SORTS.get(sort, BATCH_ROW_SORTS["franchise_name"])
        direction = "DESC" if order == "desc" else "ASC"
        self.cur.execute(
            f"""
            SELECT sb.franchise_id, f.name AS franchise_name,
                   sb.medicine_id, m.name AS medicine_name,
                   sb.batch_number, sb.expiry_date, m.rate, sb.quantity AS stock
            {base}
            ORDER BY {order_by} {direction}, sb.franchise_id, sb.medicine_id, sb.batch_number, sb.expiry_date
            LIMIT %s OFFSET %s
            """,
            params + [limit, offset],
        )
        return list(self.cur.fetchall() or []), total

    def list_franchise_batches(self, franchise_id: int, medicine_id: int) -> list[dict]:
        self.cur.execute(
            """
            SELECT batch_number, expiry_date, quantity
            FROM stock_batch_balances
            WHERE franchise_id=%s AND medicine_id=%s AND quantity <> 0
            ORDER BY expiry_date ASC, batch_number ASC
            """,
            (franchise_id, medicine_id),
        )
        return list(self.cur.fetchall() or [])
