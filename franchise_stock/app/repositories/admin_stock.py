from datetime import date
from typing import Optional

from ..models import AdminBatch, from_row


# Whitelisted ORDER BY expressions for the admin stock table.
ROW_SORTS = {
    "medicine_name": "m.name",
    "brand_name": "b.name",
    "rate": "m.rate",
    "stock": "COALESCE(a.quantity, 0)",
    "medicine_id": "m.id",
}


class AdminStockRepository:
    def __init__(self, cur):
        self.cur = cur

    def get_balances_for_update(self, medicine_ids: list[int]) -> dict[int, int]:
        """Lock the admin rows for `medicine_ids` in id order; missing medicines are absent from the result."""
        if not medicine_ids:
            return {}
        self.cur.execute(
            """
            SELECT medicine_id, quantity
            FROM admin_stock_balances
            WHERE medicine_id = ANY(%s)
            ORDER BY medicine_id ASC
            FOR UPDATE
            """,
            (sorted(medicine_ids),),
        )
        return {int(r["medicine_id"]): int(r["quantity"]) for r in self.cur.fetchall() or []}

    def decrement_balance(self, medicine_id: int, qty: int) -> int:
        self.cur.execute(
            """
            UPDATE admin_stock_balances
            SET quantity = quantity - %s, updated_at = now()
            WHERE medicine_id=%s
            RETURNING quantity
            """,
            (qty, medicine_id),
        )
        return int(self.cur.fetchone()["quantity"])

    def increment_balance(self, medicine_id: int, qty: int) -> int:
        self.cur.execute(
            """
            INSERT INTO admin_stock_balances (medicine_id, quantity)
            VALUES (%s, %s)
            ON CONFLICT (medicine_id) DO UPDATE
            SET quantity = admin_stock_balances.quantity + EXCLUDED.quantity,
                updated_at = now()
            RETURNING quantity
            """,
            (medicine_id, qty),
        )
        return int(self.cur.fetchone()["quantity"])

    def decrement_batch(self, medicine_id: int, batch_number: str, expiry_date: date, qty: int) -> Optional[int]:
        self.cur.execute(
            """
            UPDATE admin_stock_batch_balances
            SET quantity = quantity - %s, updated_at = now()
            WHERE medicine_id=%s AND batch_number=%s AND expiry_date=%s
            RETURNING quantity
            """,
            (qty, medicine_id, batch_number, expiry_date),
        )
        row = self.cur.fetchone()
        return int(row["quantity"]) if row else None

    def find_batch_expiries(self, medicine_id: int, batch_number: str) -> list[date]:
        self.cur.execute(
            """
            SELECT DISTINCT expiry_date
            FROM admin_stock_batch_balances
            WHERE medicine_id=%s AND batch_number=%s
            """,
            (medicine_id, batch_number),
        )
        return [r["expiry_date"] for r in self.cur.fetchall() or []]

    def increment_batch(self, medicine_id: int, batch_number: str, expiry_date: date, qty: int) -> int:
        self.cur.execute(
            """
            INSERT INTO admin_stock_batch_balances (medicine_id, batch_number, expiry_date, quantity)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (medicine_id, batch_number, expiry_date) DO UPDATE
            SET quantity = admin_stock_batch_balances.quantity + EXCLUDED.quantity,
                updated_at = now()
            RETURNING quantity
            """,
            (medicine_id, batch_number, expiry_date, qty),
        )
        return int(self.cur.fetchone()["quantity"])

    def list_rows(self, *, search: str, sort: str, order: str, limit: int, offset: int) -> tuple[list[dict], int]:
        where = ["1=1"]
        params: list = []
        if search:
            like = f"%{search}%"
            clause = "(m.name ILIKE %s OR COALESCE(b.name,'') ILIKE %s"
            params.extend([like, like])
            if search.isdigit():
                clause += " OR m.id = %s"
                params.append(int(search))
            where.append(clause + ")")
        base = f"""
            FROM medicines m
            LEFT JOIN brands b ON b.id = m.brand_id
            LEFT JOIN admin_stock_balances a ON a.medicine_id = m.id
            WHERE {' AND '.join(where)}
        """
        self.cur.execute(f"SELECT COUNT(*) AS n {base}", params)
        total = int(self.cur.fetchone()["n"])
        order_by = ROW_SORTS.get(sort, ROW_SORTS["medicine_name"])
        direction = "DESC" if order == "desc" else "ASC"
        self.cur.execute(
            f"""
            SELECT m.id AS medicine_id, m.name AS medicine_name, b.name AS brand_name,
                   m.rate, m.mrp, COALESCE(a.quantity, 0) AS stock
            {base}
            ORDER BY {order_by} {direction}, m.id ASC
            LIMIT %s OFFSET %s
            """,
            params + [limit, offset],
        )
        return list(self.cur.fetchall() or []), total

    def list_batches(self, medicine_id: int, min_expiry: date) -> list[AdminBatch]:
        self.cur.execute(
            """
            SELECT medicine_id, batch_number, expiry_date, quantity
            FROM admin_stock_batch_balances
            WHERE medicine_id=%s AND quantity > 0 AND expiry_date > %s
            ORDER BY expiry_date ASC, batch_number ASC
            """,
            (medicine_id, min_expiry),
        )
        return [from_row(AdminBatch, r) for r in self.cur.fetchall() or []]
