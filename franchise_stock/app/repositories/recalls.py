from datetime import date

from ..models import StockRecall, from_row


RECALL_SORTS = {
    "recalled_at": "r.recalled_at",
    "expiry_date": "r.expiry_date",
    "quantity": "r.quantity",
    "batch_number": "r.batch_number",
    "franchise_name": "f.name",
    "medicine_name": "m.name",
    "txn_no": "st.txn_no",
}


class RecallRepository:
    def __init__(self, cur):
        self.cur = cur

    def create(
        self,
        *,
        stock_transaction_id: int,
        franchise_id: int,
        medicine_id: int,
        batch_number: str,
        expiry_date: date,
        quantity: int,
        user_id: int,
    ) -> StockRecall:
        self.cur.execute(
            """
            INSERT INTO stock_recalls
              (stock_transaction_id, franchise_id, medicine_id, batch_number, expiry_date, quantity, created_by_user_id)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING id, stock_transaction_id, franchise_id, medicine_id, batch_number, expiry_date,
                      quantity, created_by_user_id, recalled_at
            """,
            (stock_transaction_id, franchise_id, medicine_id, batch_number, expiry_date, quantity, user_id),
        )
        return from_row(StockRecall, self.cur.fetchone())

    def list_page(self, *, search: str, sort: str, order: str, limit: int, offset: int) -> tuple[list[dict], int]:
        where = ["1=1"]
        params: list = []
        if search:
            like = f"%{search}%"
            where.append(
                "(r.batch_number ILIKE %s OR f.name ILIKE %s OR m.name ILIKE %s OR st.txn_no ILIKE %s)"
            )
            params.extend([like] * 4)
        base = f"""
            FROM stock_recalls r
            JOIN franchises f ON f.id = r.franchise_id
            JOIN medicines m ON m.id = r.medicine_id
            JOIN stock_transactions st ON st.id = r.stock_transaction_id
            WHERE {' AND '.join(where)}
        """
        self.cur.execute(f"SELECT COUNT(*) AS n {base}", params)
        total = int(self.cur.fetchone()["n"])
        order_by = RECALL_SORTS.get(sort, RECALL_SORTS["recalled_at"])
        direction = "ASC" if order == "asc" else "DESC"
        self.cur.execute(
            f"""
            SELECT r.id, r.franchise_id, f.name AS franchise_name,
                   r.medicine_id, m.name AS medicine_name,
                   r.batch_number, r.expiry_date, r.quantity, r.recalled_at,
                   st.id AS stock_transaction_id, st.txn_no
            {base}
            ORDER BY {order_by} {direction}, r.id DESC
            LIMIT %s OFFSET %s
            """,
            params + [limit, offset],
        )
        return list(self.cur.fetchall() or []), total
