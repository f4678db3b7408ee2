from datetime import datetime
from typing import Any, Optional

from ..models import TRANSPORT_DELIVERED, Transport, TransportDetail, from_row


_COLUMNS = """
    id, sale_id, franchise_id, status, dispatched_quantity,
    transporter_name, company_name, transport_fee,
    receipt_number, vehicle_number, tracking_number, notes,
    dispatched_at, delivered_at, stock_posted_at, created_at, updated_at
"""

# Columns an admin may patch directly. Everything else goes through a dedicated method.
PATCHABLE_FIELDS = (
    "transporter_name",
    "company_name",
    "transport_fee",
    "receipt_number",
    "vehicle_number",
    "tracking_number",
    "notes",
    "status",
    "dispatched_quantity",
    "dispatched_at",
    "franchise_id",
)


class TransportRepository:
    def __init__(self, cur):
        self.cur = cur

    def _one(self, sql: str, params) -> Optional[Transport]:
        self.cur.execute(sql, params)
        row = self.cur.fetchone()
        return from_row(Transport, row) if row else None

    def get(self, transport_id: int) -> Optional[Transport]:
        return self._one(f"SELECT {_COLUMNS} FROM transports WHERE id=%s", (transport_id,))

    def get_for_update(self, transport_id: int) -> Optional[Transport]:
        # Row lock: concurrent transitions on the same transport serialize here.
        return self._one(f"SELECT {_COLUMNS} FROM transports WHERE id=%s FOR UPDATE", (transport_id,))

    def get_by_sale_for_update(self, sale_id: int) -> Optional[Transport]:
        return self._one(f"SELECT {_COLUMNS} FROM transports WHERE sale_id=%s FOR UPDATE", (sale_id,))

    def create(self, sale_id: int, franchise_id: int, fields: dict[str, Any]) -> Transport:
        cols = ["sale_id", "franchise_id"]
        params: list = [sale_id, franchise_id]
        for k in PATCHABLE_FIELDS:
            if k in fields and k not in cols:
                cols.append(k)
                params.append(fields[k])
        placeholders = ", ".join(["%s"] * len(cols))
        result = self._one(
            f"""
            INSERT INTO transports ({', '.join(cols)})
            VALUES ({placeholders})
            RETURNING {_COLUMNS}
            """,
            params,
        )
        assert result is not None
        return result

    def update(self, transport_id: int, fields: dict[str, Any]) -> Transport:
        sets = []
        params: list = []
        for k in PATCHABLE_FIELDS:
            if k in fields:
                sets.append(f"{k}=%s")
                params.append(fields[k])
        if not sets:
            current = self.get(transport_id)
            assert current is not None
            return current
        params.append(transport_id)
        result = self._one(
            f"""
            UPDATE transports
            SET {', '.join(sets)}, updated_at=now()
            WHERE id=%s
            RETURNING {_COLUMNS}
            """,
            params,
        )
        assert result is not None
        return result

    def mark_delivered(self, transport_id: int, now: datetime) -> Transport:
        result = self._one(
            f"""
            UPDATE transports
            SET status=%s, delivered_at=%s, updated_at=now()
            WHERE id=%s
            RETURNING {_COLUMNS}
            """,
            (TRANSPORT_DELIVERED, now, transport_id),
        )
        assert result is not None
        return result

    def mark_stock_posted(self, transport_id: int, now: datetime) -> Transport:
        result = self._one(
            f"""
            UPDATE transports
            SET stock_posted_at=%s, updated_at=now()
            WHERE id=%s AND stock_posted_at IS NULL
            RETURNING {_COLUMNS}
            """,
            (now, transport_id),
        )
        if result is None:
            raise RuntimeError(f"transport {transport_id} stock already posted")
        return result

    def list_details(self, transport_id: int) -> list[TransportDetail]:
        self.cur.execute(
            """
            SELECT sale_detail_id, quantity
            FROM transport_details
            WHERE transport_id=%s
            ORDER BY sale_detail_id ASC
            """,
            (transport_id,),
        )
        return [from_row(TransportDetail, r) for r in self.cur.fetchall() or []]

    def replace_details(self, transport_id: int, details: list[TransportDetail]) -> None:
        self.cur.execute("DELETE FROM transport_details WHERE transport_id=%s", (transport_id,))
        if not details:
            return
        self.cur.executemany(
            """
            INSERT INTO transport_details (transport_id, sale_detail_id, quantity)
            VALUES (%s, %s, %s)
            """,
            [(transport_id, d.sale_detail_id, d.quantity) for d in details],
        )

    def list_page(
        self,
        *,
        franchise_id: Optional[int],
        status: Optional[str],
        search: str,
        limit: int,
        offset: int,
    ) -> tuple[list[dict], int]:
        where = ["1=1"]
        params: list = []
        if franchise_id is not None:
            where.append("t.franchise_id=%s")
            params.append(franchise_id)
        if status:
            where.append("t.status=%s")
            params.append(status)
        if search:
            like = f"%{search}%"
            where.append(
                """(
                  COALESCE(t.receipt_number,'') ILIKE %s
                  OR COALESCE(t.tracking_number,'') ILIKE %s
                  OR COALESCE(t.transporter_name,'') ILIKE %s
                  OR COALESCE(t.company_name,'') ILIKE %s
                  OR s.invoice_no ILIKE %s
                  OR f.name ILIKE %s
                )"""
            )
            params.extend([like] * 6)
        base = f"""
            FROM transports t
            JOIN sales s ON s.id = t.sale_id
            JOIN franchises f ON f.id = t.franchise_id
            WHERE {' AND '.join(where)}
        """
        self.cur.execute(f"SELECT COUNT(*) AS n {base}", params)
        total = int(self.cur.fetchone()["n"])
        self.cur.execute(
            f"""
            SELECT t.id, t.sale_id, t.franchise_id, t.status, t.dispatched_quantity,
                   t.transporter_name, t.company_name, t.transport_fee,
                   t.receipt_number, t.vehicle_number, t.tracking_number,
                   t.dispatched_at, t.delivered_at, t.stock_posted_at, t.created_at, t.updated_at,
                   s.invoice_no, s.invoice_date, s.total_amount,
                   f.name AS franchise_name
            {base}
            ORDER BY t.created_at DESC, t.id DESC
            LIMIT %s OFFSET %s
            """,
            params + [limit, offset],
        )
        return list(self.cur.fetchall() or []), total
