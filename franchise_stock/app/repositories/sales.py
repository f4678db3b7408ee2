from typing import Optional

from ..models import Franchise, Medicine, Sale, SaleDetail, from_row


class SaleRepository:
    """Read model over sales. Sales are immutable once a transport exists."""

    def __init__(self, cur):
        self.cur = cur

    def get(self, sale_id: int) -> Optional[Sale]:
        self.cur.execute(
            """
            SELECT id, invoice_no, invoice_date, franchise_id, total_amount
            FROM sales
            WHERE id=%s
            """,
            (sale_id,),
        )
        row = self.cur.fetchone()
        if not row:
            return None
        self.cur.execute(
            """
            SELECT id, sale_id, medicine_id, batch_number, expiry_date, quantity, rate, amount
            FROM sale_details
            WHERE sale_id=%s
            ORDER BY id ASC
            """,
            (sale_id,),
        )
        details = [from_row(SaleDetail, r) for r in self.cur.fetchall() or []]
        return from_row(Sale, row, details=details)


class CatalogRepository:
    def __init__(self, cur):
        self.cur = cur

    def get_medicine(self, medicine_id: int) -> Optional[Medicine]:
        self.cur.execute(
            """
            SELECT m.id, m.name, m.rate, m.mrp, b.name AS brand_name
            FROM medicines m
            LEFT JOIN brands b ON b.id = m.brand_id
            WHERE m.id=%s
            """,
            (medicine_id,),
        )
        row = self.cur.fetchone()
        return from_row(Medicine, row) if row else None

    def get_franchise(self, franchise_id: int) -> Optional[Franchise]:
        self.cur.execute("SELECT id, name FROM franchises WHERE id=%s", (franchise_id,))
        row = self.cur.fetchone()
        return from_row(Franchise, row) if row else None
