from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping, Optional, Tuple, Type, TypeVar


ROLE_ADMIN = "ADMIN"
ROLE_FRANCHISE = "FRANCHISE"

TRANSPORT_PENDING = "PENDING"
TRANSPORT_DISPATCHED = "DISPATCHED"
TRANSPORT_DELIVERED = "DELIVERED"

TXN_SALE_TO_FRANCHISE = "SALE_TO_FRANCHISE"
TXN_DISPATCH_TO_FRANCHISE = "DISPATCH_TO_FRANCHISE"
TXN_RECALL_FROM_FRANCHISE = "RECALL_FROM_FRANCHISE"


T = TypeVar("T")


def from_row(cls: Type[T], row: Mapping[str, Any], **extra: Any) -> T:
    """Build a dataclass from a dict row, ignoring columns the dataclass doesn't declare."""
    names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    data = {k: v for k, v in row.items() if k in names}
    data.update(extra)
    return cls(**data)


@dataclass(frozen=True)
class AuthContext:
    user_id: int
    role: str
    franchise_id: Optional[int] = None
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_franchise(self) -> bool:
        return self.role == ROLE_FRANCHISE


@dataclass
class SaleDetail:
    id: int
    sale_id: int
    medicine_id: int
    quantity: int
    rate: Decimal
    amount: Decimal
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None


@dataclass
class Sale:
    id: int
    invoice_no: str
    invoice_date: date
    franchise_id: int
    total_amount: Decimal
    details: list[SaleDetail] = field(default_factory=list)

    @property
    def total_quantity(self) -> int:
        return sum(int(d.quantity or 0) for d in self.details)


@dataclass
class Transport:
    id: int
    sale_id: int
    franchise_id: int
    status: str
    dispatched_quantity: Optional[int] = None
    transporter_name: Optional[str] = None
    company_name: Optional[str] = None
    transport_fee: Optional[Decimal] = None
    receipt_number: Optional[str] = None
    vehicle_number: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    dispatched_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    stock_posted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class TransportDetail:
    sale_detail_id: int
    quantity: int


@dataclass
class StockTransaction:
    id: int
    txn_type: str
    txn_no: str
    txn_date: date
    franchise_id: int
    created_by_user_id: int
    sale_id: Optional[int] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class LedgerLine:
    franchise_id: int
    medicine_id: int
    qty_change: int
    rate: Decimal = Decimal("0")
    amount: Decimal = Decimal("0")
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None

    @property
    def batch_key(self) -> Optional[Tuple[int, int, str, date]]:
        # Batch balances are only kept when both batch and expiry are known.
        if not self.batch_number or not self.expiry_date:
            return None
        return (self.franchise_id, self.medicine_id, self.batch_number, self.expiry_date)


@dataclass(frozen=True)
class BalanceRow:
    franchise_id: int
    medicine_id: int
    quantity: int


@dataclass(frozen=True)
class BatchBalanceRow:
    franchise_id: int
    medicine_id: int
    batch_number: str
    expiry_date: date
    quantity: int


@dataclass(frozen=True)
class LedgerFingerprint:
    rows: int
    total_qty: int
    max_id: int


@dataclass
class AdminBatch:
    medicine_id: int
    batch_number: str
    expiry_date: date
    quantity: int


@dataclass
class StockRecall:
    id: int
    stock_transaction_id: int
    franchise_id: int
    medicine_id: int
    batch_number: str
    expiry_date: date
    quantity: int
    created_by_user_id: int
    recalled_at: Optional[datetime] = None


@dataclass
class Medicine:
    id: int
    name: str
    rate: Decimal = Decimal("0")
    mrp: Optional[Decimal] = None
    brand_name: Optional[str] = None


@dataclass
class Franchise:
    id: int
    name: str
