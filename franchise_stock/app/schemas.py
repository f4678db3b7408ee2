from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from .validation import AdminTransportStatus, BatchNumber, OptionalText, TransportStatus


class DispatchedDetailIn(BaseModel):
    sale_detail_id: int = Field(gt=0)
    quantity: int = Field(ge=0)


class TransportCreateIn(BaseModel):
    sale_id: int = Field(gt=0)
    company_name: OptionalText = None
    status: AdminTransportStatus = "DISPATCHED"
    dispatched_details: Optional[List[DispatchedDetailIn]] = Field(default=None, min_length=1)
    dispatched_quantity: Optional[int] = Field(default=None, gt=0)
    transporter_name: OptionalText = None
    transport_fee: Optional[Decimal] = Field(default=None, ge=0)
    receipt_number: OptionalText = None
    vehicle_number: OptionalText = None
    tracking_number: OptionalText = None
    notes: OptionalText = None


class TransportUpdateIn(BaseModel):
    transporter_name: OptionalText = None
    company_name: OptionalText = None
    dispatched_details: Optional[List[DispatchedDetailIn]] = Field(default=None, min_length=1)
    dispatched_quantity: Optional[int] = Field(default=None, gt=0)
    transport_fee: Optional[Decimal] = Field(default=None, ge=0)
    receipt_number: OptionalText = None
    vehicle_number: OptionalText = None
    tracking_number: OptionalText = None
    notes: OptionalText = None
    status: Optional[TransportStatus] = None


class TransportDeliverIn(BaseModel):
    status: TransportStatus


class RefillItemIn(BaseModel):
    medicine_id: int = Field(gt=0)
    quantity: int = Field(gt=0)
    batch_number: BatchNumber
    expiry_date: date


class RefillIn(BaseModel):
    items: List[RefillItemIn] = Field(min_length=1)


class RecallIn(BaseModel):
    franchise_id: int = Field(gt=0)
    medicine_id: int = Field(gt=0)
    batch_number: BatchNumber
    expiry_date: date
    quantity: int = Field(gt=0)


class DispatchLineIn(BaseModel):
    medicine_id: int = Field(gt=0)
    quantity: int = Field(gt=0)
    rate: Decimal = Field(default=Decimal("0"), ge=0)
    amount: Optional[Decimal] = Field(default=None, ge=0)
    batch_number: OptionalText = None
    expiry_date: Optional[date] = None


class DispatchIn(BaseModel):
    franchise_id: int = Field(gt=0)
    txn_date: Optional[date] = None
    notes: OptionalText = None
    items: List[DispatchLineIn] = Field(min_length=1)
