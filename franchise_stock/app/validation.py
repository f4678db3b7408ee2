from __future__ import annotations

from typing import Annotated, Literal, Optional

from pydantic import BeforeValidator, StringConstraints


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _blank_to_none(v):
    if v is None:
        return v
    s = str(v).strip()
    return s or None


# Canonical codes mirror the CHECK constraints in `db/migrations/001_init.sql`.
TransportStatus = Annotated[Literal["PENDING", "DISPATCHED", "DELIVERED"], BeforeValidator(_to_upper_str)]
AdminTransportStatus = Annotated[Literal["PENDING", "DISPATCHED"], BeforeValidator(_to_upper_str)]
SortOrder = Annotated[Literal["asc", "desc"], BeforeValidator(_to_lower_str)]


# Batch numbers are printed on packs; keep them trimmed and non-empty.
BatchNumber = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=191)]

OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]
