from dataclasses import asdict
from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query

from ..config import settings
from ..db import Database
from ..deps import get_db, require_role
from ..models import ROLE_ADMIN, AuthContext
from ..pagination import page_result, page_window
from ..repositories.admin_stock import ROW_SORTS
from ..repositories.registry import bind_repositories
from ..schemas import RefillIn
from ..services.admin_stock import refill_admin_stock
from ..validation import SortOrder

router = APIRouter(prefix="/admin-stocks", tags=["admin-stocks"])


def _today() -> date:
    return date.today()


@router.post("/refill", status_code=201)
def refill(
    data: RefillIn,
    ctx: AuthContext = Depends(require_role(ROLE_ADMIN)),
    db: Database = Depends(get_db),
):
    with db.connection() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                repos = bind_repositories(cur)
                return refill_admin_stock(
                    repos,
                    ctx,
                    data.items,
                    _today(),
                    settings.refill_min_shelf_life_days,
                )


@router.get("/rows")
def list_rows(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    search: str = Query(""),
    sort: str = Query("medicine_name"),
    order: SortOrder = Query("asc"),
    _ctx: AuthContext = Depends(require_role(ROLE_ADMIN)),
    db: Database = Depends(get_db),
):
    if sort not in ROW_SORTS:
        raise HTTPException(status_code=400, detail=f"invalid sort (use one of: {', '.join(ROW_SORTS)})")
    limit, offset = page_window(page, per_page)
    with db.connection() as conn:
        with conn.cursor() as cur:
            rows, total = bind_repositories(cur).admin_stock.list_rows(
                search=(search or "").strip(), sort=sort, order=order, limit=limit, offset=offset
            )
            return page_result(rows, total, page, per_page)


@router.get("/batches")
def list_batches(
    medicine_id: int = Query(..., gt=0),
    _ctx: AuthContext = Depends(require_role(ROLE_ADMIN)),
    db: Database = Depends(get_db),
):
    # Only batches that could still be refilled today are offered for allocation.
    min_expiry = _today() + timedelta(days=settings.refill_min_shelf_life_days)
    with db.connection() as conn:
        with conn.cursor() as cur:
            batches = bind_repositories(cur).admin_stock.list_batches(medicine_id, min_expiry)
            return {"batches": [asdict(b) for b in batches]}
