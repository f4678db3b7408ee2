from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..config import settings
from ..db import Database
from ..deps import get_auth_context, get_db, require_role
from ..models import ROLE_ADMIN, AuthContext
from ..pagination import page_result, page_window
from ..repositories.registry import bind_repositories
from ..repositories.stock import BATCH_ROW_SORTS
from ..schemas import DispatchIn, RecallIn
from ..services.recalls import recall_stock
from ..services.stock_transactions import dispatch_to_franchise
from ..validation import SortOrder

router = APIRouter(prefix="/stocks", tags=["stocks"])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _today() -> date:
    return date.today()


def _own_franchise(ctx: AuthContext) -> int:
    if ctx.franchise_id is None:
        raise HTTPException(status_code=400, detail="current user is not associated with any franchise")
    return ctx.franchise_id


@router.get("")
def list_stock(
    franchise_id: Optional[int] = Query(None, gt=0),
    ctx: AuthContext = Depends(get_auth_context),
    db: Database = Depends(get_db),
):
    if ctx.is_admin:
        if franchise_id is None:
            raise HTTPException(status_code=400, detail="franchise_id is required")
        fid = franchise_id
    else:
        fid = _own_franchise(ctx)
    with db.connection() as conn:
        with conn.cursor() as cur:
            repos = bind_repositories(cur)
            if repos.catalog.get_franchise(fid) is None:
                raise HTTPException(status_code=404, detail="franchise not found")
            return {"franchise_id": fid, "stocks": repos.stock.list_franchise_stock(fid)}


@router.get("/rows")
def list_rows(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    search: str = Query(""),
    sort: str = Query("franchise_name"),
    order: SortOrder = Query("asc"),
    ctx: AuthContext = Depends(get_auth_context),
    db: Database = Depends(get_db),
):
    if sort not in BATCH_ROW_SORTS:
        raise HTTPException(status_code=400, detail=f"invalid sort (use one of: {', '.join(BATCH_ROW_SORTS)})")
    fid = None if ctx.is_admin else _own_franchise(ctx)
    limit, offset = page_window(page, per_page)
    with db.connection() as conn:
        with conn.cursor() as cur:
            rows, total = bind_repositories(cur).stock.list_batch_rows(
                franchise_id=fid, search=(search or "").strip(), sort=sort, order=order, limit=limit, offset=offset
            )
            return page_result(rows, total, page, per_page)


@router.post("/recall")
def recall(
    data: RecallIn,
    ctx: AuthContext = Depends(require_role(ROLE_ADMIN)),
    db: Database = Depends(get_db),
):
    with db.connection() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                return recall_stock(
                    bind_repositories(cur),
                    ctx,
                    data,
                    _today(),
                    _utcnow(),
                    settings.recall_window_days,
                )


@router.post("/transactions", status_code=201)
def create_stock_transaction(
    data: DispatchIn,
    ctx: AuthContext = Depends(require_role(ROLE_ADMIN)),
    db: Database = Depends(get_db),
):
    with db.connection() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                return dispatch_to_franchise(bind_repositories(cur), ctx, data, _utcnow())
