from fastapi import APIRouter, Depends, HTTPException, Query

from ..db import Database
from ..deps import get_db, require_role
from ..models import ROLE_ADMIN, AuthContext
from ..pagination import page_result, page_window
from ..repositories.recalls import RECALL_SORTS
from ..repositories.registry import bind_repositories
from ..validation import SortOrder

router = APIRouter(prefix="/recalls", tags=["recalls"])


@router.get("")
def list_recalls(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    search: str = Query("", description="Batch, franchise, medicine or transaction no"),
    sort: str = Query("recalled_at"),
    order: SortOrder = Query("desc"),
    _ctx: AuthContext = Depends(require_role(ROLE_ADMIN)),
    db: Database = Depends(get_db),
):
    if sort not in RECALL_SORTS:
        raise HTTPException(status_code=400, detail=f"invalid sort (use one of: {', '.join(RECALL_SORTS)})")
    limit, offset = page_window(page, per_page)
    with db.connection() as conn:
        with conn.cursor() as cur:
            rows, total = bind_repositories(cur).recalls.list_page(
                search=(search or "").strip(), sort=sort, order=order, limit=limit, offset=offset
            )
            return page_result(rows, total, page, per_page)
