from fastapi import APIRouter, Depends, HTTPException, Query

from ..db import Database
from ..deps import get_auth_context, get_db
from ..models import AuthContext
from ..repositories.registry import bind_repositories

router = APIRouter(tags=["reports"])


@router.get("/closing-stock-report")
def closing_stock_report(
    franchise_id: int = Query(..., gt=0),
    medicine_id: int = Query(..., gt=0),
    ctx: AuthContext = Depends(get_auth_context),
    db: Database = Depends(get_db),
):
    if not ctx.is_admin and ctx.franchise_id != franchise_id:
        raise HTTPException(status_code=403, detail="forbidden")
    with db.connection() as conn:
        with conn.cursor() as cur:
            repos = bind_repositories(cur)
            franchise = repos.catalog.get_franchise(franchise_id)
            if franchise is None:
                raise HTTPException(status_code=404, detail="franchise not found")
            medicine = repos.catalog.get_medicine(medicine_id)
            if medicine is None:
                raise HTTPException(status_code=404, detail="medicine not found")
            balance = repos.stock.get_balance(franchise_id, medicine_id)
            # No balance row means nothing was ever posted: report a zero row.
            return {
                "franchise_id": franchise.id,
                "franchise_name": franchise.name,
                "medicine_id": medicine.id,
                "medicine_name": medicine.name,
                "brand_name": medicine.brand_name,
                "rate": medicine.rate,
                "mrp": medicine.mrp,
                "closing_stock": balance.quantity if balance else 0,
                "batches": repos.stock.list_franchise_batches(franchise_id, medicine_id) if balance else [],
            }
