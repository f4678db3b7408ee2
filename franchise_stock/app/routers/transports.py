from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import ValidationError

from ..db import Database
from ..deps import get_auth_context, get_db, require_role
from ..models import ROLE_ADMIN, TRANSPORT_DELIVERED, AuthContext
from ..pagination import page_result, page_window
from ..repositories.registry import bind_repositories
from ..schemas import TransportCreateIn, TransportDeliverIn, TransportUpdateIn
from ..services.deliveries import create_transport, mark_delivered, update_transport
from ..validation import TransportStatus

router = APIRouter(prefix="/transports", tags=["transports"])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _transport_out(transport, details) -> dict:
    out = asdict(transport)
    out["details"] = [asdict(d) for d in details]
    return out


def _scoped_franchise_id(ctx: AuthContext) -> Optional[int]:
    if ctx.is_admin:
        return None
    if ctx.franchise_id is None:
        raise HTTPException(status_code=400, detail="current user is not associated with any franchise")
    return ctx.franchise_id


@router.get("")
def list_transports(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    status: Optional[TransportStatus] = Query(None),
    search: str = Query("", description="Receipt / tracking no, carrier, invoice no or franchise"),
    ctx: AuthContext = Depends(get_auth_context),
    db: Database = Depends(get_db),
):
    franchise_id = _scoped_franchise_id(ctx)
    limit, offset = page_window(page, per_page)
    with db.connection() as conn:
        with conn.cursor() as cur:
            repos = bind_repositories(cur)
            rows, total = repos.transports.list_page(
                franchise_id=franchise_id,
                status=status,
                search=(search or "").strip(),
                limit=limit,
                offset=offset,
            )
            return page_result(rows, total, page, per_page)


@router.get("/{transport_id}")
def get_transport(
    transport_id: int,
    ctx: AuthContext = Depends(get_auth_context),
    db: Database = Depends(get_db),
):
    franchise_id = _scoped_franchise_id(ctx)
    with db.connection() as conn:
        with conn.cursor() as cur:
            repos = bind_repositories(cur)
            transport = repos.transports.get(transport_id)
            if transport is None:
                raise HTTPException(status_code=404, detail="transport not found")
            if franchise_id is not None and transport.franchise_id != franchise_id:
                raise HTTPException(status_code=403, detail="forbidden")
            out = _transport_out(transport, repos.transports.list_details(transport.id))
            sale = repos.sales.get(transport.sale_id)
            out["sale"] = asdict(sale) if sale else None
            return out


@router.post("", status_code=201)
def post_transport(
    data: TransportCreateIn,
    ctx: AuthContext = Depends(require_role(ROLE_ADMIN)),
    db: Database = Depends(get_db),
):
    with db.connection() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                repos = bind_repositories(cur)
                transport = create_transport(repos, ctx, data, _utcnow())
                return _transport_out(transport, repos.transports.list_details(transport.id))


@router.patch("/{transport_id}")
def patch_transport(
    transport_id: int,
    body: dict = Body(...),
    ctx: AuthContext = Depends(get_auth_context),
    db: Database = Depends(get_db),
):
    """
    Franchise users may only confirm delivery (`{"status": "DELIVERED"}`);
    admins edit carrier fields and move PENDING -> DISPATCHED.
    """
    if ctx.is_franchise:
        try:
            deliver = TransportDeliverIn.model_validate(body)
        except ValidationError:
            raise HTTPException(status_code=400, detail="invalid body")
        if deliver.status != TRANSPORT_DELIVERED:
            raise HTTPException(status_code=400, detail="franchise can only mark as DELIVERED")
        with db.connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    repos = bind_repositories(cur)
                    transport = mark_delivered(repos, ctx, transport_id, _utcnow())
                    return _transport_out(transport, repos.transports.list_details(transport.id))

    if not ctx.is_admin:
        raise HTTPException(status_code=403, detail="unauthorized role")
    try:
        data = TransportUpdateIn.model_validate(body)
    except ValidationError:
        raise HTTPException(status_code=400, detail="invalid body")
    with db.connection() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                repos = bind_repositories(cur)
                transport = update_transport(repos, ctx, transport_id, data, _utcnow())
                return _transport_out(transport, repos.transports.list_details(transport.id))
