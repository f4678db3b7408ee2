from datetime import datetime, timezone
from typing import Optional

from fastapi import Cookie, Depends, Header, HTTPException, Request

from .db import Database
from .models import AuthContext
from .security import hash_session_token


SESSION_COOKIE_NAME = "franchise_session"


def get_db(request: Request) -> Database:
    return request.app.state.db


def _extract_session_token(authorization: Optional[str], cookie_token: Optional[str]) -> str:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    if cookie_token:
        return cookie_token
    raise HTTPException(status_code=401, detail="missing token")


def load_auth_context(cur, token: str, now: datetime) -> AuthContext:
    # A user's own franchise wins; team members inherit the team's franchise.
    cur.execute(
        """
        SELECT s.user_id, s.expires_at, s.is_active AS session_active,
               u.email, u.role, u.is_active AS user_active,
               COALESCE(u.franchise_id, t.franchise_id) AS franchise_id
        FROM auth_sessions s
        JOIN users u ON u.id = s.user_id
        LEFT JOIN teams t ON t.id = u.team_id
        WHERE s.token_hash = %s
        """,
        (hash_session_token(token),),
    )
    row = cur.fetchone()
    if not row or not row["session_active"] or not row["user_active"] or row["expires_at"] < now:
        raise HTTPException(status_code=401, detail="invalid token")
    return AuthContext(
        user_id=row["user_id"],
        role=row["role"],
        franchise_id=row["franchise_id"],
        email=row["email"],
    )


def get_auth_context(
    authorization: Optional[str] = Header(None),
    cookie_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
    db: Database = Depends(get_db),
) -> AuthContext:
    token = _extract_session_token(authorization, cookie_token)
    with db.connection() as conn:
        with conn.cursor() as cur:
            return load_auth_context(cur, token, datetime.now(timezone.utc))


def require_role(*roles: str):
    def _dep(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if ctx.role not in roles:
            raise HTTPException(status_code=403, detail="permission denied")
        return ctx
    return _dep
