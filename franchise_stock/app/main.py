import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from psycopg import errors as pg_errors

from .config import settings
from .db import Database
from .jsonlog import json_log
from .routers.admin_stocks import router as admin_stocks_router
from .routers.recalls import router as recalls_router
from .routers.reports import router as reports_router
from .routers.stocks import router as stocks_router
from .routers.transports import router as transports_router

SERVICE_NAME = "franchise-stock"
STARTED_AT_UTC = datetime.now(timezone.utc)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _error_content(detail: str, exc: Exception) -> dict:
    content = {"detail": detail}
    if settings.is_dev:
        content["error"] = str(exc)
    return content


# Map common DB constraint/cast errors to 4xx so clients get actionable responses
# instead of generic 500s.
def _invalid_text_representation(_req: Request, exc: Exception):
    return JSONResponse(status_code=400, content=_error_content("invalid value", exc))


def _foreign_key_violation(_req: Request, exc: Exception):
    return JSONResponse(status_code=400, content=_error_content("invalid reference", exc))


def _unique_violation(_req: Request, exc: Exception):
    return JSONResponse(status_code=409, content=_error_content("conflict", exc))


def _check_violation(_req: Request, exc: Exception):
    return JSONResponse(status_code=400, content=_error_content("constraint violation", exc))


def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if settings.is_dev and hasattr(exc, "errors"):
        content["errors"] = exc.errors()
    return JSONResponse(status_code=400, content=content)


def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    content = {"detail": "internal error", "request_id": rid}
    if settings.is_dev:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


async def _request_logging(request: Request, call_next):
    # Correlation id + basic structured request logging.
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = request.client.host if request.client else None
    try:
        response = await call_next(request)
    except Exception as exc:
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=int((time.time() - started) * 1000),
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if not path.startswith("/health"):
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            duration_ms=int((time.time() - started) * 1000),
        )
    return response


def _db_health(db: Database):
    try:
        db.ping()
        return True, None
    except Exception as exc:
        return False, str(exc)


def _degraded(request_id: str, err: Optional[str]) -> JSONResponse:
    content = {
        "status": "degraded",
        "env": settings.env,
        "db": "down",
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "request_id": request_id,
    }
    if settings.is_dev:
        content["error"] = err
    return JSONResponse(status_code=503, content=content)


def create_app(database: Optional[Database] = None) -> FastAPI:
    app = FastAPI(title="Franchise Stock API", version=settings.api_version)
    app.state.db = database or Database.from_settings(settings)

    app.add_exception_handler(pg_errors.InvalidTextRepresentation, _invalid_text_representation)
    app.add_exception_handler(pg_errors.ForeignKeyViolation, _foreign_key_violation)
    app.add_exception_handler(pg_errors.UniqueViolation, _unique_violation)
    app.add_exception_handler(pg_errors.CheckViolation, _check_violation)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(Exception, _unhandled_exception)
    app.middleware("http")(_request_logging)

    # Admin and franchise web apps run on a different origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def _startup():
        app.state.db.open()
        ok, err = _db_health(app.state.db)
        if ok:
            json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version)
        else:
            json_log("warning", "startup.db_probe_failed", env=settings.env, error=err)

    @app.on_event("shutdown")
    def _shutdown():
        app.state.db.close()

    @app.get("/health")
    def health(req: Request):
        request_id = _current_request_id(req)
        ok, err = _db_health(app.state.db)
        if not ok:
            return _degraded(request_id, err)
        return {
            "status": "ok",
            "env": settings.env,
            "db": "ok",
            "service": SERVICE_NAME,
            "version": settings.api_version,
            "started_at": STARTED_AT_UTC.isoformat(),
            "request_id": request_id,
        }

    @app.get("/health/live")
    def health_live(req: Request):
        return {"status": "ok", "env": settings.env, "service": SERVICE_NAME, "request_id": _current_request_id(req)}

    @app.get("/health/ready")
    def health_ready(req: Request):
        request_id = _current_request_id(req)
        ok, err = _db_health(app.state.db)
        if not ok:
            return _degraded(request_id, err)
        return {
            "status": "ready",
            "env": settings.env,
            "db": "ok",
            "service": SERVICE_NAME,
            "version": settings.api_version,
            "request_id": request_id,
        }

    @app.get("/meta")
    def meta(req: Request):
        return {
            "service": SERVICE_NAME,
            "env": settings.env,
            "version": settings.api_version,
            "started_at": STARTED_AT_UTC.isoformat(),
            "request_id": _current_request_id(req),
        }

    app.include_router(transports_router)
    app.include_router(admin_stocks_router)
    app.include_router(stocks_router)
    app.include_router(recalls_router)
    app.include_router(reports_router)
    return app


app = create_app()
