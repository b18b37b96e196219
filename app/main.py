"""FastAPI app for the StructBI forms service."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Tuple

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import HTMLResponse, JSONResponse, Response
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import json
import logging
import time

from structbi.endpoints import build_registry
from structbi.files import UploadedFile
from structbi.function import Function, FunctionRegistry, RequestContext, ResponseKind, envelope
from structbi.messages import current_locale, t
from structbi.metadata import ensure_metadata

from app.attachments import open_storage
from app.auth import SpaceContextMiddleware, get_space_id
from app.db import get_db_ms, get_db_query_log, get_db_stats, open_database, reset_db_ms
from app.pages import render_message_page


logger = logging.getLogger("structbi")
logging.basicConfig(level=logging.INFO)

APP_ENV = os.getenv("APP_ENV", os.getenv("ENV", "dev")).strip().lower() or "dev"
IS_DEV = APP_ENV == "dev"
REQ_SLOW_MS = float(os.getenv("STRUCTBI_REQ_SLOW_MS", "250"))
_FORM_CONTENT_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = envelope(status, message, errors=[{"code": code, "message": message, "path": path, "detail": detail}])
    return JSONResponse(jsonable_encoder(body), status_code=status)


async def _request_params(request: Request) -> Tuple[Dict[str, Any], List[UploadedFile]]:
    """Query string merged with a JSON or form body; uploads are collected separately."""
    params: Dict[str, Any] = dict(request.query_params)
    files: List[UploadedFile] = []
    if request.method == "GET":
        return params, files
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        raw = await request.body()
        if raw.strip():
            body = json.loads(raw)
            if not isinstance(body, dict):
                raise ValueError("JSON body must be an object")
            params.update(body)
    elif content_type.startswith(_FORM_CONTENT_TYPES):
        form = await request.form()
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                data = await value.read()
                files.append(UploadedFile(key, value.filename or "", value.content_type, data))
            else:
                params[key] = value
    return params, files


def _serve(function: Function, ctx: RequestContext) -> Response:
    result = function.handle(ctx)
    if result.kind in (ResponseKind.JSON, ResponseKind.COMPOUND):
        return JSONResponse(jsonable_encoder(result.body), status_code=result.status)
    if result.kind == ResponseKind.HTML:
        return HTMLResponse(render_message_page(result.status, result.body, current_locale()), status_code=result.status)
    try:
        data = ctx.storage.read(result.base_dir, result.path)
    except OSError as exc:
        logger.warning("file_read_failed base=%s path=%s error=%s", result.base_dir, result.path, exc)
        return HTMLResponse(render_message_page(404, t("file.not_found"), current_locale()), status_code=404)
    headers = {"Content-Disposition": f'inline; filename="{result.filename}"'} if result.filename else None
    return Response(content=data, media_type=result.media_type, headers=headers, status_code=result.status)


def _make_endpoint(function: Function, db, storage):
    async def endpoint(request: Request):
        try:
            params, files = await _request_params(request)
        except ValueError as exc:
            return _error_response("INVALID_BODY", "Request body is not valid JSON", detail={"error": str(exc)})
        id_space = getattr(request.state, "id_space", None) or get_space_id()
        ctx = RequestContext(db, id_space, params, files, storage)
        return await run_in_threadpool(_serve, function, ctx)

    handler = getattr(function.strategy, "handler_id", None)
    endpoint.__name__ = handler or f"{function.method.value.lower()}{function.path.replace('/', '_').replace('-', '_')}"
    return endpoint


def create_app(db=None, storage=None, registry: FunctionRegistry | None = None, bootstrap: bool = True) -> FastAPI:
    db = db or open_database()
    storage = storage if storage is not None else open_storage()
    registry = registry or build_registry()
    if bootstrap:
        ensure_metadata(db)

    application = FastAPI(title="StructBI Forms")
    application.state.db = db
    application.state.storage = storage
    application.state.registry = registry

    application.add_middleware(
        SpaceContextMiddleware,
        secret=os.getenv("STRUCTBI_JWT_SECRET"),
        audience=os.getenv("STRUCTBI_JWT_AUDIENCE") or None,
    )

    @application.middleware("http")
    async def timing_middleware(request: Request, call_next):
        reset_db_ms()
        start = time.perf_counter()
        response = await call_next(request)
        total_ms = (time.perf_counter() - start) * 1000
        auth_ms = getattr(request.state, "auth_ms", 0.0)
        db_ms = get_db_ms()
        db_stats = get_db_stats()
        route = request.scope.get("route")
        route_name = getattr(route, "name", None) or "unknown"
        logger.info(
            "%s %s %s route=%s total_ms=%.1f auth_ms=%.1f db_ms=%.1f db_q=%s",
            request.method,
            request.url.path,
            response.status_code,
            route_name,
            total_ms,
            auth_ms,
            db_ms,
            db_stats.get("queries", 0),
        )
        if total_ms >= REQ_SLOW_MS:
            logger.warning(
                "slow_request method=%s path=%s route=%s total_ms=%.1f db_ms=%.1f status=%s queries=%s",
                request.method,
                request.url.path,
                route_name,
                total_ms,
                db_ms,
                response.status_code,
                get_db_query_log(),
            )
        if IS_DEV:
            response.headers["X-Req-MS"] = f"{total_ms:.1f}"
            response.headers["X-DB-MS"] = f"{db_ms:.1f}"
            response.headers["X-Queries"] = str(db_stats.get("queries", 0))
        return response

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error method=%s path=%s", request.method, request.url.path)
        return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": type(exc).__name__}, status=500)

    @application.get("/health")
    async def health() -> dict:
        return {"ok": True}

    for function in registry:
        application.add_api_route(
            function.path,
            _make_endpoint(function, db, storage),
            methods=[function.method.value],
        )
    logger.info("routes_mounted count=%s", len(registry))
    return application


app = create_app()
