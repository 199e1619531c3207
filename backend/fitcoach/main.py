# fitcoach/main.py
import logging
import traceback
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fitcoach.config import settings
from fitcoach.core.bootstrap import ensure_default_admin
from fitcoach.core.db import init_db, close_db
from fitcoach.core.errors import AppError
from fitcoach.core.logging import setup_logging
from fitcoach.services.audit import RequestContext, audit_sink

from fitcoach.api.v1.routers import admin, appointments, auth, trainer

logger = logging.getLogger("fitcoach")

app = FastAPI(title=settings.APP_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "Retry-After"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a request id (client-supplied or generated) and echo it back."""
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ---------- error rendering: {success: false, error, code, details} ----------
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("[%s] %s %s -> %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Validation failed", "code": "VALIDATION_ERROR",
                 "details": {"errors": errors}},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail), "code": code},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    audit_sink.error(
        f"Unhandled error: {type(exc).__name__}",
        RequestContext.from_request(request),
        {"path": request.url.path, "method": request.method},
    )
    body = {"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"}
    if settings.is_dev:
        body["details"] = {"stack": traceback.format_exception(type(exc), exc, exc.__traceback__)}
    return JSONResponse(status_code=500, content=body)


@app.on_event("startup")
async def on_startup():
    setup_logging()
    if not settings.server_secret:
        logger.error("[config] JWT_SECRET is not set; every login and authenticated request will fail with 500")
    await init_db()
    # Ensure there's a default admin account on first run
    await ensure_default_admin()


@app.on_event("shutdown")
async def on_shutdown():
    await audit_sink.drain()
    await close_db()


# REST
app.include_router(auth.router, prefix=settings.api_prefix)
app.include_router(appointments.router, prefix=settings.api_prefix)
app.include_router(trainer.router, prefix=settings.api_prefix)
app.include_router(admin.router, prefix=settings.api_prefix)


@app.get("/healthz")
def healthz():
    return {"ok": True}
