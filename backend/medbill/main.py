import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from medbill.config import get_settings
from medbill.database import engine, Base, async_session
from medbill.exceptions import AppError
from medbill.logging_config import configure_logging
from medbill.routers import auth as auth_router
from medbill.routers import cie11, companies, dashboard, doctors, imports, patients, prebills, reports, services, users
from medbill.services.auth_service import auth_service
import medbill.models  # noqa: F401  (registers every table on Base.metadata)

configure_logging()
logger = structlog.get_logger(__name__)
settings = get_settings()

_STATUS_CODES = {400: "BAD_REQUEST", 401: "UNAUTHORIZED", 403: "FORBIDDEN", 404: "NOT_FOUND"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create tables then make sure a superadmin exists
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with async_session() as session:
        await auth_service.ensure_bootstrap_admin(session)
        await session.commit()
    logger.info("app.started", env=settings.app_env)
    yield
    # Shutdown
    await engine.dispose()


app = FastAPI(
    title="MedBill Control",
    description="Medical billing and auditing API: patients, doctors, CIE-11, services, pre-bills",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class NoCacheMiddleware(BaseHTTPMiddleware):
    """Middleware to add no-cache headers to prevent browser caching."""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, proxy-revalidate, max-age=0"
        response.headers["Expires"] = "0"
        response.headers["Pragma"] = "no-cache"
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind a request id to the log context and log one line per request."""
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request.completed",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response


app.add_middleware(NoCacheMiddleware)
app.add_middleware(RequestLoggingMiddleware)


def _error(status_code: int, message: str, code: str, errors=None) -> JSONResponse:
    body = {"success": False, "message": message, "code": code}
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return _error(exc.status_code, exc.message, exc.code, exc.errors)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _error(exc.status_code, message, _STATUS_CODES.get(exc.status_code, "HTTP_ERROR"))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err["loc"] if p != "body"), "message": err["msg"]}
        for err in exc.errors()
    ]
    return _error(400, "Invalid request data", "VALIDATION_ERROR", errors)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("request.failed", method=request.method, path=request.url.path)
    return _error(500, "Internal server error", "INTERNAL_ERROR")


app.include_router(auth_router.router, prefix="/api/auth", tags=["Auth"])
app.include_router(users.router, prefix="/api/users", tags=["Users"])
app.include_router(companies.router, prefix="/api/companies", tags=["Companies"])
app.include_router(dashboard.router, prefix="/api/dashboard", tags=["Dashboard"])
app.include_router(patients.router, prefix="/api/patients", tags=["Patients"])
app.include_router(doctors.router, prefix="/api/doctors", tags=["Doctors"])
app.include_router(cie11.router, prefix="/api/cie11", tags=["CIE-11"])
app.include_router(services.router, prefix="/api/services", tags=["Services"])
app.include_router(prebills.router, prefix="/api/prebills", tags=["Pre-bills"])
app.include_router(imports.router, prefix="/api/import", tags=["Import"])
app.include_router(reports.router, prefix="/api/reports", tags=["Reports"])


@app.get("/api/health")
async def health_check():
    return {"success": True, "data": {"status": "healthy", "service": "medbill-control"}}
