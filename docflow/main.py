"""
docflow HTTP application.

Every failure leaves as ``{"error": {"code", "message", "details"}}``; service
errors carry their own status, framework errors are wrapped into the same
envelope.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from docflow.config import settings
from docflow.database import close_db, get_db, init_db
from docflow.errors import DocflowError
from docflow.jobs.scheduled import router as jobs_router
from docflow.logging_config import setup_logging
from docflow.middleware.correlation import CorrelationIdMiddleware
from docflow.routes.documents import router as documents_router
from docflow.routes.parties import router as parties_router
from docflow.routes.payments import router as payments_router
from docflow.routes.purchase_orders import router as purchase_orders_router
from docflow.routes.tolerances import router as tolerances_router
from docflow.services.audit_service import audit_recorder
import docflow.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("docflow_starting", env=settings.ENVIRONMENT, version=settings.APP_VERSION)
    await init_db()
    audit_recorder.start()
    yield
    # Drain queued audit records before the pool goes away.
    await audit_recorder.stop()
    await close_db()
    logger.info("docflow_stopped")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan,
)


@app.exception_handler(DocflowError)
async def docflow_error_handler(request: Request, exc: DocflowError) -> JSONResponse:
    log = logger.error if exc.http_status >= 500 else logger.info
    log("request_failed", code=exc.code, message=exc.message, path=request.url.path)
    return JSONResponse(
        status_code=exc.http_status,
        content=jsonable_encoder({"error": exc.to_dict()}),
    )


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        detail = {"error": {"code": "HTTP_ERROR", "message": detail}}
    elif isinstance(detail, dict) and "error" not in detail:
        detail = {"error": detail}
    return JSONResponse(status_code=exc.status_code, content=detail, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=jsonable_encoder({
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": exc.errors(),
            }
        }),
    )


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Company-ID", "X-Request-ID"],
)

app.include_router(documents_router, prefix="/api/v1/documents", tags=["Documents"])
app.include_router(parties_router, prefix="/api/v1/parties", tags=["Parties"])
app.include_router(payments_router, prefix="/api/v1/payments", tags=["Payments"])
app.include_router(purchase_orders_router, prefix="/api/v1/purchase-orders", tags=["Purchase Orders"])
app.include_router(tolerances_router, prefix="/api/v1/delivery-tolerances", tags=["Delivery Tolerances"])
app.include_router(jobs_router, prefix="/internal/jobs", tags=["Internal Jobs"])


@app.get("/health", tags=["System"])
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    """Database reachability and whether the audit recorder is draining."""
    checks = {"audit_recorder": "ok" if audit_recorder.running else "stopped"}
    try:
        await db.execute(text("SELECT 1"))
        checks["db"] = "ok"
    except SQLAlchemyError as e:
        logger.error("health_check_db_failed", error=str(e))
        checks["db"] = "error"

    healthy = checks["db"] == "ok"
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "healthy" if healthy else "unhealthy",
        "version": settings.APP_VERSION,
        "checks": checks,
    }
