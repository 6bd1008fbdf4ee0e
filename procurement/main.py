from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse
import structlog

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from procurement.config import settings
from procurement.database import (
    build_engine,
    build_session_factory,
    close_db,
    get_db,
    init_db,
)
from procurement.logging_config import setup_logging
from procurement.middleware.correlation import CorrelationIdMiddleware
from procurement.services.email_service import close_http_client

# Import models so they are registered with Base.metadata
import procurement.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("starting_procurement_ledger", env=settings.ENVIRONMENT)
    engine = build_engine()
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    await init_db(engine)
    yield
    await close_http_client()
    await close_db(engine)


# ---------------------------------------------------------------------------
# Global exception handlers: normalize all errors to structured format:
# {"error": {"code": "...", "message": "..."}}
# ---------------------------------------------------------------------------

async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        detail = {"error": {"code": "HTTP_ERROR", "message": detail}}
    elif isinstance(detail, dict) and "error" not in detail:
        detail = {"error": detail}
    return JSONResponse(status_code=exc.status_code, content=detail, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": jsonable_errors(exc),
            }
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # ctx may carry the raw ValueError from a model validator
    return [
        {k: (str(v) if k == "ctx" else v) for k, v in err.items()}
        for err in exc.errors()
    ]


async def health(response: Response, db: AsyncSession = Depends(get_db)):
    health_status = {"status": "healthy", "version": settings.APP_VERSION, "checks": {}}
    try:
        await db.execute(text("SELECT 1"))
        health_status["checks"]["db"] = "ok"
    except Exception as e:
        logger.error("health_check_db_failed", error=str(e))
        health_status["checks"]["db"] = "error"
        health_status["status"] = "unhealthy"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return health_status


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Request-ID"],
    )

    app.add_api_route("/health", health, methods=["GET"], tags=["System"])

    from procurement.routes.budgets import router as budgets_router
    from procurement.routes.purchase_orders import router as po_router
    from procurement.routes.contracts import router as contracts_router
    from procurement.jobs.scheduled import router as jobs_router

    app.include_router(budgets_router, prefix="/api/v1/budgets", tags=["Budgets"])
    app.include_router(po_router, prefix="/api/v1/purchase-orders", tags=["Purchase Orders"])
    app.include_router(contracts_router, prefix="/api/v1/contracts", tags=["Contracts"])
    app.include_router(jobs_router, prefix="/internal/jobs", tags=["Internal Jobs"])
    return app


app = create_app()
