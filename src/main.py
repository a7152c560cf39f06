"""School billing FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from src.core.company.router import router as company_router
from src.core.config import settings
from src.core.exceptions import AppException
from src.core.exceptions.handlers import (
    app_exception_handler,
    http_exception_handler,
    sqlalchemy_db_error_handler,
    validation_exception_handler,
)
from src.core.logging import setup_logging
from src.modules.backups.router import router as backups_router
from src.modules.billing.router import router as billing_router
from src.modules.invoices.router import router as invoices_router
from src.modules.reports.router import router as reports_router
from src.modules.sepa.router import router as sepa_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    setup_logging()
    logger.info(
        "Starting school billing (env=%s, billing day=%s, test mode=%s)",
        settings.app_env,
        settings.billing_day,
        settings.billing_test_mode,
    )
    yield
    # Shutdown


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title="School Billing",
        description="Recurring invoicing, payroll and SEPA batch exports for a school",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_db_error_handler)

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    # Routers
    app.include_router(company_router, prefix="/api/v1")
    app.include_router(invoices_router, prefix="/api/v1")
    app.include_router(billing_router, prefix="/api/v1")
    app.include_router(sepa_router, prefix="/api/v1")
    app.include_router(reports_router, prefix="/api/v1")
    app.include_router(backups_router, prefix="/api/v1")

    return app


app = create_app()
