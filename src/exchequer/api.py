"""HTTP API: payments, expenses, record queries, webhooks and health."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, configure_logging
from .connectors import build_connector
from .connectors.base import ConnectorBase
from .database import DatabaseManager
from .dates import utc_timestamp
from .dependencies import get_connector, get_db, get_settings
from .errors import ExchequerError, ValidationError, field_errors
from .reconciliation.api import router as webhook_router
from .schemas import (
    CreatePaymentIntentBody,
    SubmitExpenseBody,
    ReimbursementBody,
    PaymentHistory,
)
from .security import add_security_headers, create_limiter, rate_limit_exceeded_handler
from .services import PaymentService, ExpenseService

logger = logging.getLogger(__name__)

FEATURES = [
    "Payment Processing",
    "Expense Management",
    "Reimbursements",
    "Donations",
    "Webhook Reconciliation",
]


async def exchequer_error_handler(request: Request, exc: ExchequerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = ValidationError(field_errors(exc.errors()))
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # A known path with the wrong method is still an unmatched route
    if exc.status_code in (404, 405):
        return JSONResponse(status_code=404, content={"error": "Endpoint not found"})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    settings: Settings = request.app.state.settings
    message = "Something went wrong" if settings.is_production else str(exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error", "message": message})


def create_app(
    settings: Optional[Settings] = None,
    connector: Optional[ConnectorBase] = None,
    database: Optional[DatabaseManager] = None,
) -> FastAPI:
    """Build the application with its dependencies.

    Args:
        settings: Settings; read from the environment when omitted.
        connector: Provider connector; built from ``settings`` when omitted.
        database: Database manager; built from ``settings.database_url``
            when omitted. Initialized on start-up, shut down on exit.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or Settings.from_env()
    connector = connector or build_connector(settings)
    database = database or DatabaseManager(settings.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await database.initialize()
        logger.info(
            f"Exchequer started ({settings.environment}, provider={connector.name}"
            f"{', demo mode' if connector.demo else ''})"
        )
        yield
        await database.shutdown()

    app = FastAPI(title="Exchequer", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.connector = connector
    app.state.database = database
    app.state.limiter = create_limiter(settings)

    app.add_exception_handler(ExchequerError, exchequer_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    add_security_headers(app)

    app.include_router(webhook_router)

    @app.get("/api/health")
    async def health(
        app_settings: Settings = Depends(get_settings),
        provider: ConnectorBase = Depends(get_connector),
    ):
        return {
            "status": "healthy",
            "timestamp": utc_timestamp(),
            "environment": app_settings.environment,
            "demo": provider.demo,
            "features": FEATURES,
            "provider": provider.health_check(),
        }

    @app.post("/api/payments/create-payment-intent")
    async def create_payment_intent(
        body: CreatePaymentIntentBody,
        db: AsyncSession = Depends(get_db),
        provider: ConnectorBase = Depends(get_connector),
    ):
        """Issue a payment intent for a member's dues; the client confirms it with the secret."""
        created = await PaymentService(db, provider).create_payment_intent(body)
        return created.model_dump(by_alias=True)

    @app.get("/api/payments/history/{organization_id}/{member_id}")
    async def payment_history(
        organization_id: str,
        member_id: str,
        db: AsyncSession = Depends(get_db),
        provider: ConnectorBase = Depends(get_connector),
    ):
        payments = await PaymentService(db, provider).get_payment_history(organization_id, member_id)
        return PaymentHistory(payments=payments).model_dump()

    @app.get("/api/dues/{organization_id}/{member_id}")
    async def member_dues(
        organization_id: str,
        member_id: str,
        db: AsyncSession = Depends(get_db),
        provider: ConnectorBase = Depends(get_connector),
    ):
        return {"dues": await PaymentService(db, provider).get_dues(organization_id, member_id)}

    @app.get("/api/donations/{organization_id}/{member_id}")
    async def member_donations(
        organization_id: str,
        member_id: str,
        db: AsyncSession = Depends(get_db),
        provider: ConnectorBase = Depends(get_connector),
    ):
        return {"donations": await PaymentService(db, provider).list_donations(organization_id, member_id)}

    @app.post("/api/expenses/submit")
    async def submit_expense(
        body: SubmitExpenseBody,
        db: AsyncSession = Depends(get_db),
        provider: ConnectorBase = Depends(get_connector),
    ):
        submitted = await ExpenseService(db, provider).submit_expense(body)
        return submitted.model_dump(by_alias=True)

    @app.post("/api/expenses/process-reimbursement")
    async def process_reimbursement(
        body: ReimbursementBody,
        db: AsyncSession = Depends(get_db),
        provider: ConnectorBase = Depends(get_connector),
    ):
        """Transfer a reimbursement to the member and mark the expense reimbursed."""
        issued = await ExpenseService(db, provider).process_reimbursement(body)
        return issued.model_dump(by_alias=True)

    return app


def serve() -> None:
    """Run the API under uvicorn (the ``exchequer-serve`` entry point)."""
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


app = create_app()
