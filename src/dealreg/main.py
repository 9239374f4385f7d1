"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, lifespan
events that build the deal store and evaluation engines into app.state, and
the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.dealreg.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.dealreg.api.v1.router import router as v1_router
from src.dealreg.config import Environment, Settings, get_settings
from src.dealreg.core.database import close_db, get_session, init_db
from src.dealreg.core.monitoring import MetricsMiddleware, get_metrics_response
from src.dealreg.deals.approvals import ApprovalWorkflowEngine
from src.dealreg.deals.conflicts import ConflictDetectionEngine
from src.dealreg.deals.pipeline import DealEvaluationPipeline
from src.dealreg.deals.pricing import PricingEngine
from src.dealreg.deals.store import DealStore
from src.dealreg.deals.validation import ValidationEngine


def build_services(app: FastAPI, store, settings: Settings) -> None:
    """Wire the store and engines onto app.state for endpoint injection."""
    conflict_engine = ConflictDetectionEngine(store, scan_limit=settings.CONFLICT_SCAN_LIMIT)
    validation_engine = ValidationEngine(
        store,
        conflict_engine,
        high_value_threshold=settings.HIGH_VALUE_DEAL_THRESHOLD,
        duplicate_window_days=settings.DUPLICATE_WINDOW_DAYS,
    )
    pricing_engine = PricingEngine(store, currency=settings.CURRENCY)
    approval_engine = ApprovalWorkflowEngine(
        store, default_workflow_name=settings.DEFAULT_WORKFLOW_NAME
    )

    app.state.deal_store = store
    app.state.conflict_engine = conflict_engine
    app.state.validation_engine = validation_engine
    app.state.pricing_engine = pricing_engine
    app.state.approval_engine = approval_engine
    app.state.evaluation_pipeline = DealEvaluationPipeline(
        store, validation_engine, conflict_engine, pricing_engine, approval_engine
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: configure logging and services, close the DB on shutdown."""
    import structlog

    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.ENVIRONMENT == Environment.development:
        await init_db()

    build_services(app, DealStore(session_factory=get_session), settings)
    log.info("deal_evaluation_services_ready", environment=settings.ENVIRONMENT.value)

    yield

    await close_db()
    log.info("deal_evaluation_services_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Deal Registration API",
        version="0.1.0",
        description="Deal validation, conflict detection, pricing, and approval workflows",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
