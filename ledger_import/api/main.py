"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from ledger_import.api.middleware import RequestIDMiddleware, MetricsMiddleware
from ledger_import.api.v1 import imports, statements
from ledger_import.infrastructure.observability.logging import setup_logging
from ledger_import.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Ledger Statement Import",
        description="Reconciles bank and credit-card statements into the expense ledger",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(imports.router, prefix="/v1", tags=["imports"])
    app.include_router(statements.router, prefix="/v1", tags=["statements"])

    return app


app = create_app()
