"""FastAPI application for the Lyra payments API.

This package provides REST endpoints for:
- Health checks
- Lyra IPN (webhook) processing
- Lyra form-token initialisation and browser returns
"""

import logging
import os
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from lyra_api.exceptions import register_exception_handlers
from lyra_api.middleware.correlation import CorrelationIdMiddleware
from lyra_api.routes.health import router as health_router
from lyra_api.routes.payments import router as payments_router
from lyra_api.routes.webhooks import router as webhooks_router
from lyra_shared import __version__
from lyra_shared.utils.logging import configure_logging

configure_logging(
    os.environ.get("LOG_LEVEL", "INFO").upper(),
    fmt=os.environ.get("LOG_FORMAT", "text").lower(),
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Lyra Payments API",
    description="Lyra form tokens, browser returns and IPN processing",
    version=__version__,
)

# CORS for the storefront; the IPN is server-to-server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.environ.get("FRONTEND_URL", "http://localhost:3000")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

# Register exception handlers for consistent error responses
register_exception_handlers(app)

app.include_router(health_router)
app.include_router(webhooks_router)
app.include_router(payments_router)


@app.get("/ping")
async def ping() -> dict[str, Any]:
    """Root liveness endpoint."""
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": "lyra-payments-api",
    }


# Lambda handler - Mangum wraps FastAPI for AWS Lambda + API Gateway
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
        reload: Enable hot reload for development (default: True)
    """
    import uvicorn

    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run(
            "lyra_api.main:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["backend/api/src", "backend/shared/src"],
        )
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
