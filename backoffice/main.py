"""
FastAPI application entry point for the back-office subscription API.

Serves the operator surface for the plan catalog and the subscription
lifecycle. Authorization checks themselves are library calls
(backoffice.entitlements) made in-process by the back-office UI server.

Run as: uvicorn backoffice.main:app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from backoffice import __version__
from backoffice.api.routes import admin_plans
from backoffice.api.routes import admin_subscriptions
from backoffice.entitlements.errors import EntitlementError

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting back-office subscription API", extra={"version": __version__})
    yield
    logger.info("Shutting down back-office subscription API")


app = FastAPI(
    title="Back-office Subscription API",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(admin_plans.router)
app.include_router(admin_subscriptions.router)


@app.exception_handler(EntitlementError)
async def entitlement_error_handler(request: Request, exc: EntitlementError):
    """Typed errors that escape a route without translation."""
    logger.warning("Unhandled entitlement error", extra={
        "path": request.url.path,
        "error_code": exc.code,
    })
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.to_dict()})


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok", "version": __version__}


@app.get("/", include_in_schema=False)
async def root():
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"service": "backoffice-subscriptions", "docs": "/docs"},
    )
