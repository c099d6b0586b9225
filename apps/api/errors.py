"""Global exception handlers mapping billing failures onto HTTP responses."""

import logging
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from services.billing_errors import BillingError

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = "5"


def register_error_handlers(app: FastAPI) -> None:
    """Register billing, validation, and catch-all handlers on the app."""
    _register_billing_error_handler(app)
    _register_validation_error_handler(app)
    _register_generic_error_handler(app)


def _register_billing_error_handler(app: FastAPI) -> None:

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError):
        if exc.status_code >= 500:
            logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.detail)
        else:
            logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc.detail)
        headers = {"Retry-After": RETRY_AFTER_SECONDS} if exc.retryable else None
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=headers,
        )


def _register_validation_error_handler(app: FastAPI) -> None:

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.info("Validation error on %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": [
                    {
                        "field": ".".join(str(loc) for loc in error.get("loc", ())),
                        "message": error.get("msg", ""),
                        "type": error.get("type", ""),
                    }
                    for error in exc.errors()
                ]
            },
        )


def _register_generic_error_handler(app: FastAPI) -> None:

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        """Never leaks internal details; the correlation id ties the response to the log."""
        correlation_id = str(uuid.uuid4())
        logger.error(
            "Unhandled exception on %s correlation_id=%s",
            request.url.path,
            correlation_id,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "An unexpected error occurred.", "correlation_id": correlation_id},
        )
