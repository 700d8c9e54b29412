"""
gateway/errors.py

Error taxonomy for the gateway and FastAPI handlers that render it.
Every error response has the shape {"ok": false, "error": <code>}.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class GatewayError(Exception):
    """Base exception carrying a machine-readable code and HTTP status."""

    status_code: int = 500

    def __init__(self, code: str, status_code: int | None = None) -> None:
        super().__init__(code)
        self.code = code
        if status_code is not None:
            self.status_code = status_code


class ValidationError(GatewayError):
    """Structurally missing required input. Never retried."""

    status_code = 400


class InternalError(GatewayError):
    """Unexpected failure, e.g. a persistence error during registration."""

    status_code = 500

    def __init__(self, code: str = "internal_error") -> None:
        super().__init__(code)


def error_response(exc: GatewayError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.code},
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register exception handlers on the FastAPI app."""

    @app.exception_handler(GatewayError)
    async def handle_gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        logger.warning(
            "request_failed",
            path=request.url.path,
            code=exc.code,
            status=exc.status_code,
        )
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_invalid_body(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning("request_invalid_body", path=request.url.path, errors=len(exc.errors()))
        return error_response(ValidationError("invalid_body"))

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "request_unhandled_error",
            path=request.url.path,
            error=str(exc),
        )
        return error_response(InternalError())
