"""
Domain exceptions and global exception handlers for the fund-periods API.

Catches exceptions and returns JSON error responses while logging
appropriately (unknown funds as debug, everything else as error).
"""
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fundperiods.core.logging_config import get_main_logger

logger = get_main_logger()


class FundNotFoundError(Exception):
    """Raised when a fund id has never been synchronized."""

    def __init__(self, fund_id: int):
        self.fund_id = fund_id
        self.message = f"Fund {fund_id} not found"
        super().__init__(self.message)


async def fund_not_found_exception_handler(request: Request, exc: FundNotFoundError) -> JSONResponse:
    """
    Handle unknown fund ids.
    Returns 404 with the fund id.
    """
    logger.debug(f"Fund not found: {request.method} {request.url.path}")
    return JSONResponse(
        status_code=404,
        content={
            "detail": exc.message,
            "error_type": "fund_not_found",
            "fund_id": exc.fund_id
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle all other unhandled exceptions.
    Logs as error and returns 500 response.
    """
    logger.error(f"Unhandled exception: {request.method} {request.url.path} - {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An internal error occurred. Please try again later.",
            "error_type": "internal_error"
        }
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """
    Handle HTTP exceptions (404, 409, etc.).
    These are expected and not logged.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


def register_exception_handlers(app):
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(FundNotFoundError, fund_not_found_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
