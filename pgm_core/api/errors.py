"""
Custom error handlers for the API.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from pgm_core.lib.errors import ConfigError, LockHeld, ParseError, PgmError


def status_for(exc: PgmError) -> int:
    if isinstance(exc, LockHeld):
        return 409
    if isinstance(exc, (ConfigError, ParseError)):
        return 400
    return 500


async def pgm_error_handler(request: Request, exc: PgmError):
    """Map pgm errors to a status code and a JSON body"""
    return JSONResponse(
        status_code=status_for(exc),
        content={"status": "error", "error": type(exc).__name__, "detail": str(exc)}
    )


async def not_found_handler(request: Request, exc):
    """Handle 404 errors"""
    return JSONResponse(
        status_code=404,
        content={"error": "Endpoint not found", "path": str(request.url.path)}
    )


async def internal_error_handler(request: Request, exc):
    """Handle 500 errors"""
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": str(exc)}
    )
