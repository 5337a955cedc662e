"""
Last-resort exception handler. Webhook routes answer their own errors; this
catches whatever escapes the dashboard API.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger


async def global_exception_handler(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception as exc:
        logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "type": type(exc).__name__,
                "request_id": getattr(request.state, "request_id", None),
            },
        )
