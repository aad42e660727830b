# app/errors.py

from typing import Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


class PostureError(Exception):
    """Base for errors that are safe to show to the client"""
    status_code = 500
    code = "S001"
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.message
        super().__init__(self.message)


class UserNotFound(PostureError):
    status_code = 404
    code = "U001"
    message = "User not found"


class SessionNotFound(PostureError):
    status_code = 404
    code = "M003"
    message = "Session not found"


class InvalidSessionState(PostureError):
    status_code = 400
    code = "M004"
    message = "Invalid session state"


class ConcurrentTransition(PostureError):
    status_code = 409
    code = "M005"
    message = "Session was modified by another request"


class NoReportData(PostureError):
    status_code = 404
    code = "R001"
    message = "No statistics found for the requested period"


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(PostureError)
    async def handle_posture_error(request: Request, exc: PostureError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"code": PostureError.code, "message": PostureError.message},
        )
