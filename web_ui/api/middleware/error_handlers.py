"""
Error handlers for the Playback API

Maps engine errors to HTTP responses:
- ValidationError          -> 400
- NotFoundError            -> 404
- SessionBusyError         -> 409
- ExpiredError             -> 410
- RateLimitError           -> 429 (with Retry-After)
- LedgerConsistencyError   -> 500 (logged with full context)
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from playback.errors import (
    ExpiredError,
    LedgerConsistencyError,
    NotFoundError,
    PlaybackError,
    RateLimitError,
    SessionBusyError,
    ValidationError,
)
from utils.logger import logger


STATUS_BY_ERROR = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (SessionBusyError, status.HTTP_409_CONFLICT),
    (ExpiredError, status.HTTP_410_GONE),
    (RateLimitError, status.HTTP_429_TOO_MANY_REQUESTS),
    (LedgerConsistencyError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def status_for(error: PlaybackError) -> int:
    for error_type, code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def playback_error_handler(request: Request, exc: PlaybackError) -> JSONResponse:
    """Render a PlaybackError as a JSON error payload"""
    code = status_for(exc)
    headers = {}

    if isinstance(exc, RateLimitError):
        headers["Retry-After"] = str(exc.retry_after)
        logger.warning(f"Rate limit exceeded on {request.url.path}: {exc.message}")
    elif isinstance(exc, LedgerConsistencyError):
        logger.error(
            f"Ledger consistency error on {request.method} {request.url.path}: {exc.message} "
            f"(track={exc.track_id}, session={exc.session_id}, split={exc.split})"
        )
    elif code >= 500:
        logger.error(f"Playback error on {request.method} {request.url.path}: {exc.message}")

    return JSONResponse(status_code=code, content={"success": False, **exc.to_dict()}, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PlaybackError, playback_error_handler)
