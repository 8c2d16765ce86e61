"""
FlowTune API Middleware

Error mapping and security headers for the FastAPI application.
"""

from .error_handlers import (
    register_error_handlers,
    playback_error_handler,
    status_for,
)
from .security_headers import SecurityHeadersMiddleware

__all__ = [
    "register_error_handlers",
    "playback_error_handler",
    "status_for",
    "SecurityHeadersMiddleware",
]
