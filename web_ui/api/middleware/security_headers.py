"""
Security Headers Middleware for the FlowTune Playback API

Adds essential security headers to all responses. The API serves JSON and
audio streams only, so the policy is locked down: nothing may frame it,
sniff its content types or cache session responses.

Reference: OWASP Secure Headers Project
https://owasp.org/www-project-secure-headers/
"""

import os
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds security headers to all HTTP responses.

    Headers added:
    - X-Content-Type-Options: Prevents MIME type sniffing
    - X-Frame-Options: Prevents clickjacking attacks
    - Referrer-Policy: Stream URLs carry session ids, never leak them
    - Cache-Control: Session responses must not be cached by proxies
    - Strict-Transport-Security: Forces HTTPS (production only)
    - Content-Security-Policy: No active content at all
    """

    def __init__(self, app, enable_hsts: bool = None):
        """
        Initialize the security headers middleware.

        Args:
            app: The ASGI application
            enable_hsts: Whether to enable HSTS. Defaults to True in production.
        """
        super().__init__(app)

        env = os.getenv("FLOWTUNE_ENV", "development").lower()
        self.is_production = env in ("production", "prod")

        if enable_hsts is None:
            self.enable_hsts = self.is_production
        else:
            self.enable_hsts = enable_hsts

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"

        if request.url.path.startswith("/api/"):
            response.headers.setdefault("Cache-Control", "no-store")

        # max-age=31536000 = 1 year
        if self.enable_hsts:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        return response
