"""CORS and security headers configuration for the SDG Discovery API."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from typing import List, Optional
import logging

from config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

DEFAULT_DEV_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",  # Vite dev server
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]


def get_allowed_origins(settings: Optional[Settings] = None) -> List[str]:
    """Allowed origins from settings, with localhost defaults in development."""
    settings = settings or get_settings()
    if settings.allowed_origins:
        return list(settings.allowed_origins)

    if settings.environment == "production":
        logger.warning("No CORS origins configured in production. Set ALLOWED_ORIGINS.")
        return []

    return list(DEFAULT_DEV_ORIGINS)


def setup_cors(app: FastAPI, settings: Optional[Settings] = None) -> None:
    """Setup CORS middleware for FastAPI application."""
    settings = settings or get_settings()
    origins = get_allowed_origins(settings)

    # Session cookies need credentials, so origins are never "*"
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Accept", "Content-Type", "X-Requested-With"],
        max_age=86400 if settings.environment == "production" else 600,
    )

    logger.info(f"CORS configured with origins: {origins}")


class SecurityHeadersMiddleware:
    """Add security headers to all responses."""

    def __init__(self, app, hsts: bool = False):
        self.app = app
        self.hsts = hsts

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                security_headers = {
                    b"x-content-type-options": b"nosniff",
                    b"x-frame-options": b"DENY",
                    b"referrer-policy": b"strict-origin-when-cross-origin",
                    b"permissions-policy": b"geolocation=(), microphone=(), camera=()",
                }
                if self.hsts:
                    security_headers[b"strict-transport-security"] = b"max-age=31536000; includeSubDomains"

                # Keep repeated headers such as set-cookie intact
                headers = [
                    (name, value) for name, value in message.get("headers", [])
                    if name.lower() not in security_headers
                ]
                headers.extend(security_headers.items())
                message["headers"] = headers

            await send(message)

        await self.app(scope, receive, send_wrapper)


def setup_security_headers(app: FastAPI, settings: Optional[Settings] = None) -> None:
    """Setup security headers middleware."""
    settings = settings or get_settings()
    # Only send HSTS in production, where the app sits behind HTTPS
    app.add_middleware(SecurityHeadersMiddleware, hsts=settings.environment == "production")
    logger.info("Security headers middleware configured")


def setup_api_security(app: FastAPI, settings: Optional[Settings] = None) -> None:
    """Setup complete API security including CORS and security headers."""
    setup_cors(app, settings)
    setup_security_headers(app, settings)
    logger.info("API security configuration complete")
