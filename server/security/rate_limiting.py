"""Rate limiting for the SDG Discovery API using slowapi."""

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging

from config.settings import get_settings

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Extract client IP considering proxy headers."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


# In-memory storage; the app runs as a single process
limiter = Limiter(key_func=get_client_ip)


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Custom handler for rate limit exceeded responses."""
    retry_after = getattr(exc, 'retry_after', None) or 60
    response = JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "detail": f"Rate limit exceeded: {exc.detail}",
        }
    )
    response.headers["Retry-After"] = str(retry_after)
    logger.warning(f"Rate limit exceeded for {get_client_ip(request)} on {request.url.path}")
    return response


def setup_rate_limiting(app: FastAPI) -> None:
    """Setup rate limiting for FastAPI application."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)


def _login_limit() -> str:
    return get_settings().login_rate_limit


def _llm_limit() -> str:
    return get_settings().llm_rate_limit


def login_rate_limit():
    """Limit password attempts per client (``LOGIN_RATE_LIMIT``)."""
    return limiter.limit(_login_limit)


def llm_rate_limit():
    """Limit model-backed endpoints per client (``LLM_RATE_LIMIT``)."""
    return limiter.limit(_llm_limit)
