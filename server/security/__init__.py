"""Security package for the SDG Discovery API."""

from .rate_limiting import (
    limiter,
    setup_rate_limiting,
    login_rate_limit,
    llm_rate_limit,
    get_client_ip
)
from .cors import (
    setup_cors,
    setup_security_headers,
    setup_api_security,
    get_allowed_origins,
    SecurityHeadersMiddleware
)

__all__ = [
    # Rate limiting
    "limiter",
    "setup_rate_limiting",
    "login_rate_limit",
    "llm_rate_limit",
    "get_client_ip",
    # CORS and security headers
    "setup_cors",
    "setup_security_headers",
    "setup_api_security",
    "get_allowed_origins",
    "SecurityHeadersMiddleware"
]
