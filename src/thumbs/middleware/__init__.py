"""HTTP middleware stack for the API."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from thumbs.config import Settings
from thumbs.middleware.error_handler import setup_error_handlers
from thumbs.middleware.logging import setup_logging
from thumbs.middleware.rate_limit import RateLimitMiddleware
from thumbs.middleware.request_id import REQUEST_ID_HEADER, RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Install logging, error handlers and middleware.

    Starlette runs the last-added middleware outermost; CORS goes last so
    that 429 responses from the rate limiter still carry CORS headers.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER, "X-RateLimit-Remaining", "X-RateLimit-Limit", "Retry-After"],
    )
