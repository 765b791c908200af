"""FastAPI backend for social account connections and publishing."""

import os
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from api.error_handlers import register_error_handlers
from api.routes import health
from api.routes.v1 import publishing_router, social_router
from socialsync import __version__
from socialsync.config import LOG_JSON, LOG_LEVEL
from socialsync.logging import bind_context, clear_context, configure_structlog

configure_structlog(json_format=LOG_JSON, log_level=LOG_LEVEL)

app = FastAPI(
    title="SocialSync API",
    description="Social account connections and scheduled publishing",
    version=__version__,
)

# CORS for the dashboard dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get(
        "CORS_ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
    ).split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag every log line of a request with its id."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    bind_context(request_id=request_id)
    try:
        response = await call_next(request)
    finally:
        clear_context()
    response.headers["X-Request-ID"] = request_id
    return response


# Register global error handlers
register_error_handlers(app)

app.include_router(social_router, prefix="/api", tags=["social"])
app.include_router(publishing_router, prefix="/api", tags=["publishing"])

# Health check routes (no auth required)
app.include_router(health.router, prefix="/api", tags=["health"])
