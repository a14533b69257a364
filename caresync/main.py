"""Main entry point for the CareSync service."""

import base64
import binascii
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict

import jwt
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import make_asgi_app
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.status import HTTP_401_UNAUTHORIZED

from caresync.api.alerts import router as alerts_router
from caresync.api.errors import register_error_handlers
from caresync.api.providers import router as providers_router
from caresync.api.readings import router as readings_router
from caresync.data.dynamodb import get_dynamodb_client
from caresync.dependencies import get_daily_summary_job, get_ingestion_service
from caresync.scheduler import Scheduler
from caresync.utils.config import get_settings
from caresync.utils.logging_utils import redact_sensitive_data, setup_json_logging

settings = get_settings()
setup_json_logging(settings.log_level, settings.log_output, settings.log_file_path)
logger = logging.getLogger(__name__)


def build_scheduler() -> Scheduler:
    scheduler = Scheduler()
    scheduler.every("provider_poll", settings.poll_interval_seconds, get_ingestion_service().run_tick)
    scheduler.cron("daily_summary", settings.daily_summary_cron, get_daily_summary_job().run)
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """
    Application startup and shutdown events.

    Args:
        app: The FastAPI application instance

    Yields:
        None
    """
    logger.info("Starting CareSync service...")

    if settings.service_env == "development":
        try:
            get_dynamodb_client().create_all_tables(wait=True)
            logger.info("DynamoDB tables created/verified")
        except Exception as e:
            logger.error(f"Error creating DynamoDB tables: {e}")

    scheduler = build_scheduler() if settings.scheduler_enabled else None
    if scheduler:
        scheduler.start()

    yield

    logger.info("Shutting down CareSync service...")
    if scheduler:
        await scheduler.stop()


class MetricsAuthMiddleware:
    def __init__(self, app, username, password):
        self.app = app
        self.username = username
        self.password = password

    async def _reject(self, scope, receive, send):
        response = Response(status_code=HTTP_401_UNAUTHORIZED, headers={"WWW-Authenticate": "Basic"})
        await response(scope, receive, send)

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            headers = dict(scope.get("headers") or [])
            auth_header = headers.get(b"authorization")
            if not auth_header or not auth_header.startswith(b"Basic "):
                await self._reject(scope, receive, send)
                return
            try:
                decoded = base64.b64decode(auth_header.split(b" ", 1)[1]).decode()
                username, password = decoded.split(":", 1)
            except (binascii.Error, UnicodeDecodeError, ValueError):
                await self._reject(scope, receive, send)
                return
            if username != self.username or password != self.password:
                await self._reject(scope, receive, send)
                return
        await self.app(scope, receive, send)


class JWTAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app):
        super().__init__(app)
        self.secret_key = settings.jwt_secret_key.get_secret_value()
        self.issuer = settings.jwt_issuer
        self.audience = settings.jwt_audience
        self.public_paths = {"/health", "/docs", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.public_paths or request.url.path.startswith("/metrics"):
            return await call_next(request)
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            logger.warning(
                "401 Unauthorized: Missing or invalid authorization header",
                extra={"path": str(request.url.path), "status_code": 401, "reason": "missing_or_invalid_auth_header"}
            )
            return JSONResponse(status_code=401, content={"detail": "Missing or invalid authorization header"})
        token = auth_header.replace("Bearer ", "")
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=["HS256"],
                issuer=self.issuer,
                audience=self.audience,
                options={"require": ["exp", "iss", "aud", "sub"]}
            )
            request.state.user_id = payload["sub"]
        except jwt.ExpiredSignatureError:
            logger.warning(
                "401 Unauthorized: Token has expired",
                extra={"path": str(request.url.path), "status_code": 401, "reason": "token_expired"}
            )
            return JSONResponse(status_code=401, content={"detail": "Token has expired"})
        except jwt.InvalidTokenError as e:
            logger.warning(
                f"401 Unauthorized: Invalid token: {str(e)}",
                extra={"path": str(request.url.path), "status_code": 401, "reason": "invalid_token"}
            )
            return JSONResponse(status_code=401, content={"detail": f"Invalid token: {str(e)}"})
        return await call_next(request)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Track and propagate a unique request ID for each request.
    Adds X-Request-ID to response headers and attaches to request.state.
    """
    async def dispatch(self, request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: The configured FastAPI application
    """
    app = FastAPI(
        title="CareSync",
        description="Glucose ingestion, alerting and care-network notification service",
        version="0.1.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(JWTAuthMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.include_router(readings_router, prefix="/api/readings", tags=["glucose"])
    app.include_router(providers_router, prefix="/api/providers", tags=["providers"])
    app.include_router(alerts_router, prefix="/api/alerts", tags=["alerts"])
    register_error_handlers(app)

    @app.get("/health")
    async def health_check() -> Dict[str, str]:
        logger.info("Health check endpoint called", extra={"endpoint": "/health"})
        return {"status": "healthy", "service": "caresync"}

    app.mount(
        "/metrics",
        MetricsAuthMiddleware(make_asgi_app(), settings.metrics_user, settings.metrics_pass.get_secret_value())
    )

    # Global exception handler to prevent leaking sensitive data
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        detail = exc.detail if isinstance(exc, HTTPException) else "Internal server error"
        if not isinstance(exc, HTTPException):
            logger.exception("Unhandled error", extra={"path": str(request.url.path)})
        safe_detail = redact_sensitive_data(detail) if isinstance(detail, (dict, list)) else detail
        return JSONResponse(
            status_code=getattr(exc, "status_code", 500),
            content={
                "status": "error",
                "message": safe_detail,
            },
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "caresync.main:app",
        host="0.0.0.0",
        port=5001,
        reload=True,
        log_level=settings.log_level.lower(),
    )
