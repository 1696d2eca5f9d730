from __future__ import annotations

import logging
from typing import Any, List
from uuid import uuid4

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lifecycle_api.core.errors import DomainError
from lifecycle_api.core.logging import configure_logging, request_log_context
from lifecycle_api.core.settings import get_app_settings
from lifecycle_api.db.seed import seed_all
from lifecycle_api.db.session import create_all, dispose_engine
from lifecycle_api.schemas.common import ErrorEnvelope, MessageResponse

# Routers
from lifecycle_api.api.routes.auth import router as auth_router
from lifecycle_api.api.routes.fsm import router as fsm_router
from lifecycle_api.api.routes.grants import router as grants_router
from lifecycle_api.api.routes.organisations import router as organisations_router
from lifecycle_api.api.routes.plans import router as plans_router
from lifecycle_api.api.routes.roles import router as roles_router
from lifecycle_api.api.routes.schedules import router as schedules_router
from lifecycle_api.api.routes.users import router as users_router

# Configure structured logging once at import
configure_logging()
logger = logging.getLogger(__name__)

settings = get_app_settings()

openapi_tags = [
    {"name": "Health", "description": "Liveness check."},
    {"name": "Auth", "description": "Authentication and token endpoints."},
    {"name": "Organisations", "description": "Organisation sign-up and administration."},
    {"name": "Roles", "description": "Assignable roles."},
    {"name": "Users", "description": "User administration endpoints."},
    {"name": "FSM", "description": "Lifecycle actions, transitions, state machines and history."},
    {"name": "Grants", "description": "Equity grants."},
    {"name": "Plans", "description": "Equity plans."},
    {"name": "Schedules", "description": "Vesting schedule templates."},
]

app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    openapi_tags=openapi_tags,
)

# CORS - avoid wildcard with credentials
cors_allow_credentials = settings.CORS_ALLOW_CREDENTIALS
if settings.CORS_ORIGINS == ["*"] and cors_allow_credentials:
    logger.warning("CORS_ALLOW_CREDENTIALS=True with '*' origins is not permitted; disabling credentials.")
    cors_allow_credentials = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=cors_allow_credentials,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """
    Enrich request context with correlation_id and tenant_id for logging and error responses.
    Adds 'X-Correlation-ID' to every response.
    """
    corr = request.headers.get("X-Correlation-ID") or request.headers.get("X-Request-ID") or str(uuid4())
    tenant = request.headers.get("X-Tenant-ID")
    request.state.correlation_id = corr

    with request_log_context(corr, tenant):
        logger.info("Incoming request %s %s", request.method, request.url.path)
        response = await call_next(request)
    response.headers["X-Correlation-ID"] = corr
    return response


def _error_response(request: Request, status_code: int, message: str, errors: List[Any]) -> JSONResponse:
    """Build the standard error envelope."""
    body = ErrorEnvelope(
        message=message,
        errors=errors,
        correlation_id=getattr(request.state, "correlation_id", None),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    """Map domain failures to their status code and the error envelope."""
    if exc.status_code >= 500:
        logger.error("%s: %s", exc.error_type, exc.message)
    else:
        logger.info("%s: %s", exc.error_type, exc.message)
    return _error_response(request, exc.status_code, exc.message, [exc.message])


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Global handler for HTTPException to produce a standardized error envelope.
    """
    detail = exc.detail if isinstance(exc.detail, str) else "HTTP Error"
    errors = [detail] if isinstance(exc.detail, str) else [exc.detail]
    return _error_response(request, exc.status_code, str(detail), errors)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Global handler for request validation errors with a standard structure.
    """
    errors = [
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    ]
    return _error_response(request, 422, "Request validation failed", errors)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Catch-all handler to avoid leaking stack traces and to return a structured error.
    """
    logger.exception("Unhandled error processing request")
    return _error_response(request, 500, "An unexpected error occurred", ["Internal server error"])


@app.on_event("startup")
async def on_startup() -> None:
    """
    Create tables and optionally seed on service startup.

    Table creation only adds missing tables; there is no schema migration step.
    """
    current = get_app_settings()
    if current.CREATE_TABLES_ON_STARTUP:
        logger.info("Creating missing tables")
        await create_all()

    if current.AUTO_SEED:
        try:
            logger.info("Running database seeding...")
            await seed_all()
            logger.info("Seeding completed.")
        except Exception as exc:
            logger.exception("Seeding step failed: %s", exc)
            # Safe to continue without seed; environments may not require it.


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await dispose_engine()


# Build API v1 router and include sub-routers
api_v1 = APIRouter(prefix="/api/v1")


# PUBLIC_INTERFACE
@api_v1.get(
    "/health",
    response_model=MessageResponse,
    summary="Health Check",
    tags=["Health"],
)
def health_check() -> MessageResponse:
    """
    Basic liveness health check endpoint.

    Returns:
        MessageResponse: Simple confirmation that the service is running.
    """
    return MessageResponse(message="Healthy")


# Include all routers under /api/v1
api_v1.include_router(auth_router)
api_v1.include_router(organisations_router)
api_v1.include_router(users_router)
api_v1.include_router(fsm_router)
api_v1.include_router(grants_router)
api_v1.include_router(plans_router)
api_v1.include_router(schedules_router)
api_v1.include_router(roles_router)

# Attach api_v1 to app
app.include_router(api_v1)
