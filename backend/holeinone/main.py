from __future__ import annotations
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from holeinone.config import settings
from holeinone.logging_setup import configure_logging
from holeinone.routes.system import router as system_router
from holeinone.routes.auth import router as auth_router
from holeinone.routes.entries import router as entries_router
from holeinone.routes.claims import router as claims_router
from holeinone.routes.witness import router as witness_router
from holeinone.services.errors import ServiceError
from holeinone.services.throttle import build_throttle
import structlog

configure_logging()
log = structlog.get_logger()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    app.state.throttle = build_throttle(
        settings.rate_limit_backend, settings.redis_url, settings.resend_cooldown_seconds,
    )
    log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha,
             rate_limit_backend=settings.rate_limit_backend)
    yield
    # Shutdown
    log.info("shutdown")

app = FastAPI(
    title=f"{settings.app_display_name} API",
    version=settings.app_version,
    lifespan=lifespan,
    description=f"{settings.app_display_name} API for hole-in-one competition entries and claims"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(system_router)
app.include_router(auth_router)
app.include_router(entries_router)
app.include_router(claims_router)
app.include_router(witness_router)

@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    # Messages are written for end users; store/provider details stay in the logs
    log.info("service_error", code=exc.code, status=exc.status_code, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    structlog.contextvars.bind_contextvars(request_id=rid)
    response: Response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    structlog.contextvars.clear_contextvars()
    return response
