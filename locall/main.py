"""LoCall Dashboard API

Main FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from locall.api import (
    auth_router,
    compliance_router,
    dashboard_router,
    integrations_router,
    notifications_router,
    roles_router,
    teams_router,
    users_router,
    webforms_router,
    webhooks_router,
    workspaces_router,
)
from locall.config.settings import get_settings
from locall.database import close_db
from locall.exception_handlers import setup_exception_handlers
from locall.infrastructure.redis.client import close_redis_client, get_redis_client
from locall.realtime import close_broker

settings = get_settings()

# Configure logging
logging.basicConfig(level=settings.log_level.upper(), format=settings.log_format)
logger = logging.getLogger(__name__)

if settings.sentry_dsn:
    sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.environment, release=settings.service_version)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info(f"Starting {settings.service_name} v{settings.service_version}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Realtime backend: {settings.realtime_backend}")

    yield

    logger.info("Shutting down LoCall Dashboard API")
    await close_broker()
    await close_redis_client()
    await close_db()
    logger.info("Connections closed")


app = FastAPI(
    title="LoCall Dashboard API",
    version=settings.service_version,
    description="Multi-tenant dashboard backend for compliance, users, notifications, integrations and webforms",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)

# auth_router first: login/refresh need no authentication
app.include_router(auth_router)
app.include_router(workspaces_router)
app.include_router(users_router)
app.include_router(roles_router)
app.include_router(teams_router)
app.include_router(compliance_router)
app.include_router(notifications_router)
app.include_router(integrations_router)
app.include_router(webhooks_router)
app.include_router(webforms_router)
app.include_router(dashboard_router)


@app.get("/health")
async def root_health_check():
    """Root health check endpoint"""
    health = {
        "status": "healthy",
        "service": settings.service_name,
        "version": settings.service_version,
        "environment": settings.environment,
    }
    if settings.realtime_backend == "redis":
        redis_ok = await (await get_redis_client()).health_check()
        health["redis"] = "connected" if redis_ok else "unavailable"
        if not redis_ok:
            health["status"] = "degraded"
    return health


@app.get("/")
async def root():
    """Root endpoint with service information"""
    return {
        "service": settings.service_name,
        "version": settings.service_version,
        "description": "LoCall Dashboard API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "locall.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
