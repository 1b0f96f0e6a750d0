"""
Main Application Entry Point.

This module initializes the FastAPI application, configures middleware (CORS),
and includes all API routers. It serves as the root of the web server.
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from botgate import __version__
from botgate.core.logging_config import get_logger, setup_logging

from .api.v1 import agent, approvals, audit, health, permissions
from .core import constant
from .core.config import settings
from .core.database import init_db
from .exception_handlers import setup_exception_handlers

setup_logging(log_level=settings.log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Creates the core tables on startup when they do not exist yet.
    """
    logger.info("Starting up botgate server...")
    await init_db()
    logger.info("Database initialized successfully")

    yield

    logger.info("Shutting down botgate server...")


app = FastAPI(
    title=constant.PROJECT_NAME,
    description="""
    botgate API

    Permission policy engine and bounded agent runtime: resolve effective
    permissions, gate sensitive actions behind human approval, inspect the
    audit trail, and plan, run and cancel agent runs.
    """,
    version=__version__,
    openapi_url=f"{constant.API_V1_STR}/openapi.json",
    docs_url=f"{constant.API_V1_STR}/docs",
    redoc_url=f"{constant.API_V1_STR}/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)

app.include_router(health.router, tags=["health"])
app.include_router(permissions.router, prefix=f"{constant.API_V1_STR}/permissions", tags=["permissions"])
app.include_router(approvals.router, prefix=f"{constant.API_V1_STR}/approvals", tags=["approvals"])
app.include_router(audit.router, prefix=f"{constant.API_V1_STR}/audit-logs", tags=["audit"])
app.include_router(agent.router, prefix=f"{constant.API_V1_STR}/agent", tags=["agent"])


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    uvicorn.run(app, host=settings.server_host, port=settings.server_port)
