"""
Domain Exception Handlers.

Maps agent core errors to HTTP responses. Policy denials carry the
human-readable message of the permission key (title, why, impact, risk) so
the UI can show it instead of a raw error code.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from botgate.agent_core.errors import (
    ApprovalNotFound,
    CooldownActive,
    PlanMismatch,
    PlanNotFound,
    PolicyDenied,
    StoreUnavailable,
)
from botgate.core.logging_config import get_logger

logger = get_logger(__name__)


def _denied_body(exc: PolicyDenied) -> dict:
    return {
        "detail": exc.reason,
        "error_type": type(exc).__name__,
        "permission_key": exc.permission_key.value if exc.permission_key else None,
        "message": exc.message.model_dump() if exc.message else None,
    }


async def policy_denied_handler(request: Request, exc: PolicyDenied) -> JSONResponse:
    logger.info(f"Policy denied {request.method} {request.url.path}: {exc.reason}")
    return JSONResponse(status_code=403, content=_denied_body(exc))


async def cooldown_handler(request: Request, exc: CooldownActive) -> JSONResponse:
    body = _denied_body(exc)
    body["retry_after_seconds"] = round(exc.retry_after_seconds, 1)
    return JSONResponse(
        status_code=429,
        content=body,
        headers={"Retry-After": str(max(int(exc.retry_after_seconds + 0.999), 1))},
    )


async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc), "error_type": type(exc).__name__})


async def bad_request_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc), "error_type": type(exc).__name__})


async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.error(f"Store unavailable during {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Policy store unavailable", "error_type": type(exc).__name__},
    )


def register_domain_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CooldownActive, cooldown_handler)
    app.add_exception_handler(PolicyDenied, policy_denied_handler)
    app.add_exception_handler(PlanNotFound, not_found_handler)
    app.add_exception_handler(ApprovalNotFound, not_found_handler)
    app.add_exception_handler(PlanMismatch, bad_request_handler)
    app.add_exception_handler(ValueError, bad_request_handler)
    app.add_exception_handler(StoreUnavailable, store_unavailable_handler)
