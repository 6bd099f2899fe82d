"""FastAPI routes for the audit interview."""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.schemas import SessionView, StartResp, TurnResp
from config.settings import settings
from observability import log_event
from services.errors import AuditError
from services.generation import build_generator
from services.orchestrator import AuditOrchestrator
from services.rate_limiter import RateLimiter, client_ip
from storage.rate_limits import RateLimitStore
from storage.sessions import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/audit")

_orchestrator: Optional[AuditOrchestrator] = None


def get_orchestrator() -> AuditOrchestrator:
    """Build the process-wide orchestrator from settings on first use."""

    global _orchestrator
    if _orchestrator is None:
        _orchestrator = AuditOrchestrator(
            settings,
            sessions=SessionStore(),
            limiter=RateLimiter(RateLimitStore(), settings),
            generator=build_generator(settings) if settings.AUDIT_WEBHOOK_URL else None,
        )
    return _orchestrator


def _client_ip(request: Request) -> str:
    ip = client_ip(request.headers)
    if ip == "unknown" and request.client is not None:
        return request.client.host
    return ip


@router.post("/session", response_model=StartResp, response_model_by_alias=True)
def start_session(
    request: Request,
    payload: Any = Body(default=None),
    orchestrator: AuditOrchestrator = Depends(get_orchestrator),
) -> StartResp:
    return orchestrator.start_session(payload, _client_ip(request))


@router.post("/message", response_model=TurnResp, response_model_by_alias=True)
def message(
    request: Request,
    payload: Any = Body(default=None),
    orchestrator: AuditOrchestrator = Depends(get_orchestrator),
) -> TurnResp:
    return orchestrator.handle_turn(payload, _client_ip(request))


@router.get("/session/{session_id}", response_model=SessionView, response_model_by_alias=True)
def read_session(
    session_id: str,
    request: Request,
    orchestrator: AuditOrchestrator = Depends(get_orchestrator),
) -> SessionView:
    return orchestrator.get_session(session_id, _client_ip(request))


async def _audit_error(request: Request, exc: AuditError) -> JSONResponse:
    if exc.status_code >= 500:
        log_event("request_failed", None, level=logging.ERROR, path=request.url.path, error=type(exc).__name__)
    return JSONResponse(status_code=exc.status_code, content=exc.body())


async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid request data", "details": details})


async def _unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    log_event("request_failed", None, level=logging.ERROR, path=request.url.path, error=type(exc).__name__)
    return JSONResponse(status_code=500, content={"error": AuditError.public_message})


def install_error_handlers(app: FastAPI) -> None:
    """Map domain errors to JSON bodies; internals never reach the client."""

    app.add_exception_handler(AuditError, _audit_error)
    app.add_exception_handler(RequestValidationError, _invalid_request)
    app.add_exception_handler(Exception, _unexpected)
