from __future__ import annotations

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from compliance_hub.audit_ledger import AuditLedger
from compliance_hub.config import Settings
from compliance_hub.errors import ApiError
from compliance_hub.evidence_store import EvidenceStore
from compliance_hub.identity import IdentityService
from compliance_hub.request_workflow import RequestWorkflow
from compliance_hub.routes import audit as audit_routes
from compliance_hub.routes import auth as auth_routes
from compliance_hub.routes import evidence as evidence_routes
from compliance_hub.routes import requests as requests_routes
from compliance_hub.routes._deps import error_response, request_id_from_request, trace_id_from_request
from compliance_hub.schemas import success_envelope
from compliance_hub.security import parse_and_validate_bearer_token, redact_sensitive
from compliance_hub.store import Store, create_store_from_env

logger = logging.getLogger(__name__)

PUBLIC_API_PATHS = frozenset({"/api/v1/health", "/api/v1/auth/register", "/api/v1/auth/login"})
SECURITY_LOG_CODES = frozenset({"AUTH_UNAUTHORIZED", "AUTH_FORBIDDEN", "NOT_OWNED"})


def create_app(settings: Settings | None = None, store: Store | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    store = store if store is not None else create_store_from_env(settings)

    app = FastAPI(title="Compliance Evidence Hub API", version="0.1.0")
    ledger = AuditLedger(store)
    evidence_store = EvidenceStore(store, ledger)
    app.state.settings = settings
    app.state.store = store
    app.state.audit_ledger = ledger
    app.state.evidence_store = evidence_store
    app.state.request_workflow = RequestWorkflow(store, ledger, evidence_store)
    app.state.identity = IdentityService(store, settings)

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allow_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _log_security_event(*, request: Request, code: str, detail: str) -> None:
        headers_obj = dict(request.headers.items())
        headers_payload = redact_sensitive(headers_obj) if settings.log_redaction_enabled else headers_obj
        logger.warning(
            "security_blocked code=%s path=%s trace_id=%s detail=%s headers=%s",
            code,
            request.url.path,
            trace_id_from_request(request),
            detail,
            headers_payload,
        )

    @app.middleware("http")
    async def add_trace_id_and_auth(request: Request, call_next):
        incoming_trace_id = request.headers.get("x-trace-id", "").strip()
        request.state.trace_id = incoming_trace_id or uuid.uuid4().hex
        request.state.request_id = request.headers.get("x-request-id", f"rq_{uuid.uuid4().hex[:12]}")
        request.state.auth = None
        request.state.principal = None
        path = request.url.path
        if (
            settings.trace_id_strict_required
            and path.startswith("/api/v1/")
            and path != "/api/v1/health"
            and not incoming_trace_id
        ):
            response = error_response(
                request,
                code="TRACE_ID_REQUIRED",
                message="x-trace-id header is required",
                error_class="validation",
                retryable=False,
                status_code=400,
            )
            response.headers["x-trace-id"] = trace_id_from_request(request)
            response.headers["x-request-id"] = request_id_from_request(request)
            return response
        try:
            if path.startswith("/api/v1/") and path not in PUBLIC_API_PATHS:
                request.state.auth = parse_and_validate_bearer_token(
                    authorization=request.headers.get("Authorization"),
                    settings=settings,
                )
        except ApiError as exc:
            _log_security_event(request=request, code=exc.code, detail=exc.message)
            response = error_response(
                request,
                code=exc.code,
                message=exc.message,
                error_class=exc.error_class,
                retryable=exc.retryable,
                status_code=exc.http_status,
            )
            response.headers["x-trace-id"] = trace_id_from_request(request)
            response.headers["x-request-id"] = request_id_from_request(request)
            return response
        response = await call_next(request)
        response.headers["x-trace-id"] = trace_id_from_request(request)
        response.headers["x-request-id"] = request_id_from_request(request)
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.code in SECURITY_LOG_CODES:
            _log_security_event(request=request, code=exc.code, detail=exc.message)
        return error_response(
            request,
            code=exc.code,
            message=exc.message,
            error_class=exc.error_class,
            retryable=exc.retryable,
            status_code=exc.http_status,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return error_response(
            request,
            code="REQ_VALIDATION_FAILED",
            message="invalid payload",
            error_class="validation",
            retryable=False,
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request,
                code="REQ_NOT_FOUND",
                message="resource not found",
                error_class="validation",
                retryable=False,
                status_code=404,
            )
        return error_response(
            request,
            code="REQ_HTTP_ERROR",
            message=str(exc.detail),
            error_class="validation",
            retryable=False,
            status_code=exc.status_code,
        )

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    @app.get("/api/v1/health")
    def health_api(request: Request) -> dict[str, object]:
        return success_envelope(
            {"status": "ok", "store_backend": store.backend_name},
            trace_id_from_request(request),
        )

    app.include_router(auth_routes.router)
    app.include_router(evidence_routes.router)
    app.include_router(requests_routes.router)
    app.include_router(audit_routes.router)
    return app


app = create_app()
