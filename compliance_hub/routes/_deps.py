from __future__ import annotations

import uuid

from fastapi import Request
from fastapi.responses import JSONResponse

from compliance_hub.access_policy import Principal
from compliance_hub.audit_ledger import AuditLedger
from compliance_hub.errors import unauthorized
from compliance_hub.evidence_store import EvidenceStore
from compliance_hub.identity import IdentityService
from compliance_hub.request_workflow import RequestWorkflow
from compliance_hub.schemas import error_envelope
from compliance_hub.security import AuthContext


def trace_id_from_request(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id:
        return trace_id
    return uuid.uuid4().hex


def request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return f"rq_{uuid.uuid4().hex[:12]}"


def principal_from_request(request: Request) -> Principal:
    """Resolve the caller from the stored user behind the verified token.

    The middleware only checks the token; the store lookup happens here, in
    the sync route handler that FastAPI runs on its threadpool.
    """
    principal = getattr(request.state, "principal", None)
    if isinstance(principal, Principal):
        return principal
    auth_ctx = getattr(request.state, "auth", None)
    if not isinstance(auth_ctx, AuthContext):
        raise unauthorized("authentication required")
    principal = identity_service(request).resolve_principal(auth_ctx.subject)
    request.state.principal = principal
    return principal


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    status_code: int,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            error_class=error_class,
            retryable=retryable,
            trace_id=trace_id_from_request(request),
        ),
    )


def identity_service(request: Request) -> IdentityService:
    return request.app.state.identity


def evidence_store(request: Request) -> EvidenceStore:
    return request.app.state.evidence_store


def request_workflow(request: Request) -> RequestWorkflow:
    return request.app.state.request_workflow


def audit_ledger(request: Request) -> AuditLedger:
    return request.app.state.audit_ledger
