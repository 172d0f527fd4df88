from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from compliance_hub.routes._deps import evidence_store, principal_from_request, trace_id_from_request
from compliance_hub.schemas import AddVersionRequest, CreateEvidenceRequest, success_envelope

router = APIRouter(prefix="/api/v1", tags=["evidence"])


@router.post("/evidence")
def create_evidence(payload: CreateEvidenceRequest, request: Request):
    data = evidence_store(request).create_evidence(
        principal_from_request(request),
        name=payload.name,
        doc_type=payload.doc_type,
        expiry=payload.expiry,
        notes=payload.notes,
    )
    return JSONResponse(
        status_code=201,
        content=success_envelope(data, trace_id_from_request(request)),
    )


@router.post("/evidence/{evidence_id}/versions")
def add_version(evidence_id: str, payload: AddVersionRequest, request: Request):
    data = evidence_store(request).add_version(
        principal_from_request(request),
        evidence_id,
        notes=payload.notes,
        expiry=payload.expiry,
    )
    return JSONResponse(
        status_code=201,
        content=success_envelope(data, trace_id_from_request(request)),
    )


@router.get("/evidence")
def list_evidence(request: Request):
    data = evidence_store(request).list_for_factory(principal_from_request(request))
    return success_envelope({"items": data, "total": len(data)}, trace_id_from_request(request))


@router.get("/evidence/{evidence_id}")
def get_evidence(evidence_id: str, request: Request):
    data = evidence_store(request).get(principal_from_request(request), evidence_id)
    return success_envelope(data, trace_id_from_request(request))


@router.delete("/evidence/{evidence_id}")
def delete_evidence(evidence_id: str, request: Request):
    evidence_store(request).delete(principal_from_request(request), evidence_id)
    return success_envelope(
        {"evidence_id": evidence_id, "deleted": True},
        trace_id_from_request(request),
        message="deleted",
    )
